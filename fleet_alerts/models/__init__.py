"""
Data models for the fleet alerting system.

Models:
    fleet: MonitoredVehicle, MonitoredUser, ThresholdConfig
    findings: Finding, FindingType, EntityType, Severity
    notifications: NotificationLog, NotificationPayload and result types
"""

from fleet_alerts.models.fleet import (
    MonitoredUser,
    MonitoredVehicle,
    ThresholdConfig,
    ensure_utc,
    resolve_recipients,
)
from fleet_alerts.models.findings import EntityType, Finding, FindingType, Severity
from fleet_alerts.models.notifications import (
    INCOMING_WEBHOOK_DESTINATION,
    NOT_CONFIGURED_DESTINATION,
    WEBHOOK_RECEIVED_TYPE,
    DispatchResult,
    NotificationLog,
    NotificationPayload,
    NotificationStats,
    NotificationStatus,
    RetrySummary,
)

__all__ = [
    # Fleet
    "MonitoredVehicle",
    "MonitoredUser",
    "ThresholdConfig",
    "ensure_utc",
    "resolve_recipients",
    # Findings
    "Finding",
    "FindingType",
    "EntityType",
    "Severity",
    # Notifications
    "NotificationLog",
    "NotificationPayload",
    "NotificationStatus",
    "DispatchResult",
    "RetrySummary",
    "NotificationStats",
    "NOT_CONFIGURED_DESTINATION",
    "INCOMING_WEBHOOK_DESTINATION",
    "WEBHOOK_RECEIVED_TYPE",
]
