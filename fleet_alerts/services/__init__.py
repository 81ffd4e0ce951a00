"""
Runtime wiring for the fleet alerting service.

Components:
    setup_logging: structlog configuration over stdlib logging
    AlertService: Builds and owns every component from an AppConfig
"""

from fleet_alerts.services.logging_setup import setup_logging
from fleet_alerts.services.runtime import AlertService, create_alert_service

__all__: list[str] = [
    "setup_logging",
    "AlertService",
    "create_alert_service",
]
