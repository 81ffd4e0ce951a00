"""
Finding models produced by the threshold evaluator.

A Finding is an in-memory record of one detected compliance violation.
Findings are never persisted directly; the dispatcher turns each one into
a NotificationLog row. Repeated runs re-emit the same finding until the
underlying condition changes (at-least-once semantics).

Models:
    FindingType: Violation categories
    EntityType: Kind of entity a finding refers to
    Severity: Severity levels (critical, warning, info)
    Finding: One violation
"""

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field

from fleet_alerts.models.notifications import NotificationPayload


class Severity(str, Enum):
    """
    Finding severity levels.

    Attributes:
        CRITICAL: Expired or due within the critical window.
        WARNING: Approaching a deadline.
        INFO: Routine maintenance reminder.
    """

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class EntityType(str, Enum):
    """Kind of entity a finding refers to."""

    VEHICLE = "vehicle"
    USER = "user"


class FindingType(str, Enum):
    """
    Violation categories.

    Note that LICENSE_EXPIRING is used both for licences expiring today
    and for licences already expired; external consumers key on it.
    """

    VTV_EXPIRED = "vtv_expired"
    VTV_EXPIRING_CRITICAL = "vtv_expiring_critical"
    VTV_EXPIRING = "vtv_expiring"
    INSURANCE_EXPIRED = "insurance_expired"
    INSURANCE_EXPIRING = "insurance_expiring"
    LICENSE_EXPIRING = "license_expiring"
    SERVICE_DUE = "service_due"

    @property
    def severity(self) -> Severity:
        """Severity associated with this finding type."""
        return _SEVERITY_BY_TYPE[self]


_SEVERITY_BY_TYPE: Dict[FindingType, Severity] = {
    FindingType.VTV_EXPIRED: Severity.CRITICAL,
    FindingType.VTV_EXPIRING_CRITICAL: Severity.CRITICAL,
    FindingType.VTV_EXPIRING: Severity.WARNING,
    FindingType.INSURANCE_EXPIRED: Severity.CRITICAL,
    FindingType.INSURANCE_EXPIRING: Severity.WARNING,
    FindingType.LICENSE_EXPIRING: Severity.CRITICAL,
    FindingType.SERVICE_DUE: Severity.INFO,
}


class Finding(BaseModel):
    """
    One detected compliance violation.

    Attributes:
        type: Violation category.
        entity_type: Whether the finding refers to a vehicle or a user.
        entity_id: Identifier of the offending entity.
        severity: Severity level.
        days_remaining: Whole days until the deadline (negative if overdue).
        message: Human-readable alert text.
        data: Structured details used by email templates and the envelope.

    Example:
        >>> finding = Finding(
        ...     type=FindingType.VTV_EXPIRING_CRITICAL,
        ...     entity_type=EntityType.VEHICLE,
        ...     entity_id="veh-1",
        ...     severity=Severity.CRITICAL,
        ...     days_remaining=5,
        ...     message="URGENTE: VTV del vehículo AB123CD vence en 5 días",
        ... )
        >>> finding.to_payload().type
        'vtv_expiring_critical'
    """

    model_config = {"frozen": True}

    type: FindingType = Field(..., description="Violation category")
    entity_type: EntityType = Field(..., description="Entity kind")
    entity_id: str = Field(..., description="Entity identifier")
    severity: Severity = Field(..., description="Severity level")
    days_remaining: int = Field(..., description="Days until deadline, negative if overdue")
    message: str = Field(..., description="Alert text")
    data: Dict[str, Any] = Field(default_factory=dict, description="Structured details")

    def to_payload(self) -> NotificationPayload:
        """
        Convert the finding into a dispatchable payload.

        Returns:
            NotificationPayload: Payload carrying all finding fields.
        """
        return NotificationPayload(
            type=self.type.value,
            entity_type=self.entity_type.value,
            entity_id=self.entity_id,
            message=self.message,
            data=dict(self.data),
            severity=self.severity.value,
            days_remaining=self.days_remaining,
        )
