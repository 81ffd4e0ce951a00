"""
Notification log and delivery result models.

Models:
    NotificationStatus: Log row status with its allowed transitions
    NotificationPayload: What the dispatcher delivers
    NotificationLog: Persisted record of one delivery attempt group or inbound event
    DispatchResult: Outcome of a single dispatch
    RetrySummary: Outcome of a retry batch
    NotificationStats: Counts per status
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional

from pydantic import BaseModel, Field

# sent_to value used when no external endpoint is configured
NOT_CONFIGURED_DESTINATION = "No configurado"

# sent_to value for inbound webhook rows
INCOMING_WEBHOOK_DESTINATION = "incoming_webhook"

WEBHOOK_RECEIVED_TYPE = "webhook_received"


class NotificationStatus(str, Enum):
    """
    Notification log status.

    Attributes:
        PENDING: Row created, delivery outcome not yet known.
        SENT: Delivered (terminal).
        FAILED: Delivery failed, eligible for bounded retry.
        RECEIVED: Inbound webhook record (terminal).
    """

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    RECEIVED = "received"

    def can_transition_to(self, target: "NotificationStatus") -> bool:
        """
        Check whether a status transition is allowed.

        Args:
            target: Desired next status.

        Returns:
            bool: True for pending->sent/failed and failed->sent/failed.

        Example:
            >>> NotificationStatus.SENT.can_transition_to(NotificationStatus.FAILED)
            False
        """
        return target in _ALLOWED_TRANSITIONS.get(self, frozenset())


_ALLOWED_TRANSITIONS: Dict[NotificationStatus, FrozenSet[NotificationStatus]] = {
    NotificationStatus.PENDING: frozenset({NotificationStatus.SENT, NotificationStatus.FAILED}),
    NotificationStatus.FAILED: frozenset({NotificationStatus.SENT, NotificationStatus.FAILED}),
}

# Statuses from which an outbound update may be applied
UPDATABLE_STATUSES: FrozenSet[NotificationStatus] = frozenset(_ALLOWED_TRANSITIONS)


class NotificationPayload(BaseModel):
    """
    Notification content handed to the dispatcher.

    Built from a Finding, from an admin send request, or from a stored log
    row during retry (in which case ``data`` is not available).
    """

    model_config = {"frozen": True}

    type: str = Field(..., min_length=1, description="Notification type")
    entity_type: str = Field(..., min_length=1, description="Entity kind")
    entity_id: str = Field(..., min_length=1, description="Entity identifier")
    message: str = Field(..., min_length=1, description="Alert text")
    data: Optional[Dict[str, Any]] = Field(default=None, description="Structured details")
    severity: Optional[str] = Field(default=None, description="Severity level")
    days_remaining: Optional[int] = Field(default=None, description="Days until deadline")

    def to_wire(self) -> Dict[str, Any]:
        """
        Serialize using the external system's field names.

        Returns:
            Dict[str, Any]: JSON-ready mapping (camelCase keys).
        """
        wire: Dict[str, Any] = {
            "type": self.type,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "message": self.message,
        }
        if self.data is not None:
            wire["data"] = self.data
        if self.severity is not None:
            wire["severity"] = self.severity
        if self.days_remaining is not None:
            wire["daysRemaining"] = self.days_remaining
        return wire


class NotificationLog(BaseModel):
    """
    Persisted record of one outbound delivery or one inbound event.

    Attributes:
        id: Row identifier.
        type: Notification type (finding type or webhook_received).
        entity_type: Entity kind.
        entity_id: Entity identifier.
        message: Alert text.
        sent_to: Destination descriptor, "No configurado" or "incoming_webhook".
        status: Current status.
        response: Free-form diagnostic text.
        retry_count: Number of failed attempts recorded.
        sent_at: Creation timestamp.
    """

    model_config = {"frozen": True}

    id: str = Field(..., description="Row identifier")
    type: str = Field(..., description="Notification type")
    entity_type: str = Field(..., description="Entity kind")
    entity_id: str = Field(..., description="Entity identifier")
    message: str = Field(..., description="Alert text")
    sent_to: str = Field(..., description="Destination descriptor")
    status: NotificationStatus = Field(..., description="Current status")
    response: Optional[str] = Field(default=None, description="Diagnostic text")
    retry_count: int = Field(default=0, ge=0, description="Failed attempts")
    sent_at: datetime = Field(..., description="Creation timestamp")

    def to_payload(self) -> NotificationPayload:
        """
        Rebuild the payload for a retry.

        Only type, entity and message survive; the original data is not
        stored and is therefore not re-sent.
        """
        return NotificationPayload(
            type=self.type,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            message=self.message,
        )

    def to_api(self) -> Dict[str, Any]:
        """Serialize for the admin API (camelCase keys)."""
        return {
            "id": self.id,
            "type": self.type,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "message": self.message,
            "sentTo": self.sent_to,
            "status": self.status.value,
            "response": self.response,
            "retryCount": self.retry_count,
            "sentAt": self.sent_at.isoformat(),
        }


class DispatchResult(BaseModel):
    """Outcome of a single dispatch."""

    model_config = {"frozen": True}

    success: bool
    log_id: Optional[str] = None
    error: Optional[str] = None

    def to_api(self) -> Dict[str, Any]:
        """Serialize for the admin API."""
        body: Dict[str, Any] = {"success": self.success, "logId": self.log_id}
        if self.error is not None:
            body["error"] = self.error
        return body


class RetrySummary(BaseModel):
    """Outcome of one retry batch."""

    model_config = {"frozen": True}

    retried: int = 0
    succeeded: int = 0
    failed: int = 0


class NotificationStats(BaseModel):
    """Notification log counts per status."""

    model_config = {"frozen": True}

    total: int = 0
    sent: int = 0
    failed: int = 0
    pending: int = 0
