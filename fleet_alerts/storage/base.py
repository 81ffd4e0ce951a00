"""
Storage interfaces.

The alerting core depends only on these protocols. PostgresClient
implements both against the fleet database; tests use in-memory fakes.

Protocols:
    NotificationLogStore: Persistence for notification log rows
    FleetSource: Read-only access to vehicles, users and maintenance config
"""

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from fleet_alerts.models.fleet import MonitoredUser, MonitoredVehicle
from fleet_alerts.models.notifications import (
    NotificationLog,
    NotificationStats,
    NotificationStatus,
)


@runtime_checkable
class NotificationLogStore(Protocol):
    """
    Persistence for notification log rows.

    Updates are status guarded: ``mark_sent`` and ``mark_failed`` only
    apply to rows in ``pending`` or ``failed`` and return None otherwise.
    """

    async def create_log(
        self,
        type: str,
        entity_type: str,
        entity_id: str,
        message: str,
        sent_to: str,
        status: NotificationStatus = NotificationStatus.PENDING,
        response: Optional[str] = None,
    ) -> NotificationLog:
        """Insert a new row and return it."""
        ...

    async def mark_sent(self, log_id: str, response: str) -> Optional[NotificationLog]:
        """Set status to sent and store the response."""
        ...

    async def mark_failed(self, log_id: str, response: str) -> Optional[NotificationLog]:
        """Set status to failed, store the response and increment retry_count."""
        ...

    async def get_log(self, log_id: str) -> Optional[NotificationLog]:
        """Fetch one row by id."""
        ...

    async def list_logs(
        self,
        limit: int = 100,
        status: Optional[NotificationStatus] = None,
    ) -> List[NotificationLog]:
        """List rows newest first, optionally filtered by status."""
        ...

    async def fetch_retryable(self, limit: int, max_retries: int) -> List[NotificationLog]:
        """List failed rows with retry_count below max_retries, oldest first."""
        ...

    async def get_stats(self) -> NotificationStats:
        """Count rows per status."""
        ...


@runtime_checkable
class FleetSource(Protocol):
    """Read-only view of the fleet store."""

    async def fetch_vehicles(self) -> List[MonitoredVehicle]:
        """Load all vehicles."""
        ...

    async def fetch_users(self) -> List[MonitoredUser]:
        """Load active users with a licence expiry on record."""
        ...

    async def fetch_maintenance_config(self) -> Optional[Dict[str, Any]]:
        """Load the maintenance configuration row, if any."""
        ...
