"""
Shared fixtures and in-memory fakes for the fleet alerts tests.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock

import pytest

from fleet_alerts.config.models import AppConfig, AuthConfig, ExternalApiConfig, WebhookConfig
from fleet_alerts.errors import DeliveryError, StorageOperationError
from fleet_alerts.models.fleet import MonitoredUser, MonitoredVehicle, ThresholdConfig
from fleet_alerts.models.notifications import (
    NotificationLog,
    NotificationPayload,
    NotificationStats,
    NotificationStatus,
)
from fleet_alerts.notifications.external import ExternalResponse

NOW = datetime(2025, 3, 1, 11, 0, tzinfo=timezone.utc)

WEBHOOK_SECRET = "test-webhook-secret"
JWT_SECRET = "test-jwt-secret-with-enough-length-123"


class InMemoryLogStore:
    """NotificationLogStore backed by a dict, enforcing the status guard."""

    def __init__(self) -> None:
        self.rows: Dict[str, NotificationLog] = {}
        self.fail_create = False
        self._counter = 0

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
        if self.fail_create:
            raise StorageOperationError("database unavailable")

        self._counter += 1
        log = NotificationLog(
            id=f"log-{self._counter}",
            type=type,
            entity_type=entity_type,
            entity_id=entity_id,
            message=message,
            sent_to=sent_to,
            status=status,
            response=response,
            retry_count=0,
            sent_at=NOW + timedelta(seconds=self._counter),
        )
        self.rows[log.id] = log
        return log

    async def _update(
        self,
        log_id: str,
        target: NotificationStatus,
        response: str,
        increment: bool,
    ) -> Optional[NotificationLog]:
        row = self.rows.get(log_id)
        if row is None or not row.status.can_transition_to(target):
            return None

        updated = row.model_copy(
            update={
                "status": target,
                "response": response,
                "retry_count": row.retry_count + (1 if increment else 0),
            }
        )
        self.rows[log_id] = updated
        return updated

    async def mark_sent(self, log_id: str, response: str) -> Optional[NotificationLog]:
        return await self._update(log_id, NotificationStatus.SENT, response, increment=False)

    async def mark_failed(self, log_id: str, response: str) -> Optional[NotificationLog]:
        return await self._update(log_id, NotificationStatus.FAILED, response, increment=True)

    async def get_log(self, log_id: str) -> Optional[NotificationLog]:
        return self.rows.get(log_id)

    async def list_logs(
        self,
        limit: int = 100,
        status: Optional[NotificationStatus] = None,
    ) -> List[NotificationLog]:
        rows = [row for row in self.rows.values() if status is None or row.status == status]
        rows.sort(key=lambda row: row.sent_at, reverse=True)
        return rows[:limit]

    async def fetch_retryable(self, limit: int, max_retries: int) -> List[NotificationLog]:
        rows = [
            row
            for row in self.rows.values()
            if row.status == NotificationStatus.FAILED and row.retry_count < max_retries
        ]
        rows.sort(key=lambda row: row.sent_at)
        return rows[:limit]

    async def get_stats(self) -> NotificationStats:
        statuses = [row.status for row in self.rows.values()]
        return NotificationStats(
            total=len(statuses),
            sent=statuses.count(NotificationStatus.SENT),
            failed=statuses.count(NotificationStatus.FAILED),
            pending=statuses.count(NotificationStatus.PENDING),
        )


class InMemoryFleetSource:
    """FleetSource returning fixed snapshots."""

    def __init__(
        self,
        vehicles: Optional[List[MonitoredVehicle]] = None,
        users: Optional[List[MonitoredUser]] = None,
        maintenance_config: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.vehicles = vehicles or []
        self.users = users or []
        self.maintenance_config = maintenance_config

    async def fetch_vehicles(self) -> List[MonitoredVehicle]:
        return list(self.vehicles)

    async def fetch_users(self) -> List[MonitoredUser]:
        return list(self.users)

    async def fetch_maintenance_config(self) -> Optional[Dict[str, Any]]:
        return self.maintenance_config


class FakeExternalClient:
    """Stand-in for ExternalApiClient recording every posted payload."""

    def __init__(self, url: Optional[str] = "https://erp.example.com") -> None:
        self.base_url = url
        self.posted: List[NotificationPayload] = []
        self.failures: List[DeliveryError] = []
        self.closed = False

    @property
    def is_configured(self) -> bool:
        return self.base_url is not None

    @property
    def endpoint(self) -> Optional[str]:
        return f"{self.base_url}/notifications" if self.base_url else None

    def fail_next(self, message: str = "Service Unavailable", status: Optional[int] = 503) -> None:
        self.failures.append(DeliveryError(message, status=status))

    async def post_notification(self, payload: NotificationPayload) -> ExternalResponse:
        self.posted.append(payload)
        if self.failures:
            raise self.failures.pop(0)
        return ExternalResponse(status=201, data={"id": "ext-1"})

    async def close(self) -> None:
        self.closed = True


class FakeEmailGateway:
    """Stand-in for EmailGateway with an AsyncMock send_email."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled
        self.send_email = AsyncMock(return_value=True)


def make_vehicle(**overrides: Any) -> MonitoredVehicle:
    fields: Dict[str, Any] = {
        "id": "veh-1",
        "plate": "AB123CD",
        "brand": "Ford",
        "model": "Ranger",
    }
    fields.update(overrides)
    return MonitoredVehicle(**fields)


def make_user(**overrides: Any) -> MonitoredUser:
    fields: Dict[str, Any] = {
        "id": "user-1",
        "name": "Juan Pérez",
        "email": "juan@example.com",
        "active": True,
    }
    fields.update(overrides)
    return MonitoredUser(**fields)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> InMemoryLogStore:
    return InMemoryLogStore()


@pytest.fixture
def external_client() -> FakeExternalClient:
    return FakeExternalClient()


@pytest.fixture
def email_gateway() -> FakeEmailGateway:
    return FakeEmailGateway()


@pytest.fixture
def thresholds() -> ThresholdConfig:
    return ThresholdConfig(notification_recipients=["ops@example.com"])


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        external_api=ExternalApiConfig(url=None),
        webhook=WebhookConfig(secret=WEBHOOK_SECRET),
        auth=AuthConfig(jwt_secret=JWT_SECRET),
    )
