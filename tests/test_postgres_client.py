"""
Tests for PostgresClient logic that does not need a live database.
"""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from fleet_alerts.config.models import DatabaseConfig
from fleet_alerts.errors import StorageConnectionError, StorageOperationError
from fleet_alerts.models.notifications import NotificationStatus
from fleet_alerts.storage import FleetSource, NotificationLogStore
from fleet_alerts.storage.postgres_client import PostgresClient


@pytest.fixture
def client() -> PostgresClient:
    pg = PostgresClient(DatabaseConfig(url="postgresql://fleet:hunter2@db:5432/fleet"))
    pg.RETRY_DELAY = 0
    return pg


def log_record(**overrides):
    record = {
        "id": "log-1",
        "type": "vtv_expired",
        "entity_type": "vehicle",
        "entity_id": "7",
        "message": "CRÍTICO",
        "sent_to": "No configurado",
        "status": "sent",
        "response": None,
        "retry_count": 0,
        "sent_at": datetime(2025, 3, 1, tzinfo=timezone.utc),
    }
    record.update(overrides)
    return record


class TestPostgresClient:
    """Tests for PostgresClient."""

    def test_implements_protocols(self, client):
        """Test that the client satisfies both storage protocols."""
        assert isinstance(client, NotificationLogStore)
        assert isinstance(client, FleetSource)

    def test_sanitize_url_hides_password(self, client):
        """Test that passwords never reach the logs."""
        assert client._sanitize_url(client.config.url) == "postgresql://fleet:***@db:5432/fleet"

    @pytest.mark.asyncio
    async def test_not_connected(self, client):
        """Test that operations fail when the pool is not open."""
        with pytest.raises(StorageOperationError):
            await client.get_stats()

    @pytest.mark.asyncio
    async def test_retry_then_success(self, client):
        """Test that transient errors are retried."""
        func = AsyncMock(side_effect=[StorageConnectionError("lost"), "ok"])

        assert await client._execute_with_retry("fetch_stats", func) == "ok"
        assert func.await_count == 2

    @pytest.mark.asyncio
    async def test_retry_exhausted(self, client):
        """Test that persistent errors raise StorageOperationError."""
        func = AsyncMock(side_effect=StorageConnectionError("lost"))

        with pytest.raises(StorageOperationError, match="after 3 attempts"):
            await client._execute_with_retry("fetch_stats", func)
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_guarded_update_skipped(self, client):
        """Test that updating a terminal row returns None."""
        client._execute_with_retry = AsyncMock(return_value=None)

        assert await client.mark_sent("log-1", "ok") is None

    @pytest.mark.asyncio
    async def test_mark_failed_returns_row(self, client):
        """Test that an updated row is parsed."""
        client._execute_with_retry = AsyncMock(
            return_value=log_record(status="failed", retry_count=1)
        )

        row = await client.mark_failed("log-1", '{"error": "boom"}')

        assert row.status == NotificationStatus.FAILED
        assert row.retry_count == 1

    @pytest.mark.asyncio
    async def test_stats(self, client):
        """Test aggregation of per-status counts."""
        client._execute_with_retry = AsyncMock(
            return_value=[
                {"status": "sent", "count": 5},
                {"status": "failed", "count": 2},
                {"status": "received", "count": 4},
            ]
        )

        stats = await client.get_stats()

        assert stats.model_dump() == {"total": 11, "sent": 5, "failed": 2, "pending": 0}

    @pytest.mark.asyncio
    async def test_invalid_vehicle_rows_skipped(self, client):
        """Test that malformed fleet rows are dropped."""
        client._execute_with_retry = AsyncMock(
            return_value=[
                {
                    "id": 1,
                    "plate": "AB123CD",
                    "brand": "Ford",
                    "model": "Ranger",
                    "vtv_expiry": datetime(2025, 3, 10),
                    "insurance_expiry": None,
                    "current_mileage": 20000,
                    "last_service_mileage": 9000,
                    "last_service_date": None,
                },
                {"id": 2, "plate": None},
            ]
        )

        vehicles = await client.fetch_vehicles()

        assert [v.id for v in vehicles] == ["1"]
        assert vehicles[0].vtv_expiry.tzinfo is timezone.utc

    @pytest.mark.asyncio
    async def test_maintenance_config_absent(self, client):
        """Test that a missing configuration row yields None."""
        client._execute_with_retry = AsyncMock(return_value=None)

        assert await client.fetch_maintenance_config() is None
