"""
Tests for the notification dispatcher and retry manager.
"""

import json
from datetime import timedelta

import pytest

from fleet_alerts.detection.evaluator import ThresholdEvaluator
from fleet_alerts.models.fleet import ThresholdConfig
from fleet_alerts.models.notifications import (
    NOT_CONFIGURED_DESTINATION,
    NotificationPayload,
    NotificationStatus,
)
from fleet_alerts.notifications.dispatcher import LOCAL_ONLY_RESPONSE, NotificationDispatcher
from fleet_alerts.notifications.retry import RetryManager
from tests.conftest import NOW, FakeExternalClient, make_vehicle


@pytest.fixture
def payload() -> NotificationPayload:
    vehicle = make_vehicle(vtv_expiry=NOW + timedelta(days=5))
    finding = ThresholdEvaluator().evaluate_vtv(NOW, [vehicle])[0]
    return finding.to_payload()


@pytest.fixture
def dispatcher(store, external_client, email_gateway) -> NotificationDispatcher:
    return NotificationDispatcher(store, external_client, email_gateway)


class TestDispatch:
    """Tests for NotificationDispatcher.dispatch."""

    @pytest.mark.asyncio
    async def test_success_marks_sent(self, dispatcher, store, external_client, payload):
        """Test that a 2xx response marks the row sent."""
        result = await dispatcher.dispatch(payload)

        assert result.success is True
        row = store.rows[result.log_id]
        assert row.status == NotificationStatus.SENT
        assert row.sent_to == "https://erp.example.com/notifications"
        assert json.loads(row.response) == {"status": 201, "data": {"id": "ext-1"}}
        assert external_client.posted == [payload]

    @pytest.mark.asyncio
    async def test_delivery_failure_marks_failed(self, dispatcher, store, external_client, payload):
        """Test that a delivery error marks the row failed with the message."""
        external_client.fail_next("Service Unavailable", 503)

        result = await dispatcher.dispatch(payload)

        assert result.success is False
        assert result.error == "Service Unavailable"
        row = store.rows[result.log_id]
        assert row.status == NotificationStatus.FAILED
        assert row.retry_count == 1
        assert json.loads(row.response)["error"] == "Service Unavailable"

    @pytest.mark.asyncio
    async def test_not_configured_stores_locally(self, store, email_gateway, payload):
        """Test that without an endpoint the row is marked sent locally."""
        dispatcher = NotificationDispatcher(store, FakeExternalClient(url=None), email_gateway)

        result = await dispatcher.dispatch(payload)

        assert result.success is True
        row = store.rows[result.log_id]
        assert row.status == NotificationStatus.SENT
        assert row.sent_to == NOT_CONFIGURED_DESTINATION
        assert row.response == LOCAL_ONLY_RESPONSE

    @pytest.mark.asyncio
    async def test_storage_failure_reported(self, dispatcher, store, external_client, payload):
        """Test that a failed insert is reported without posting."""
        store.fail_create = True

        result = await dispatcher.dispatch(payload)

        assert result.success is False
        assert result.log_id is None
        assert result.error.startswith("Storage error:")
        assert external_client.posted == []

    @pytest.mark.asyncio
    async def test_one_row_per_dispatch(self, dispatcher, store, payload):
        """Test that repeated dispatches create separate rows."""
        await dispatcher.dispatch(payload)
        await dispatcher.dispatch(payload)

        assert len(store.rows) == 2


class TestEmailSideChannel:
    """Tests for alert emails sent during dispatch."""

    @pytest.mark.asyncio
    async def test_email_sent_with_thresholds(self, dispatcher, email_gateway, thresholds, payload):
        """Test that recipients receive the rendered template."""
        await dispatcher.dispatch(payload, thresholds)

        email_gateway.send_email.assert_awaited_once()
        recipients, subject, _html = email_gateway.send_email.call_args[0]
        assert recipients == ["ops@example.com"]
        assert subject == "URGENTE: VTV del vehículo AB123CD"

    @pytest.mark.asyncio
    async def test_no_email_without_thresholds(self, dispatcher, email_gateway, payload):
        """Test that dispatches without thresholds never email."""
        await dispatcher.dispatch(payload)

        email_gateway.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_email_when_disabled(self, dispatcher, email_gateway, payload):
        """Test that enable_email_alerts=False suppresses email."""
        thresholds = ThresholdConfig(
            notification_recipients=["ops@example.com"], enable_email_alerts=False
        )

        await dispatcher.dispatch(payload, thresholds)

        email_gateway.send_email.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_email_sent_even_when_delivery_fails(
        self, dispatcher, external_client, email_gateway, thresholds, payload
    ):
        """Test that the email channel is independent of the external POST."""
        external_client.fail_next()

        result = await dispatcher.dispatch(payload, thresholds)

        assert result.success is False
        email_gateway.send_email.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_email_failure_does_not_fail_dispatch(
        self, dispatcher, email_gateway, thresholds, payload
    ):
        """Test that email errors are logged and swallowed."""
        email_gateway.send_email.side_effect = RuntimeError("smtp exploded")

        result = await dispatcher.dispatch(payload, thresholds)

        assert result.success is True


class TestRetry:
    """Tests for RetryManager."""

    @pytest.mark.asyncio
    async def test_retry_updates_same_row(self, dispatcher, store, external_client, payload):
        """Test that a successful retry marks the original row sent."""
        external_client.fail_next()
        first = await dispatcher.dispatch(payload)

        summary = await RetryManager(store, dispatcher).retry_failed()

        assert summary.retried == 1
        assert summary.succeeded == 1
        assert summary.failed == 0
        assert len(store.rows) == 1
        assert store.rows[first.log_id].status == NotificationStatus.SENT

    @pytest.mark.asyncio
    async def test_retry_resends_without_data(self, dispatcher, store, external_client, payload):
        """Test that retried payloads carry only the stored fields."""
        external_client.fail_next()
        await dispatcher.dispatch(payload)

        await RetryManager(store, dispatcher).retry_failed()

        retried = external_client.posted[-1]
        assert retried.data is None
        assert retried.message == payload.message

    @pytest.mark.asyncio
    async def test_retry_stops_after_max_retries(self, dispatcher, store, external_client, payload):
        """Test that rows reaching the limit are left as dead letters."""
        for _ in range(3):
            external_client.fail_next()
        result = await dispatcher.dispatch(payload)
        manager = RetryManager(store, dispatcher, max_retries=3)

        first = await manager.retry_failed()
        second = await manager.retry_failed()
        third = await manager.retry_failed()

        assert (first.retried, first.failed) == (1, 1)
        assert (second.retried, second.failed) == (1, 1)
        assert third.retried == 0
        row = store.rows[result.log_id]
        assert row.status == NotificationStatus.FAILED
        assert row.retry_count == 3

    @pytest.mark.asyncio
    async def test_retry_batch_size(self, dispatcher, store, external_client, payload):
        """Test that one call retries at most batch_size rows, oldest first."""
        ids = []
        for _ in range(4):
            external_client.fail_next()
            ids.append((await dispatcher.dispatch(payload)).log_id)

        summary = await RetryManager(store, dispatcher, batch_size=2).retry_failed()

        assert summary.retried == 2
        assert store.rows[ids[0]].status == NotificationStatus.SENT
        assert store.rows[ids[1]].status == NotificationStatus.SENT
        assert store.rows[ids[2]].status == NotificationStatus.FAILED

    @pytest.mark.asyncio
    async def test_retry_with_nothing_to_do(self, dispatcher, store):
        """Test the empty summary."""
        summary = await RetryManager(store, dispatcher).retry_failed()

        assert summary.model_dump() == {"retried": 0, "succeeded": 0, "failed": 0}

    @pytest.mark.asyncio
    async def test_sent_rows_are_never_retried(self, dispatcher, store, external_client, payload):
        """Test that terminal rows are not picked up."""
        await dispatcher.dispatch(payload)
        posted_before = len(external_client.posted)

        summary = await RetryManager(store, dispatcher).retry_failed()

        assert summary.retried == 0
        assert len(external_client.posted) == posted_before

    @pytest.mark.asyncio
    async def test_dead_letters_excluded_from_batch(self, dispatcher, store):
        """Test that of five failed rows only those under the limit are retried."""
        for index, retry_count in enumerate([3, 0, 3, 1, 2]):
            log = await store.create_log("vtv_expired", "vehicle", str(index), "CRÍTICO", "x")
            store.rows[log.id] = log.model_copy(
                update={"status": NotificationStatus.FAILED, "retry_count": retry_count}
            )

        summary = await RetryManager(store, dispatcher).retry_failed()

        assert summary.retried == 3
        assert summary.succeeded == 3
        dead = [row for row in store.rows.values() if row.status == NotificationStatus.FAILED]
        assert sorted(row.retry_count for row in dead) == [3, 3]
