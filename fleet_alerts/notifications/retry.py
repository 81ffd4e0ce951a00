"""
Bounded retry of failed notifications.

Rows in ``failed`` status with fewer than ``max_retries`` recorded
attempts are re-submitted in small batches, oldest first. Rows that reach
the limit form the dead-letter set: they stay queryable through the log
API but are never retried automatically.
"""

import structlog

from fleet_alerts.models.notifications import RetrySummary
from fleet_alerts.notifications.dispatcher import NotificationDispatcher
from fleet_alerts.storage.base import NotificationLogStore

logger = structlog.get_logger(__name__)

DEFAULT_BATCH_SIZE = 10
DEFAULT_MAX_RETRIES = 3


class RetryManager:
    """
    Re-submits failed notifications.

    Attributes:
        store: Notification log store.
        dispatcher: Dispatcher used for redelivery.
        batch_size: Maximum rows per call.
        max_retries: Rows with this many attempts are no longer retried.
    """

    def __init__(
        self,
        store: NotificationLogStore,
        dispatcher: NotificationDispatcher,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_retries: int = DEFAULT_MAX_RETRIES,
    ) -> None:
        self.store = store
        self.dispatcher = dispatcher
        self.batch_size = batch_size
        self.max_retries = max_retries

    async def retry_failed(self) -> RetrySummary:
        """
        Retry one batch of failed notifications.

        Returns:
            RetrySummary: Number of rows retried, succeeded and failed.

        Raises:
            StorageError: If the batch cannot be loaded.
        """
        rows = await self.store.fetch_retryable(self.batch_size, self.max_retries)

        succeeded = 0
        failed = 0
        for row in rows:
            try:
                result = await self.dispatcher.redeliver(row)
            except Exception as e:
                logger.error("notification_retry_error", log_id=row.id, error=str(e))
                failed += 1
                continue

            if result.success:
                succeeded += 1
            else:
                failed += 1

        summary = RetrySummary(retried=len(rows), succeeded=succeeded, failed=failed)
        logger.info(
            "notification_retry_completed",
            retried=summary.retried,
            succeeded=summary.succeeded,
            failed=summary.failed,
        )
        return summary
