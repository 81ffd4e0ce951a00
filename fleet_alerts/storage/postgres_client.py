"""
Async PostgreSQL client for the fleet database.

Implements both storage protocols:

    NotificationLogStore: the ``notification_log`` table, owned by this
        service and created by ``ensure_schema()``
    FleetSource: read-only queries against the fleet management tables
        (``vehicle``, ``"user"``, ``maintenanceconfig``)

Key Tables:
    - notification_log: One row per outbound notification or inbound webhook
    - vehicle: Vehicle compliance dates and odometer readings
    - "user": Drivers and their licence expiry
    - maintenanceconfig: Service intervals and notification recipients

Example:
    >>> from fleet_alerts.config.models import DatabaseConfig
    >>> from fleet_alerts.storage.postgres_client import PostgresClient
    >>>
    >>> client = PostgresClient(DatabaseConfig(url="postgresql://fleet:pw@localhost/fleet"))
    >>> await client.connect()
    >>> await client.ensure_schema()
    >>> stats = await client.get_stats()
"""

from __future__ import annotations

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg
import structlog
from asyncpg import Connection, Pool, Record
from asyncpg.exceptions import (
    ConnectionDoesNotExistError,
    InterfaceError,
    PostgresError,
    TooManyConnectionsError,
)
from pydantic import ValidationError

from fleet_alerts.config.models import DatabaseConfig
from fleet_alerts.errors import StorageConnectionError, StorageOperationError
from fleet_alerts.models.fleet import MonitoredUser, MonitoredVehicle
from fleet_alerts.models.notifications import (
    UPDATABLE_STATUSES,
    NotificationLog,
    NotificationStats,
    NotificationStatus,
)

logger = structlog.get_logger(__name__)


NOTIFICATION_LOG_SCHEMA = """
    CREATE TABLE IF NOT EXISTS notification_log (
        id TEXT PRIMARY KEY,
        type TEXT NOT NULL,
        entity_type TEXT NOT NULL,
        entity_id TEXT NOT NULL,
        message TEXT NOT NULL,
        sent_to TEXT NOT NULL,
        status TEXT NOT NULL,
        response TEXT,
        retry_count INTEGER NOT NULL DEFAULT 0,
        sent_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
    );
    CREATE INDEX IF NOT EXISTS idx_notification_log_status
        ON notification_log (status, retry_count, sent_at);
    CREATE INDEX IF NOT EXISTS idx_notification_log_sent_at
        ON notification_log (sent_at DESC);
"""

_LOG_COLUMNS = (
    "id, type, entity_type, entity_id, message, sent_to, status, "
    "response, retry_count, sent_at"
)

_UPDATABLE = [status.value for status in UPDATABLE_STATUSES]


def _record_to_log(record: Record) -> NotificationLog:
    """
    Convert a notification_log record to a NotificationLog.

    Args:
        record: asyncpg record.

    Returns:
        NotificationLog: Parsed row.
    """
    return NotificationLog(
        id=record["id"],
        type=record["type"],
        entity_type=record["entity_type"],
        entity_id=record["entity_id"],
        message=record["message"],
        sent_to=record["sent_to"],
        status=NotificationStatus(record["status"]),
        response=record["response"],
        retry_count=record["retry_count"],
        sent_at=record["sent_at"],
    )


class PostgresClient:
    """
    Async PostgreSQL client for notification logs and fleet snapshots.

    Attributes:
        config: Database connection configuration.
        _pool: Connection pool for efficient connection reuse.
        _connected: Whether the client is connected.

    Example:
        >>> client = PostgresClient(DatabaseConfig(url="postgresql://..."))
        >>> await client.connect()
        >>> try:
        ...     logs = await client.list_logs(limit=20)
        ... finally:
        ...     await client.disconnect()
    """

    # Maximum retries for transient errors
    MAX_RETRIES = 3

    # Retry delay in seconds
    RETRY_DELAY = 0.5

    def __init__(self, config: DatabaseConfig) -> None:
        """
        Initialize the PostgreSQL client.

        Args:
            config: Connection URL and pool settings.
        """
        self.config = config
        self._pool: Optional[Pool] = None
        self._connected: bool = False

        logger.info(
            "postgres_client_initialized",
            url=self._sanitize_url(config.url),
            pool_size=config.pool_size,
        )

    def _sanitize_url(self, url: str) -> str:
        """Sanitize URL for logging (remove password)."""
        if "@" in url:
            parts = url.rsplit("@", 1)
            if ":" in parts[0].split("//", 1)[-1]:
                user_part = parts[0].rsplit(":", 1)[0]
                return f"{user_part}:***@{parts[1]}"
        return url

    @property
    def is_connected(self) -> bool:
        """Check if the client is connected to PostgreSQL."""
        return self._connected and self._pool is not None

    # =========================================================================
    # CONNECTION MANAGEMENT
    # =========================================================================

    async def connect(self) -> None:
        """
        Establish connection pool to PostgreSQL.

        Raises:
            StorageConnectionError: If connection fails.
        """
        if self._connected:
            logger.warning("postgres_already_connected")
            return

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.config.url,
                min_size=1,
                max_size=self.config.pool_size + self.config.max_overflow,
                command_timeout=self.config.command_timeout,
                init=self._init_connection,
            )

            async with self._pool.acquire() as conn:
                await conn.fetchval("SELECT 1")

            self._connected = True
            logger.info("postgres_connected", url=self._sanitize_url(self.config.url))

        except (PostgresError, OSError, asyncio.TimeoutError) as e:
            self._connected = False
            logger.error(
                "postgres_connection_failed",
                url=self._sanitize_url(self.config.url),
                error=str(e),
            )
            raise StorageConnectionError(f"Failed to connect to PostgreSQL: {e}") from e

    async def _init_connection(self, conn: Connection) -> None:
        # Timestamps come back in UTC
        await conn.execute("SET timezone = 'UTC'")

    async def disconnect(self) -> None:
        """Close the connection pool. Safe to call multiple times."""
        if self._pool is not None:
            try:
                await self._pool.close()
            except (PostgresError, OSError) as e:
                logger.warning("postgres_close_error", error=str(e))
            finally:
                self._pool = None

        self._connected = False
        logger.info("postgres_disconnected")

    @asynccontextmanager
    async def _acquire_connection(self) -> AsyncIterator[Connection]:
        """
        Acquire a connection from the pool with error handling.

        Raises:
            StorageConnectionError: If not connected or pool exhausted.
        """
        if not self._connected or self._pool is None:
            raise StorageConnectionError("PostgreSQL client is not connected")

        try:
            async with self._pool.acquire() as conn:
                yield conn
        except TooManyConnectionsError as e:
            logger.error("postgres_pool_exhausted", error=str(e))
            raise StorageConnectionError(f"Connection pool exhausted: {e}") from e
        except (ConnectionDoesNotExistError, InterfaceError) as e:
            logger.error("postgres_connection_lost", error=str(e))
            self._connected = False
            raise StorageConnectionError(f"Connection lost: {e}") from e

    async def _execute_with_retry(
        self,
        operation: str,
        func: Any,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """
        Execute a database operation with retry logic for transient errors.

        Args:
            operation: Name of the operation for logging.
            func: Async function to execute.

        Returns:
            Any: Result of the function call.

        Raises:
            StorageOperationError: If all retries fail.
        """
        last_error: Optional[Exception] = None

        for attempt in range(self.MAX_RETRIES):
            try:
                return await func(*args, **kwargs)
            except (PostgresError, StorageConnectionError) as e:
                last_error = e
                if attempt < self.MAX_RETRIES - 1:
                    logger.warning(
                        "postgres_operation_retry",
                        operation=operation,
                        attempt=attempt + 1,
                        max_retries=self.MAX_RETRIES,
                        error=str(e),
                    )
                    await asyncio.sleep(self.RETRY_DELAY * (attempt + 1))
                else:
                    logger.error("postgres_operation_failed", operation=operation, error=str(e))

        raise StorageOperationError(
            f"Operation '{operation}' failed after {self.MAX_RETRIES} attempts: {last_error}"
        )

    async def ensure_schema(self) -> None:
        """Create the notification_log table and its indexes if missing."""

        async def _create() -> None:
            async with self._acquire_connection() as conn:
                await conn.execute(NOTIFICATION_LOG_SCHEMA)

        await self._execute_with_retry("ensure_schema", _create)
        logger.info("notification_log_schema_ready")

    # =========================================================================
    # NOTIFICATION LOG
    # =========================================================================

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
        """
        Insert a notification log row.

        Args:
            type: Notification type.
            entity_type: Entity kind.
            entity_id: Entity identifier.
            message: Alert text.
            sent_to: Destination descriptor.
            status: Initial status (pending for outbound, received for webhooks).
            response: Initial response text.

        Returns:
            NotificationLog: The stored row.

        Raises:
            StorageConnectionError: If not connected.
            StorageOperationError: If the insert fails.
        """
        log_id = str(uuid.uuid4())

        async def _insert() -> Record:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(
                    f"""
                    INSERT INTO notification_log (
                        id, type, entity_type, entity_id, message,
                        sent_to, status, response, retry_count
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, 0)
                    RETURNING {_LOG_COLUMNS}
                    """,
                    log_id,
                    type,
                    entity_type,
                    entity_id,
                    message,
                    sent_to,
                    status.value,
                    response,
                )

        record = await self._execute_with_retry("create_log", _insert)
        logger.debug("notification_log_created", log_id=log_id, type=type, status=status.value)
        return _record_to_log(record)

    async def mark_sent(self, log_id: str, response: str) -> Optional[NotificationLog]:
        """
        Mark a pending or failed row as sent.

        Args:
            log_id: Row identifier.
            response: Response text to store.

        Returns:
            Optional[NotificationLog]: Updated row, or None if the row does
                not exist or is already terminal.
        """
        return await self._guarded_update(
            "mark_sent",
            log_id,
            "status = $2, response = $3",
            NotificationStatus.SENT.value,
            response,
        )

    async def mark_failed(self, log_id: str, response: str) -> Optional[NotificationLog]:
        """
        Mark a pending or failed row as failed and count the attempt.

        Args:
            log_id: Row identifier.
            response: Error description to store.

        Returns:
            Optional[NotificationLog]: Updated row, or None if the row does
                not exist or is already terminal.
        """
        return await self._guarded_update(
            "mark_failed",
            log_id,
            "status = $2, response = $3, retry_count = retry_count + 1",
            NotificationStatus.FAILED.value,
            response,
        )

    async def _guarded_update(
        self,
        operation: str,
        log_id: str,
        assignments: str,
        status: str,
        response: str,
    ) -> Optional[NotificationLog]:
        async def _update() -> Optional[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(
                    f"""
                    UPDATE notification_log
                    SET {assignments}
                    WHERE id = $1 AND status = ANY($4::text[])
                    RETURNING {_LOG_COLUMNS}
                    """,
                    log_id,
                    status,
                    response,
                    _UPDATABLE,
                )

        record = await self._execute_with_retry(operation, _update)
        if record is None:
            logger.warning("notification_log_update_skipped", log_id=log_id, target=status)
            return None
        return _record_to_log(record)

    async def get_log(self, log_id: str) -> Optional[NotificationLog]:
        """Fetch one row by id."""

        async def _query() -> Optional[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(
                    f"SELECT {_LOG_COLUMNS} FROM notification_log WHERE id = $1",
                    log_id,
                )

        record = await self._execute_with_retry("get_log", _query)
        return _record_to_log(record) if record is not None else None

    async def list_logs(
        self,
        limit: int = 100,
        status: Optional[NotificationStatus] = None,
    ) -> List[NotificationLog]:
        """
        List rows newest first.

        Args:
            limit: Maximum rows to return.
            status: Optional status filter.

        Returns:
            List[NotificationLog]: Rows ordered by sent_at descending.
        """
        start_time = time.monotonic()

        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                conditions: List[str] = []
                params: List[Any] = []

                if status is not None:
                    params.append(status.value)
                    conditions.append(f"status = ${len(params)}")

                params.append(limit)
                where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
                query = f"""
                    SELECT {_LOG_COLUMNS}
                    FROM notification_log
                    {where}
                    ORDER BY sent_at DESC
                    LIMIT ${len(params)}
                """
                return await conn.fetch(query, *params)

        records = await self._execute_with_retry("list_logs", _query)

        elapsed_ms = (time.monotonic() - start_time) * 1000
        logger.debug(
            "notification_logs_queried",
            count=len(records),
            status=status.value if status else None,
            elapsed_ms=round(elapsed_ms, 2),
        )
        return [_record_to_log(record) for record in records]

    async def fetch_retryable(self, limit: int, max_retries: int) -> List[NotificationLog]:
        """
        List failed rows still eligible for retry, oldest first.

        Args:
            limit: Maximum rows to return.
            max_retries: Rows with this many attempts or more are excluded.

        Returns:
            List[NotificationLog]: Retry candidates.
        """

        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetch(
                    f"""
                    SELECT {_LOG_COLUMNS}
                    FROM notification_log
                    WHERE status = $1 AND retry_count < $2
                    ORDER BY sent_at ASC
                    LIMIT $3
                    """,
                    NotificationStatus.FAILED.value,
                    max_retries,
                    limit,
                )

        records = await self._execute_with_retry("fetch_retryable", _query)
        return [_record_to_log(record) for record in records]

    async def get_stats(self) -> NotificationStats:
        """Count rows per status."""

        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetch(
                    "SELECT status, COUNT(*) AS count FROM notification_log GROUP BY status"
                )

        records = await self._execute_with_retry("get_stats", _query)
        counts: Dict[str, int] = {record["status"]: record["count"] for record in records}

        return NotificationStats(
            total=sum(counts.values()),
            sent=counts.get(NotificationStatus.SENT.value, 0),
            failed=counts.get(NotificationStatus.FAILED.value, 0),
            pending=counts.get(NotificationStatus.PENDING.value, 0),
        )

    # =========================================================================
    # FLEET SNAPSHOTS
    # =========================================================================

    async def fetch_vehicles(self) -> List[MonitoredVehicle]:
        """
        Load all vehicles.

        Rows that fail validation are logged and skipped.

        Returns:
            List[MonitoredVehicle]: Vehicle snapshots.
        """

        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetch(
                    """
                    SELECT
                        id, plate, brand, model,
                        "vtvExpiry" AS vtv_expiry,
                        "insuranceExpiry" AS insurance_expiry,
                        "currentMileage" AS current_mileage,
                        "lastServiceMileage" AS last_service_mileage,
                        "lastServiceDate" AS last_service_date
                    FROM vehicle
                    """
                )

        records = await self._execute_with_retry("fetch_vehicles", _query)

        vehicles: List[MonitoredVehicle] = []
        for record in records:
            try:
                vehicles.append(MonitoredVehicle(**dict(record)))
            except ValidationError as e:
                logger.warning("vehicle_row_invalid", vehicle_id=record["id"], error=str(e))
        return vehicles

    async def fetch_users(self) -> List[MonitoredUser]:
        """
        Load active users with a licence expiry on record.

        Returns:
            List[MonitoredUser]: User snapshots.
        """

        async def _query() -> List[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetch(
                    """
                    SELECT
                        id, name, email, active,
                        "licenseExpiration" AS license_expiration
                    FROM "user"
                    WHERE active = TRUE AND "licenseExpiration" IS NOT NULL
                    """
                )

        records = await self._execute_with_retry("fetch_users", _query)

        users: List[MonitoredUser] = []
        for record in records:
            try:
                users.append(MonitoredUser(**dict(record)))
            except ValidationError as e:
                logger.warning("user_row_invalid", user_id=record["id"], error=str(e))
        return users

    async def fetch_maintenance_config(self) -> Optional[Dict[str, Any]]:
        """
        Load the maintenance configuration row.

        Returns:
            Optional[Dict[str, Any]]: Settings keyed by ThresholdConfig
                field name plus ``notification_emails``, or None if no row.
        """

        async def _query() -> Optional[Record]:
            async with self._acquire_connection() as conn:
                return await conn.fetchrow(
                    """
                    SELECT
                        "serviceKmInterval" AS service_km_interval,
                        "serviceMonthInterval" AS service_month_interval,
                        "checkIntervalDays" AS check_interval_days,
                        "notificationEmails" AS notification_emails,
                        "enableEmailAlerts" AS enable_email_alerts
                    FROM maintenanceconfig
                    LIMIT 1
                    """
                )

        record = await self._execute_with_retry("fetch_maintenance_config", _query)
        return dict(record) if record is not None else None


def create_postgres_client(config: DatabaseConfig) -> PostgresClient:
    """Factory function to create a PostgresClient."""
    return PostgresClient(config)
