"""
Storage layer for the fleet alerting system.

Components:
    base: NotificationLogStore and FleetSource protocols
    postgres_client: asyncpg implementation of both protocols
"""

from fleet_alerts.storage.base import FleetSource, NotificationLogStore
from fleet_alerts.storage.postgres_client import (
    NOTIFICATION_LOG_SCHEMA,
    PostgresClient,
    create_postgres_client,
)

__all__: list[str] = [
    # Protocols
    "NotificationLogStore",
    "FleetSource",
    # PostgreSQL
    "PostgresClient",
    "create_postgres_client",
    "NOTIFICATION_LOG_SCHEMA",
]
