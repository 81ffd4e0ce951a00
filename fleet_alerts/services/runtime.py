"""
AlertService: component container for the fleet alerting service.

Builds every component once from an AppConfig and hands each its
collaborators explicitly. The HTTP layer and the scheduler reach the
components through this object.

Lifecycle:
    start(): connect the database, ensure the schema, start the scheduler
    stop(): stop the scheduler, close HTTP sessions, disconnect the database
"""

from typing import Optional

import structlog

from fleet_alerts.config.models import AppConfig
from fleet_alerts.detection.evaluator import create_evaluator
from fleet_alerts.models.fleet import ThresholdConfig
from fleet_alerts.notifications.dispatcher import create_dispatcher
from fleet_alerts.notifications.email import create_email_gateway
from fleet_alerts.notifications.external import create_external_client
from fleet_alerts.notifications.retry import RetryManager
from fleet_alerts.notifications.webhook import WebhookEventRouter, WebhookReceiver
from fleet_alerts.scheduler.runner import AlertScheduler, EvaluationRunner
from fleet_alerts.storage.base import FleetSource, NotificationLogStore
from fleet_alerts.storage.postgres_client import PostgresClient, create_postgres_client

logger = structlog.get_logger(__name__)


def default_thresholds(config: AppConfig) -> ThresholdConfig:
    """Build the fallback ThresholdConfig from configured defaults."""
    defaults = config.thresholds
    return ThresholdConfig(
        service_km_interval=defaults.service_km_interval,
        service_month_interval=defaults.service_month_interval,
        check_interval_days=defaults.check_interval_days,
        notification_recipients=defaults.notification_recipients,
        enable_email_alerts=defaults.enable_email_alerts,
    )


class AlertService:
    """
    Owns and wires the alerting components.

    The PostgreSQL client backs both storage protocols unless a store and
    fleet source are supplied, in which case no database is opened.

    Attributes:
        config: Application configuration.
        store: Notification log store.
        fleet_source: Fleet snapshot source.
        email_gateway: SMTP gateway.
        external_client: External notification system client.
        dispatcher: Notification dispatcher.
        retry_manager: Failed notification retry.
        webhook_receiver: Inbound webhook handling.
        runner: Evaluation runner.
        scheduler: Daily run scheduler.

    Example:
        >>> service = AlertService(load_config())
        >>> await service.start()
        >>> summary = await service.runner.run()
        >>> await service.stop()
    """

    def __init__(
        self,
        config: AppConfig,
        store: Optional[NotificationLogStore] = None,
        fleet_source: Optional[FleetSource] = None,
    ) -> None:
        self.config = config

        self.postgres: Optional[PostgresClient] = None
        if store is None or fleet_source is None:
            self.postgres = create_postgres_client(config.database)

        self.store: NotificationLogStore = store if store is not None else self.postgres
        self.fleet_source: FleetSource = (
            fleet_source if fleet_source is not None else self.postgres
        )

        self.email_gateway = create_email_gateway(config.email)
        self.external_client = create_external_client(config.external_api)
        self.dispatcher = create_dispatcher(self.store, self.external_client, self.email_gateway)
        self.retry_manager = RetryManager(self.store, self.dispatcher)
        self.webhook_router = WebhookEventRouter()
        self.webhook_receiver = WebhookReceiver(
            self.store, config.webhook.secret, self.webhook_router
        )

        self.evaluator = create_evaluator()
        self.runner = EvaluationRunner(
            self.fleet_source,
            self.evaluator,
            self.dispatcher,
            default_thresholds(config),
            legacy_recipient=config.thresholds.legacy_recipient,
        )
        self.scheduler = AlertScheduler(
            self.runner,
            run_times=config.scheduler.parsed_run_times,
            timezone=config.scheduler.timezone,
            run_on_start=config.scheduler.run_on_start,
            start_delay_seconds=config.scheduler.start_delay_seconds,
        )

        self._started = False

    async def start(self) -> None:
        """
        Start the service.

        Raises:
            StorageConnectionError: If the database is unreachable.
        """
        if self._started:
            return

        if self.postgres is not None:
            await self.postgres.connect()
            await self.postgres.ensure_schema()

        self.scheduler.start()
        self._started = True
        logger.info(
            "alert_service_started",
            email_enabled=self.email_gateway.enabled,
            external_api_configured=self.external_client.is_configured,
            webhook_secret_configured=bool(self.config.webhook.secret),
        )

    async def stop(self) -> None:
        """Stop the service. Safe to call multiple times."""
        await self.scheduler.stop()
        await self.external_client.close()

        if self.postgres is not None:
            await self.postgres.disconnect()

        self._started = False
        logger.info("alert_service_stopped")


def create_alert_service(config: AppConfig) -> AlertService:
    """Factory function to create an AlertService backed by PostgreSQL."""
    return AlertService(config)
