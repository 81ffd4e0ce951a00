"""
Notification dispatcher.

Turns a notification payload into a persisted log row and a delivery
attempt against the external system, with an optional email side channel.

Flow:
    1. Create a ``pending`` row (sent_to = endpoint or "No configurado")
    2. No endpoint configured: mark ``sent`` locally and stop
    3. POST the envelope; 2xx marks ``sent``, anything else ``failed``
    4. When thresholds allow it, email the recipients (failures logged)

The dispatcher never raises to its caller; every failure is reported in
the returned DispatchResult.
"""

import json
from datetime import datetime, timezone
from typing import Optional

import structlog

from fleet_alerts.errors import DeliveryError, StorageError
from fleet_alerts.models.fleet import ThresholdConfig
from fleet_alerts.models.notifications import (
    NOT_CONFIGURED_DESTINATION,
    DispatchResult,
    NotificationLog,
    NotificationPayload,
)
from fleet_alerts.notifications.email import EmailGateway
from fleet_alerts.notifications.external import ExternalApiClient
from fleet_alerts.notifications.templates import build_finding_email
from fleet_alerts.storage.base import NotificationLogStore

logger = structlog.get_logger(__name__)

LOCAL_ONLY_RESPONSE = "No external system configured; notification stored locally only"


class NotificationDispatcher:
    """
    Delivers notifications and records every attempt.

    Attributes:
        store: Notification log store.
        external_client: Client for the external notification system.
        email_gateway: SMTP gateway for the email side channel.

    Example:
        >>> dispatcher = NotificationDispatcher(store, external_client, email_gateway)
        >>> result = await dispatcher.dispatch(finding.to_payload(), thresholds)
        >>> result.success
        True
    """

    def __init__(
        self,
        store: NotificationLogStore,
        external_client: ExternalApiClient,
        email_gateway: EmailGateway,
    ) -> None:
        self.store = store
        self.external_client = external_client
        self.email_gateway = email_gateway

    async def dispatch(
        self,
        payload: NotificationPayload,
        thresholds: Optional[ThresholdConfig] = None,
    ) -> DispatchResult:
        """
        Record and deliver one notification.

        Args:
            payload: Notification to deliver.
            thresholds: Per-run settings enabling the email side channel.
                Emails are never sent when omitted.

        Returns:
            DispatchResult: Outcome with the id of the created row.
        """
        try:
            log = await self.store.create_log(
                type=payload.type,
                entity_type=payload.entity_type,
                entity_id=payload.entity_id,
                message=payload.message,
                sent_to=self.external_client.endpoint or NOT_CONFIGURED_DESTINATION,
            )
        except StorageError as e:
            logger.error(
                "notification_log_create_failed",
                type=payload.type,
                entity_id=payload.entity_id,
                error=str(e),
            )
            return DispatchResult(success=False, error=f"Storage error: {e}")

        result = await self._deliver(log.id, payload)

        if thresholds is not None:
            await self._send_email(payload, thresholds)

        return result

    async def redeliver(self, log: NotificationLog) -> DispatchResult:
        """
        Re-submit a stored row, updating it in place.

        Only type, entity and message are re-sent. No email is sent and
        no new row is created.

        Args:
            log: Row to re-submit (normally in ``failed`` status).

        Returns:
            DispatchResult: Outcome for the same row id.
        """
        return await self._deliver(log.id, log.to_payload())

    async def _deliver(self, log_id: str, payload: NotificationPayload) -> DispatchResult:
        if not self.external_client.is_configured:
            try:
                await self.store.mark_sent(log_id, LOCAL_ONLY_RESPONSE)
            except StorageError as e:
                logger.error("notification_log_update_failed", log_id=log_id, error=str(e))
                return DispatchResult(success=False, log_id=log_id, error=f"Storage error: {e}")

            logger.info(
                "notification_stored_locally",
                log_id=log_id,
                type=payload.type,
                message=payload.message,
            )
            return DispatchResult(success=True, log_id=log_id)

        try:
            response = await self.external_client.post_notification(payload)
        except DeliveryError as e:
            return await self._record_failure(log_id, payload, e.message)

        try:
            await self.store.mark_sent(
                log_id,
                json.dumps({"status": response.status, "data": response.data}, default=str),
            )
        except StorageError as e:
            logger.error("notification_log_update_failed", log_id=log_id, error=str(e))
            return DispatchResult(success=False, log_id=log_id, error=f"Storage error: {e}")

        logger.info(
            "notification_sent",
            log_id=log_id,
            type=payload.type,
            status=response.status,
        )
        return DispatchResult(success=True, log_id=log_id)

    async def _record_failure(
        self,
        log_id: str,
        payload: NotificationPayload,
        error: str,
    ) -> DispatchResult:
        response = json.dumps(
            {"error": error, "timestamp": datetime.now(timezone.utc).isoformat()}
        )
        try:
            await self.store.mark_failed(log_id, response)
        except StorageError as e:
            logger.error("notification_log_update_failed", log_id=log_id, error=str(e))

        logger.error(
            "notification_delivery_failed",
            log_id=log_id,
            type=payload.type,
            error=error,
        )
        return DispatchResult(success=False, log_id=log_id, error=error)

    async def _send_email(self, payload: NotificationPayload, thresholds: ThresholdConfig) -> None:
        if not thresholds.should_email:
            return

        try:
            template = build_finding_email(payload)
            if template is None:
                return
            sent = await self.email_gateway.send_email(
                thresholds.notification_recipients,
                template.subject,
                template.html,
            )
        except Exception as e:
            logger.error(
                "alert_email_failed",
                type=payload.type,
                entity_id=payload.entity_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return

        if sent:
            logger.info(
                "alert_email_sent",
                type=payload.type,
                entity_id=payload.entity_id,
                recipients=len(thresholds.notification_recipients),
            )


def create_dispatcher(
    store: NotificationLogStore,
    external_client: ExternalApiClient,
    email_gateway: EmailGateway,
) -> NotificationDispatcher:
    """Factory function to create a NotificationDispatcher."""
    return NotificationDispatcher(store, external_client, email_gateway)
