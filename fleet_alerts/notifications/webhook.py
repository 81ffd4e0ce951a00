"""
Inbound webhook authentication, logging and routing.

Webhooks are authenticated with an HMAC-SHA256 signature over the
canonical JSON of the parsed body. Verified events are recorded in the
notification log (status ``received``) before being routed to a handler.

Signing:
    signature = hex(HMAC_SHA256(secret, canonical_json(payload)))

Example:
    >>> payload = {"event": "repair_completed", "vehicleId": "7"}
    >>> signature = sign_payload(payload, "s3cret")
    >>> verify_signature(payload, signature, "s3cret")
    True
"""

import hashlib
import hmac
import json
from typing import Any, Awaitable, Callable, Dict, List, Optional

import structlog

from fleet_alerts.errors import AuthError, WebhookPayloadError
from fleet_alerts.models.notifications import (
    INCOMING_WEBHOOK_DESTINATION,
    WEBHOOK_RECEIVED_TYPE,
    NotificationLog,
    NotificationStatus,
)
from fleet_alerts.storage.base import NotificationLogStore

logger = structlog.get_logger(__name__)

WebhookHandler = Callable[[Dict[str, Any]], Awaitable[None]]


def canonical_json(payload: Any) -> str:
    """
    Serialize a parsed JSON body in compact form, keys in received order.

    Args:
        payload: Parsed JSON value.

    Returns:
        str: Compact JSON without whitespace and with non-ASCII kept as-is.
    """
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def sign_payload(payload: Any, secret: str) -> str:
    """
    Compute the hex HMAC-SHA256 signature of a payload.

    Args:
        payload: Parsed JSON value.
        secret: Shared secret.

    Returns:
        str: Lowercase hex digest.
    """
    digest = hmac.new(
        secret.encode("utf-8"),
        canonical_json(payload).encode("utf-8"),
        hashlib.sha256,
    )
    return digest.hexdigest()


def verify_signature(payload: Any, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Check a webhook signature in constant time.

    Args:
        payload: Parsed JSON value.
        signature: Hex signature from the request header.
        secret: Shared secret.

    Returns:
        bool: True only if both signature and secret are present and match.
    """
    if not signature or not secret:
        return False

    expected = sign_payload(payload, secret)
    provided = signature.strip().lower().encode("utf-8")
    return hmac.compare_digest(expected.encode("ascii"), provided)


async def _log_repair_completed(payload: Dict[str, Any]) -> None:
    logger.info("webhook_repair_completed", vehicle_id=payload.get("vehicleId"))


async def _log_inspection_reminder(payload: Dict[str, Any]) -> None:
    logger.info("webhook_inspection_reminder", entity_id=payload.get("entityId"))


async def _log_payment_confirmation(payload: Dict[str, Any]) -> None:
    logger.info("webhook_payment_confirmation", entity_id=payload.get("entityId"))


class WebhookEventRouter:
    """
    Routes verified webhook events to handlers by event name.

    Default handlers only log. Use ``register`` to add or replace one.

    Example:
        >>> router = WebhookEventRouter()
        >>> router.register("repair_completed", my_handler)
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, WebhookHandler] = {
            "repair_completed": _log_repair_completed,
            "inspection_reminder": _log_inspection_reminder,
            "payment_confirmation": _log_payment_confirmation,
        }

    @property
    def events(self) -> List[str]:
        """Registered event names."""
        return sorted(self._handlers)

    def register(self, event: str, handler: WebhookHandler) -> None:
        """Add or replace the handler for an event."""
        self._handlers[event] = handler

    async def route(self, payload: Dict[str, Any]) -> bool:
        """
        Invoke the handler for the payload's ``event`` (or ``type``).

        Handler exceptions are logged and not propagated.

        Args:
            payload: Verified webhook body.

        Returns:
            bool: True if a handler ran to completion.
        """
        event = payload.get("event") or payload.get("type")
        handler = self._handlers.get(event) if isinstance(event, str) else None

        if handler is None:
            logger.info("webhook_event_unhandled", webhook_event=event)
            return False

        try:
            await handler(payload)
        except Exception as e:
            logger.error(
                "webhook_handler_failed",
                webhook_event=event,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        return True


class WebhookReceiver:
    """
    Authenticates, records and routes inbound webhooks.

    Attributes:
        store: Notification log store.
        secret: Shared HMAC secret. When unset every webhook is rejected.
        router: Event router.
    """

    def __init__(
        self,
        store: NotificationLogStore,
        secret: Optional[str],
        router: Optional[WebhookEventRouter] = None,
    ) -> None:
        self.store = store
        self.secret = secret
        self.router = router or WebhookEventRouter()

        if not secret:
            logger.warning("webhook_secret_missing", effect="all webhooks will be rejected")

    async def receive(self, payload: Any, signature: Optional[str]) -> NotificationLog:
        """
        Process one inbound webhook.

        Args:
            payload: Parsed JSON body.
            signature: Value of the signature header.

        Returns:
            NotificationLog: The stored ``received`` row.

        Raises:
            AuthError: If no secret is configured or the signature is
                missing or invalid. Nothing is stored in that case.
            WebhookPayloadError: If the body is not a JSON object.
            StorageError: If the row cannot be stored.
        """
        if not self.secret:
            logger.warning("webhook_rejected", reason="secret_not_configured")
            raise AuthError("Webhook secret not configured")

        if not verify_signature(payload, signature, self.secret):
            logger.warning("webhook_rejected", reason="invalid_signature")
            raise AuthError("Invalid HMAC signature")

        if not isinstance(payload, dict):
            raise WebhookPayloadError("Webhook body must be a JSON object")

        event = payload.get("event")
        log = await self.store.create_log(
            type=WEBHOOK_RECEIVED_TYPE,
            entity_type=_text(payload.get("entityType")) or "external",
            entity_id=_text(payload.get("entityId")) or _text(payload.get("id")) or "unknown",
            message=_text(payload.get("message")) or f"Webhook: {event or 'unknown event'}",
            sent_to=INCOMING_WEBHOOK_DESTINATION,
            status=NotificationStatus.RECEIVED,
            response=canonical_json(payload),
        )

        logger.info("webhook_received", log_id=log.id, webhook_event=event)

        await self.router.route(payload)
        return log


def _text(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)
