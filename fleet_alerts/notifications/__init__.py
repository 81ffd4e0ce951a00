"""
Notification delivery for the fleet alerting system.

Components:
    NotificationDispatcher: Persist and deliver outbound notifications
    RetryManager: Bounded retry of failed notifications
    WebhookReceiver: Authenticate, record and route inbound webhooks
    EmailGateway: SMTP side channel
    ExternalApiClient: HTTP client for the external notification system
"""

from fleet_alerts.notifications.dispatcher import (
    LOCAL_ONLY_RESPONSE,
    NotificationDispatcher,
    create_dispatcher,
)
from fleet_alerts.notifications.email import EmailGateway, create_email_gateway, html_to_text
from fleet_alerts.notifications.external import (
    ExternalApiClient,
    ExternalResponse,
    create_external_client,
)
from fleet_alerts.notifications.retry import RetryManager
from fleet_alerts.notifications.templates import EmailTemplate, build_finding_email
from fleet_alerts.notifications.webhook import (
    WebhookEventRouter,
    WebhookReceiver,
    canonical_json,
    sign_payload,
    verify_signature,
)

__all__ = [
    # Dispatch
    "NotificationDispatcher",
    "create_dispatcher",
    "LOCAL_ONLY_RESPONSE",
    "RetryManager",
    # Channels
    "EmailGateway",
    "create_email_gateway",
    "html_to_text",
    "EmailTemplate",
    "build_finding_email",
    "ExternalApiClient",
    "ExternalResponse",
    "create_external_client",
    # Webhooks
    "WebhookReceiver",
    "WebhookEventRouter",
    "canonical_json",
    "sign_payload",
    "verify_signature",
]
