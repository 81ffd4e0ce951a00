"""
Exception hierarchy for the fleet alerting system.

Errors map onto the failure classes the system distinguishes:

    ConfigurationError: A feature lacks required settings and stays disabled.
    DeliveryError: An outbound POST failed (network, timeout, non-2xx).
    AuthError: An inbound webhook carried a missing or invalid signature.
    WebhookPayloadError: An inbound webhook body is not a JSON object.
    EvaluationError: An entity snapshot could not be evaluated.
    StorageError: The notification log store failed.
"""

from typing import Optional


class FleetAlertsError(Exception):
    """Base exception for all fleet alerting errors."""

    pass


class ConfigurationError(FleetAlertsError):
    """Raised when a feature is missing required configuration."""

    pass


class DeliveryError(FleetAlertsError):
    """
    Raised when an outbound notification could not be delivered.

    Attributes:
        message: Human-readable failure description.
        status: HTTP status code if a response was received.
    """

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        self.message = message
        self.status = status
        super().__init__(message)


class AuthError(FleetAlertsError):
    """Raised when an inbound webhook fails signature verification."""

    pass


class WebhookPayloadError(FleetAlertsError):
    """Raised when an inbound webhook body cannot be processed."""

    pass


class EvaluationError(FleetAlertsError):
    """
    Raised when an entity snapshot cannot be evaluated.

    Attributes:
        entity_id: Identifier of the offending entity.
    """

    def __init__(self, message: str, entity_id: Optional[str] = None) -> None:
        self.entity_id = entity_id
        super().__init__(message)


class StorageError(FleetAlertsError):
    """Base exception for notification log storage errors."""

    pass


class StorageConnectionError(StorageError):
    """Raised when the storage backend is unreachable."""

    pass


class StorageOperationError(StorageError):
    """Raised when a storage operation fails after retries."""

    pass
