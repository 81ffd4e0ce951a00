"""
External notification system client.

Posts notification envelopes to ``{base_url}/notifications`` with a bearer
token. Every failure mode (network error, timeout, non-2xx status) is
surfaced as a DeliveryError so the dispatcher has a single error path.

Envelope:
    {
        "type": "vtv_expired",
        "entityType": "vehicle",
        "entityId": "42",
        "message": "...",
        "data": {...},
        "severity": "critical",
        "daysRemaining": -3,
        "timestamp": "2025-03-01T11:00:00.000000+00:00",
        "source": "fleet-alerts"
    }
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp
import structlog
from pydantic import BaseModel

from fleet_alerts.config.models import ExternalApiConfig
from fleet_alerts.errors import ConfigurationError, DeliveryError
from fleet_alerts.models.notifications import NotificationPayload

logger = structlog.get_logger(__name__)


class ExternalResponse(BaseModel):
    """Status and parsed body of a successful POST."""

    model_config = {"frozen": True}

    status: int
    data: Any = None


class ExternalApiClient:
    """
    Async client for the external notification system.

    Attributes:
        base_url: Base URL of the external system (None when unconfigured).
        api_key: Bearer token.
        timeout_seconds: Total request timeout.
        source: Value of the envelope ``source`` field.

    Example:
        >>> client = ExternalApiClient(ExternalApiConfig(url="https://erp.example.com"))
        >>> response = await client.post_notification(payload)
        >>> response.status
        201
    """

    def __init__(self, config: ExternalApiConfig) -> None:
        self.base_url = config.url
        self.api_key = config.api_key
        self.timeout_seconds = config.timeout_seconds
        self.source = config.source

        self._session: Optional[aiohttp.ClientSession] = None

        logger.info(
            "external_client_initialized",
            base_url=self.base_url,
            configured=self.is_configured,
        )

    @property
    def is_configured(self) -> bool:
        """Check whether an external endpoint is configured."""
        return self.base_url is not None

    @property
    def endpoint(self) -> Optional[str]:
        """Full URL notifications are posted to."""
        if self.base_url is None:
            return None
        return f"{self.base_url}/notifications"

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure aiohttp session is created."""
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(
                timeout=timeout,
                headers={"User-Agent": "fleet-alerts/1.0"},
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            logger.debug("external_client_session_closed", base_url=self.base_url)

    def build_envelope(
        self,
        payload: NotificationPayload,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Wrap a payload with timestamp and source.

        Args:
            payload: Notification to send.
            now: Timestamp override (defaults to current UTC time).

        Returns:
            Dict[str, Any]: JSON-ready envelope.
        """
        envelope = payload.to_wire()
        envelope["timestamp"] = (now or datetime.now(timezone.utc)).isoformat()
        envelope["source"] = self.source
        return envelope

    async def post_notification(self, payload: NotificationPayload) -> ExternalResponse:
        """
        POST a notification envelope to the external system.

        Args:
            payload: Notification to send.

        Returns:
            ExternalResponse: HTTP status and parsed response body.

        Raises:
            ConfigurationError: If no endpoint is configured.
            DeliveryError: On network error, timeout or non-2xx status.
        """
        url = self.endpoint
        if url is None:
            raise ConfigurationError("external API URL not configured")

        session = await self._ensure_session()
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        try:
            async with session.post(url, json=self.build_envelope(payload), headers=headers) as response:
                body = await self._read_body(response)

                if response.status < 200 or response.status >= 300:
                    message = self._error_message(response, body)
                    logger.error(
                        "external_request_failed",
                        url=url,
                        status=response.status,
                        error=message,
                    )
                    raise DeliveryError(message, status=response.status)

                return ExternalResponse(status=response.status, data=body)

        except aiohttp.ClientError as e:
            logger.error("external_client_error", url=url, error=str(e))
            raise DeliveryError(f"Request failed: {e}")
        except asyncio.TimeoutError:
            logger.error("external_timeout", url=url, timeout=self.timeout_seconds)
            raise DeliveryError(f"Request timeout after {self.timeout_seconds}s")

    @staticmethod
    async def _read_body(response: aiohttp.ClientResponse) -> Any:
        text = await response.text()
        if not text:
            return None
        try:
            return await response.json(content_type=None)
        except ValueError:
            return text

    @staticmethod
    def _error_message(response: aiohttp.ClientResponse, body: Any) -> str:
        # Prefer the message the external system reports
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"Request failed with status code {response.status}"


def create_external_client(config: ExternalApiConfig) -> ExternalApiClient:
    """Factory function to create an ExternalApiClient."""
    return ExternalApiClient(config)
