"""
Notification API endpoints.

Provides:
    POST /api/notifications/send    - Dispatch a notification (admin)
    POST /api/notifications/webhook - Receive a signed inbound webhook
    GET  /api/notifications/logs    - List notification log rows (admin)
    POST /api/notifications/retry   - Retry failed notifications (admin)
    GET  /api/notifications/stats   - Counts per status (admin)
"""

from typing import Any, Dict, List, Optional

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from fleet_alerts.api.auth import require_admin
from fleet_alerts.errors import AuthError, WebhookPayloadError
from fleet_alerts.models.notifications import NotificationPayload, NotificationStatus

logger = structlog.get_logger(__name__)

router = APIRouter()


class SendRequest(BaseModel):
    """Request body for POST /send."""

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "example": {
                "type": "vtv_expiring",
                "entityType": "vehicle",
                "entityId": "42",
                "message": "AVISO: VTV del vehículo AB123CD vence en 20 días",
            }
        },
    }

    type: str = Field(..., min_length=1)
    entity_type: str = Field(..., min_length=1, alias="entityType")
    entity_id: str = Field(..., min_length=1, alias="entityId")
    message: str = Field(..., min_length=1)
    data: Optional[Dict[str, Any]] = None

    def to_payload(self) -> NotificationPayload:
        """Convert to a dispatchable payload."""
        return NotificationPayload(
            type=self.type,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            message=self.message,
            data=self.data,
        )


class DispatchResponse(BaseModel):
    """Response model for POST /send."""

    success: bool
    logId: Optional[str] = None
    error: Optional[str] = None


class WebhookResponse(BaseModel):
    """Response model for POST /webhook."""

    received: bool = True
    message: str = "Webhook processed"


class RetryResponse(BaseModel):
    """Response model for POST /retry."""

    retried: int
    succeeded: int
    failed: int


class StatsResponse(BaseModel):
    """Response model for GET /stats."""

    total: int
    sent: int
    failed: int
    pending: int


@router.post("/send", response_model=DispatchResponse, response_model_exclude_none=True)
async def send_notification(
    body: SendRequest,
    request: Request,
    claims: Dict[str, Any] = Depends(require_admin),
) -> Dict[str, Any]:
    """
    Dispatch a notification on behalf of an administrator.

    No email is sent for manual notifications.
    """
    service = request.app.state.service
    result = await service.dispatcher.dispatch(body.to_payload())

    logger.info(
        "manual_notification_dispatched",
        user_id=claims.get("userId"),
        type=body.type,
        success=result.success,
    )
    return result.to_api()


@router.post("/webhook", response_model=WebhookResponse)
async def receive_webhook(request: Request) -> Any:
    """
    Receive a signed webhook from the external system.

    The signature is read from the configured header (X-Signature by
    default). Responds 400 when that header is missing, the signature is
    invalid, or the body is not a JSON object.
    """
    service = request.app.state.service
    header_name = service.config.webhook.signature_header
    signature = request.headers.get(header_name)
    if not signature:
        return JSONResponse(
            status_code=400,
            content={"error": f"{header_name} header is required"},
        )

    try:
        payload = await request.json()
    except ValueError:
        return JSONResponse(status_code=400, content={"error": "Body must be valid JSON"})

    try:
        await service.webhook_receiver.receive(payload, signature)
    except (AuthError, WebhookPayloadError) as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    return WebhookResponse(received=True, message="Webhook processed")


@router.get("/logs")
async def get_logs(
    request: Request,
    limit: int = Query(default=100, ge=1, le=1000),
    status: Optional[NotificationStatus] = Query(default=None),
    claims: Dict[str, Any] = Depends(require_admin),
) -> List[Dict[str, Any]]:
    """List notification log rows, newest first."""
    service = request.app.state.service
    logs = await service.store.list_logs(limit=limit, status=status)
    return [log.to_api() for log in logs]


@router.post("/retry", response_model=RetryResponse)
async def retry_notifications(
    request: Request,
    claims: Dict[str, Any] = Depends(require_admin),
) -> RetryResponse:
    """Retry one batch of failed notifications."""
    service = request.app.state.service
    summary = await service.retry_manager.retry_failed()
    return RetryResponse(**summary.model_dump())


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    request: Request,
    claims: Dict[str, Any] = Depends(require_admin),
) -> StatsResponse:
    """Notification counts per status."""
    service = request.app.state.service
    stats = await service.store.get_stats()
    return StatsResponse(**stats.model_dump())
