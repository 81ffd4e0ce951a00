"""
FastAPI application for the fleet alerting service.

This module creates and configures the FastAPI application with:
- Notification routes under /api/notifications
- An open health endpoint at /health
- Lifespan events starting and stopping the AlertService
- Uniform ``{"error": ...}`` JSON error bodies

The service object is passed in explicitly and stored on ``app.state``;
routes reach every component through it.
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.exceptions import HTTPException as StarletteHTTPException

from fleet_alerts.errors import StorageError

logger = structlog.get_logger(__name__)

API_PREFIX = "/api/notifications"


class HealthResponse(BaseModel):
    """Response model for the health endpoint."""

    status: str = "ok"
    email_enabled: bool = False
    external_api_configured: bool = False


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    Start the service on startup and stop it on shutdown.

    Args:
        app: FastAPI application instance.
    """
    service = app.state.service
    logger.info("api_starting")
    await service.start()
    logger.info("api_ready")

    try:
        yield
    finally:
        logger.info("api_shutting_down")
        await service.stop()
        logger.info("api_shutdown_complete")


def _validation_message(exc: RequestValidationError) -> str:
    fields = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part != "body"]
        fields.append(".".join(location) or "body")
    if not fields:
        return "Invalid request"
    return f"Invalid or missing fields: {', '.join(fields)}"


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": _validation_message(exc)})


async def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("api_storage_error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"error": "Storage unavailable"})


def create_app(service: Any) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        service: AlertService (or any object exposing the same components).

    Returns:
        FastAPI: Configured application.

    Example:
        >>> app = create_app(AlertService(load_config()))
        >>> uvicorn.run(app, host="0.0.0.0", port=8080)
    """
    app = FastAPI(
        title="Fleet Alerts",
        description="Compliance alerting for fleet vehicles and drivers",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )
    app.state.service = service

    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(StorageError, _storage_error_handler)

    from fleet_alerts.api.notifications import router as notifications_router

    app.include_router(notifications_router, prefix=API_PREFIX, tags=["Notifications"])

    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health() -> Dict[str, Any]:
        """Report which delivery channels are configured."""
        return {
            "status": "ok",
            "email_enabled": service.email_gateway.enabled,
            "external_api_configured": service.external_client.is_configured,
        }

    logger.info("fastapi_app_created")

    return app
