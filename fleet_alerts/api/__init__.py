"""
HTTP API for the fleet alerting service.

Components:
    app: create_app factory, lifespan and error handlers
    auth: Admin bearer token dependency
    notifications: /api/notifications routes
"""

from fleet_alerts.api.app import API_PREFIX, create_app
from fleet_alerts.api.auth import decode_token, require_admin

__all__: list[str] = [
    "create_app",
    "API_PREFIX",
    "require_admin",
    "decode_token",
]
