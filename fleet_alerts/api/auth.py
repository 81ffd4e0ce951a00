"""
Bearer token authentication for admin routes.

Tokens are HS256 JWTs issued by the fleet management backend, carrying
``userId`` and ``role`` claims. Admin routes require ``role == "ADMIN"``.

Responses:
    401: Missing, malformed, expired or unverifiable token
    403: Valid token without the admin role
"""

from typing import Any, Dict, Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from fleet_alerts.config.models import AuthConfig

logger = structlog.get_logger(__name__)

_bearer = HTTPBearer(auto_error=False)


def decode_token(token: str, config: AuthConfig) -> Dict[str, Any]:
    """
    Verify and decode a JWT.

    Args:
        token: Encoded token.
        config: Secret, algorithm and admin role.

    Returns:
        Dict[str, Any]: Token claims.

    Raises:
        HTTPException: 401 if no secret is configured or the token is invalid.
    """
    if not config.jwt_secret:
        logger.warning("admin_auth_unavailable", reason="JWT_SECRET not configured")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication is not configured",
        )

    try:
        return jwt.decode(token, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token expired",
        )
    except jwt.InvalidTokenError as e:
        logger.info("admin_token_rejected", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def require_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> Dict[str, Any]:
    """
    FastAPI dependency enforcing an admin bearer token.

    Args:
        request: Incoming request (used to reach the auth settings).
        credentials: Parsed Authorization header.

    Returns:
        Dict[str, Any]: Token claims of the authenticated admin.

    Raises:
        HTTPException: 401 without a valid token, 403 for non-admins.
    """
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token not provided",
        )

    config: AuthConfig = request.app.state.service.config.auth
    claims = decode_token(credentials.credentials, config)

    if claims.get("role") != config.admin_role:
        logger.info("admin_access_denied", user_id=claims.get("userId"), role=claims.get("role"))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: administrator role required",
        )

    return claims
