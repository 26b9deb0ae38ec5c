from datetime import UTC, datetime
from logging import getLogger
from typing import Optional

import jwt
from fastapi import Header, HTTPException

from neptune.config import get_settings
from neptune.models.auth import AuthContext, EntityType
from neptune.models.errors import AuthError

logger = getLogger(__name__)

__all__ = ["decode_authorization", "verify_token"]


def decode_authorization(authorization: Optional[str]) -> AuthContext:
    """Build an :class:`AuthContext` from a ``Bearer`` *authorization* header.

    In *dev_mode* cryptographic checks are skipped and a fixed tenant/user
    context is returned so local environments run without real tokens.

    Raises:
        AuthError: If the header is missing, malformed, expired or lacks a tenant
    """
    settings = get_settings()

    if settings.dev_mode:
        return AuthContext(
            entity_type=EntityType.DEVELOPER,
            tenant_id=settings.dev_tenant_id,
            user_id=settings.dev_user_id,
            display_name="Developer",
        )

    if not authorization:
        logger.info("Missing authorization header")
        raise AuthError("Unauthorized")

    if not authorization.startswith("Bearer "):
        raise AuthError("Invalid authorization header")

    token = authorization[7:]  # Strip "Bearer " prefix

    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise AuthError("Token expired") from exc
    except jwt.InvalidTokenError as exc:
        raise AuthError(f"Invalid token: {exc}") from exc

    if "exp" in payload and datetime.fromtimestamp(payload["exp"], UTC) < datetime.now(UTC):
        raise AuthError("Token expired")

    # Sessions from the dashboard carry the workspace as the tenant
    tenant_id = payload.get("tenant_id") or payload.get("workspace_id")
    user_id = payload.get("user_id") or payload.get("sub")
    if not tenant_id or not user_id:
        raise AuthError("Token is missing tenant or user")

    return AuthContext(
        entity_type=EntityType(payload.get("entity_type", EntityType.USER.value)),
        tenant_id=tenant_id,
        user_id=user_id,
        email=payload.get("email"),
        display_name=payload.get("name"),
        permissions=set(payload.get("permissions", ["read", "write"])),
    )


async def verify_token(authorization: str = Header(None)) -> AuthContext:  # noqa: D401 – FastAPI dependency
    """Return an :class:`AuthContext` for a valid JWT bearer header or answer 401."""
    try:
        return decode_authorization(authorization)
    except AuthError as exc:
        raise HTTPException(status_code=401, detail=exc.message, headers={"WWW-Authenticate": "Bearer"}) from exc
