"""Minimal auth dependencies.

Stub implementation that extracts tenant_id/user_id from the bearer token and
the requester's grant from headers. Real identity and grant lookup belong to
the account system in front of this service.
"""

import uuid
from typing import Annotated

from fastapi import Header, HTTPException, status

from backend.app.db.context import RequestContext
from backend.app.models.access import AccessPolicy

DEFAULT_TENANT_ID = uuid.UUID("00000000-0000-0000-0000-000000000001")
DEFAULT_USER_ID = uuid.UUID("00000000-0000-0000-0000-000000000002")


async def get_current_context(
    authorization: Annotated[str | None, Header()] = None,
) -> RequestContext:
    """Extract request context from authorization header.

    Stub implementation that either:
    - Parses a simple "Bearer <tenant_id>:<user_id>" format
    - Returns development defaults if no header

    Args:
        authorization: Authorization header (e.g., "Bearer <token>")

    Returns:
        RequestContext with tenant_id and user_id

    Raises:
        HTTPException: If authorization is invalid
    """
    if not authorization:
        return RequestContext(tenant_id=DEFAULT_TENANT_ID, user_id=DEFAULT_USER_ID)

    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = authorization[7:]  # Strip "Bearer "

    if ":" in token:
        try:
            tenant_id_str, user_id_str = token.split(":", 1)
            return RequestContext(
                tenant_id=uuid.UUID(tenant_id_str),
                user_id=uuid.UUID(user_id_str),
            )
        except ValueError as e:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token format (expected tenant_id:user_id)",
                headers={"WWW-Authenticate": "Bearer"},
            ) from e

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid bearer token",
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_access_policy(
    x_access_level: Annotated[int, Header(ge=0)] = 0,
    x_access_tags: Annotated[str | None, Header()] = None,
) -> AccessPolicy:
    """Requester's grant from X-Access-Level / X-Access-Tags (comma-separated)."""
    tags = [tag for tag in (x_access_tags or "").split(",") if tag.strip()]
    return AccessPolicy(level=x_access_level, tags=tags)
