"""
Shared FastAPI dependencies.

Routers import the DB session, auth guards and pagination from here so the
guards are defined in one place.
"""

from __future__ import annotations

import hmac
from typing import Optional, TypedDict

from fastapi import Depends, Header, Query
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from db_models import User
from domain.enums import UserRole
from domain.errors import PermissionDeniedError, UnauthorizedError
from middleware.auth import get_token_claims
from utils.safe_logging import log_security_event


class Pagination(TypedDict):
    limit: int
    offset: int


def pagination_params(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0, le=100_000),
) -> Pagination:
    return {"limit": limit, "offset": offset}


async def get_current_user(
    claims: Optional[dict] = Depends(get_token_claims),
    db: AsyncSession = Depends(get_db),
) -> Optional[User]:
    """User for the bearer token, or None when no token was sent."""
    if not claims:
        return None
    return await db.get(User, claims["sub"])


async def require_authenticated_user(
    user: Optional[User] = Depends(get_current_user),
) -> User:
    """Require a valid bearer token for an existing account."""
    if user is None:
        raise UnauthorizedError("Authentication required")
    return user


def _admin_key_matches(supplied: Optional[str]) -> bool:
    if not settings.admin_orders_key or not supplied:
        return False
    return hmac.compare_digest(supplied.encode("utf-8"), settings.admin_orders_key.encode("utf-8"))


async def require_admin(
    user: Optional[User] = Depends(get_current_user),
    x_admin_key: Optional[str] = Header(None, alias="X-Admin-Key"),
) -> Optional[User]:
    """
    Require an admin.

    - Bearer token for a user with role == 'admin' (returns the User), or
    - legacy X-Admin-Key matching ADMIN_ORDERS_KEY (returns None).
    """
    if user is not None and user.role == UserRole.ADMIN.value:
        return user
    if _admin_key_matches(x_admin_key):
        return None
    if user is None and not x_admin_key:
        raise UnauthorizedError("Authentication required")

    log_security_event(
        "admin_access_denied",
        user_id=user.id if user else None,
        admin_key_supplied=bool(x_admin_key),
    )
    raise PermissionDeniedError("Admin access required")
