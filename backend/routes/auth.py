"""
Auth endpoints: email + password accounts.

Flow:
  1) POST /auth/register -> creates the account, returns a JWT access token
  2) POST /auth/login    -> verifies the bcrypt hash, returns a JWT access token
  3) Client sends Authorization: Bearer <token> on protected routes
"""

import logging

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from db_models import User
from middleware.auth import issue_access_token
from middleware.rate_limit import STRICT, rate_limit
from models import LoginRequest, RegisterRequest
from services import account_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])


def _token_response(user: User) -> dict:
    return {
        "accessToken": issue_access_token(user_id=user.id, role=user.role),
        "tokenType": "Bearer",
        "expiresInSeconds": settings.jwt_access_ttl_minutes * 60,
        "user": account_service.serialize_user(user),
    }


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    body: RegisterRequest,
    db: AsyncSession = Depends(get_db),
    _rate=Depends(rate_limit(STRICT)),
):
    user = await account_service.register_user(
        db,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
    )
    response = _token_response(user)
    await db.commit()
    return response


@router.post("/login")
async def login(
    body: LoginRequest,
    db: AsyncSession = Depends(get_db),
    _rate=Depends(rate_limit(STRICT)),
):
    user = await account_service.authenticate(db, email=body.email, password=body.password)
    logger.info(f"User {user.id[:8]} logged in")
    return _token_response(user)
