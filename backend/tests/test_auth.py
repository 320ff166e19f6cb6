"""
Tests for password hashing, JWT access tokens, accounts and admin roles.

Tests: hash/verify_password, issue/decode_access_token, get_token_claims,
account_service (register, authenticate, profile, bootstrap, grant_role),
require_admin dependency.
"""
import os, sys
sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import asyncio
import time

import jwt
import pytest
from fastapi import HTTPException
from sqlalchemy import func, select

from config import settings
from db_models import User
from deps import require_admin
from domain.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    UnauthorizedError,
    ValidationError,
)
from middleware.auth import (
    decode_access_token,
    get_token_claims,
    hash_password,
    issue_access_token,
    verify_password,
)
from services import account_service


class TestPasswords:

    @pytest.mark.unit
    def test_hash_and_verify(self):
        hashed = hash_password("correct-horse")
        assert hashed != "correct-horse"
        assert verify_password("correct-horse", hashed) is True
        assert verify_password("wrong-horse", hashed) is False

    @pytest.mark.unit
    def test_missing_or_malformed_hash(self):
        assert verify_password("anything", None) is False
        assert verify_password("anything", "not-a-bcrypt-hash") is False


class TestAccessTokens:

    @pytest.mark.unit
    def test_round_trip(self):
        claims = decode_access_token(issue_access_token(user_id="user-1", role="admin"))
        assert claims["sub"] == "user-1"
        assert claims["role"] == "admin"
        assert claims["iss"] == settings.jwt_issuer
        assert claims["exp"] - claims["iat"] <= settings.jwt_access_ttl_minutes * 60

    @pytest.mark.unit
    def test_expired(self):
        now = int(time.time())
        token = jwt.encode(
            {"iss": settings.jwt_issuer, "sub": "u", "iat": now - 7200, "exp": now - 3600},
            settings.jwt_secret,
            algorithm="HS256",
        )
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token)
        assert exc_info.value.status_code == 401
        assert exc_info.value.detail == "Access token expired."

    @pytest.mark.unit
    def test_wrong_secret(self):
        now = int(time.time())
        token = jwt.encode(
            {"iss": settings.jwt_issuer, "sub": "u", "iat": now, "exp": now + 60},
            "some-other-secret",
            algorithm="HS256",
        )
        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(token)
        assert exc_info.value.detail == "Invalid access token."

    @pytest.mark.unit
    def test_invoice_token_is_not_an_access_token(self):
        from services.invoice_service import issue_invoice_token

        with pytest.raises(HTTPException) as exc_info:
            decode_access_token(issue_invoice_token(order_id="o", user_id="u"))
        assert exc_info.value.status_code == 401

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_claims_dependency(self):
        assert await get_token_claims(authorization=None) is None
        assert await get_token_claims(authorization="Basic abc") is None
        token = issue_access_token(user_id="u", role="user")
        claims = await get_token_claims(authorization=f"Bearer {token}")
        assert claims["sub"] == "u"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bad_bearer_token_is_401(self):
        with pytest.raises(HTTPException) as exc_info:
            await get_token_claims(authorization="Bearer not.a.jwt")
        assert exc_info.value.status_code == 401


class TestAccounts:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_register_and_authenticate(self, db_session):
        user = await account_service.register_user(
            db_session, email=" New.Shopper@Example.com ", password="long-enough",
            first_name="New", last_name="Shopper",
        )
        assert user.email == "new.shopper@example.com"
        assert user.name == "New Shopper"
        assert user.role == "user"

        found = await account_service.authenticate(
            db_session, email="new.shopper@example.com", password="long-enough",
        )
        assert found.id == user.id

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_duplicate_email(self, db_session, user):
        with pytest.raises(ConflictError):
            await account_service.register_user(
                db_session, email="SHOPPER@example.com", password="long-enough",
                first_name="A", last_name="B",
            )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_short_password(self, db_session):
        with pytest.raises(ValidationError):
            await account_service.register_user(
                db_session, email="a@b.co", password="short", first_name="A", last_name="B",
            )

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_password_byte_limit(self, db_session):
        # 24 three-byte characters fit exactly; one more does not
        user = await account_service.register_user(
            db_session, email="multi@example.com", password="€" * 24, first_name="A", last_name="B",
        )
        assert user.password_hash
        with pytest.raises(ValidationError) as exc_info:
            await account_service.register_user(
                db_session, email="multi2@example.com", password="€" * 25, first_name="A", last_name="B",
            )
        assert exc_info.value.details == {"field": "password"}

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_wrong_password_and_unknown_email_look_the_same(self, db_session, user):
        with pytest.raises(UnauthorizedError) as wrong:
            await account_service.authenticate(db_session, email=user.email, password="nope-nope")
        with pytest.raises(UnauthorizedError) as unknown:
            await account_service.authenticate(db_session, email="ghost@example.com", password="nope-nope")
        assert wrong.value.message == unknown.value.message == "Invalid email or password"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_profile(self, db_session, user):
        await account_service.update_profile(
            db_session, user, first_name=" Asha ", last_name="Rao",
            phone="+91 98765 43210", address="  7 Park Street, Kolkata  ",
        )
        assert user.name == "Asha Rao"
        assert user.phone == "+919876543210"
        assert user.address == "7 Park Street, Kolkata"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_update_profile_requires_names(self, db_session, user):
        with pytest.raises(ValidationError) as exc_info:
            await account_service.update_profile(db_session, user, first_name="", last_name="Rao")
        assert exc_info.value.message == "First name and last name are required"


class TestAdminRoles:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bootstrap_first_admin(self, db_session, user):
        assert await account_service.admin_exists(db_session) is False
        await account_service.bootstrap_admin(db_session, user)
        assert user.role == "admin"
        assert await account_service.admin_exists(db_session) is True

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_bootstrap_only_once(self, db_session, admin_user, user):
        with pytest.raises(PermissionDeniedError) as exc_info:
            await account_service.bootstrap_admin(db_session, user)
        assert exc_info.value.message == "Admin already exists. Ask an existing admin to grant access."
        assert user.role == "user"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_concurrent_bootstrap_grants_one_admin(self, file_sessions):
        async with file_sessions() as db:
            first = User(email="first@example.com", password_hash=hash_password("first-pass"), role="user")
            second = User(email="second@example.com", password_hash=hash_password("second-pass"), role="user")
            db.add_all([first, second])
            await db.commit()
            user_ids = [first.id, second.id]

        async def bootstrap(user_id):
            async with file_sessions() as db:
                caller = await account_service.get_user(db, user_id)
                try:
                    await account_service.bootstrap_admin(db, caller)
                except PermissionDeniedError:
                    await db.rollback()
                    return False
                await db.commit()
                return True

        outcomes = await asyncio.gather(*(bootstrap(user_id) for user_id in user_ids))

        assert sorted(outcomes) == [False, True]
        async with file_sessions() as db:
            admins = await db.scalar(select(func.count(User.id)).where(User.role == "admin"))
            assert admins == 1

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_grant_and_revoke(self, db_session, admin_user, user):
        await account_service.grant_role(db_session, granted_by=admin_user, user_id=user.id, role="admin")
        assert user.role == "admin"
        await account_service.grant_role(db_session, granted_by=None, user_id=user.id, role="user")
        assert user.role == "user"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_grant_unknown_user(self, db_session, admin_user):
        with pytest.raises(NotFoundError):
            await account_service.grant_role(db_session, granted_by=admin_user, user_id="missing", role="admin")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_grant_invalid_role(self, db_session, admin_user, user):
        with pytest.raises(ValidationError):
            await account_service.grant_role(db_session, granted_by=admin_user, user_id=user.id, role="owner")


class TestRequireAdmin:

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_admin_user(self, admin_user):
        assert await require_admin(user=admin_user, x_admin_key=None) is admin_user

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_admin_key(self, monkeypatch):
        monkeypatch.setattr(settings, "admin_orders_key", "legacy-key")
        assert await require_admin(user=None, x_admin_key="legacy-key") is None

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_wrong_admin_key(self, monkeypatch):
        monkeypatch.setattr(settings, "admin_orders_key", "legacy-key")
        with pytest.raises(PermissionDeniedError):
            await require_admin(user=None, x_admin_key="guess")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_key_disabled_when_unset(self, monkeypatch):
        monkeypatch.setattr(settings, "admin_orders_key", "")
        with pytest.raises(PermissionDeniedError):
            await require_admin(user=None, x_admin_key="anything")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_anonymous(self):
        with pytest.raises(UnauthorizedError):
            await require_admin(user=None, x_admin_key=None)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_regular_user(self, user):
        with pytest.raises(PermissionDeniedError) as exc_info:
            await require_admin(user=user, x_admin_key=None)
        assert exc_info.value.message == "Admin access required"
