"""
Account service: registration, login, profile and admin role management.
"""
import logging

from sqlalchemy import exists, func, select, update
from sqlalchemy.orm import aliased
from sqlalchemy.ext.asyncio import AsyncSession

from db_models import User
from domain.enums import UserRole
from domain.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    UnauthorizedError,
    ValidationError,
)
from middleware.auth import hash_password, verify_password
from utils.safe_logging import log_security_event
from utils.validators import sanitize_string, validate_email, validate_phone

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
# bcrypt only accepts 72 bytes of input
MAX_PASSWORD_BYTES = 72


def _full_name(first: str | None, last: str | None) -> str:
    return " ".join(part for part in (first, last) if part)


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "name": user.name,
        "phone": user.phone,
        "address": user.address,
        "role": user.role,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


async def get_user(db: AsyncSession, user_id: str) -> User | None:
    return await db.get(User, user_id)


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    res = await db.execute(select(User).where(User.email == email.strip().lower()))
    return res.scalar_one_or_none()


async def register_user(
    db: AsyncSession, *, email: str, password: str, first_name: str, last_name: str
) -> User:
    email = validate_email(email)
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters", field="password"
        )
    if len(password.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValidationError(
            f"Password must be at most {MAX_PASSWORD_BYTES} bytes", field="password"
        )
    if await get_user_by_email(db, email):
        raise ConflictError("An account with this email already exists")

    first = sanitize_string(first_name)
    last = sanitize_string(last_name)
    user = User(
        email=email,
        password_hash=hash_password(password),
        first_name=first,
        last_name=last,
        name=_full_name(first, last),
        role=UserRole.USER.value,
    )
    db.add(user)
    await db.flush()
    logger.info(f"👤 Registered user {user.id[:8]}")
    return user


async def authenticate(db: AsyncSession, *, email: str, password: str) -> User:
    user = await get_user_by_email(db, email or "")
    if not user or not verify_password(password or "", user.password_hash):
        raise UnauthorizedError("Invalid email or password")
    return user


async def update_profile(
    db: AsyncSession,
    user: User,
    *,
    first_name: str | None,
    last_name: str | None,
    phone: str | None = None,
    address: str | None = None,
) -> User:
    first = sanitize_string(first_name or "")
    last = sanitize_string(last_name or "")
    if not first or not last:
        raise ValidationError("First name and last name are required")

    user.first_name = first
    user.last_name = last
    user.name = _full_name(first, last)
    if phone:
        user.phone = validate_phone(phone)
    if address is not None:
        user.address = sanitize_string(address) or None
    await db.flush()
    return user


# ── Admin roles ─────────────────────────────────────────────────────

async def admin_exists(db: AsyncSession) -> bool:
    count = await db.scalar(select(func.count(User.id)).where(User.role == UserRole.ADMIN.value))
    return bool(count)


async def bootstrap_admin(db: AsyncSession, user: User) -> User:
    """
    Make the caller the first admin. Only works while no admin exists.

    The existence check and the grant are one UPDATE, so two concurrent
    callers cannot both succeed.
    """
    existing_admin = aliased(User)
    res = await db.execute(
        update(User)
        .where(
            User.id == user.id,
            ~exists().where(existing_admin.role == UserRole.ADMIN.value),
        )
        .values(role=UserRole.ADMIN.value)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        log_security_event("admin_bootstrap_denied", user_id=user.id)
        raise PermissionDeniedError("Admin already exists. Ask an existing admin to grant access.")
    user.role = UserRole.ADMIN.value
    await db.flush()
    log_security_event("admin_bootstrap", user_id=user.id)
    return user


async def grant_role(db: AsyncSession, *, granted_by: User | None, user_id: str, role: str) -> User:
    try:
        role = UserRole(role).value
    except ValueError:
        raise ValidationError("Role must be 'admin' or 'user'", field="role")

    target = await get_user(db, user_id)
    if not target:
        raise NotFoundError("User", user_id)

    target.role = role
    await db.flush()
    log_security_event(
        "role_granted",
        target_user_id=user_id,
        role=role,
        granted_by=granted_by.id if granted_by else "admin-key",
    )
    return target
