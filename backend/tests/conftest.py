"""
Pytest configuration and shared fixtures for the storefront tests.

Provides an in-memory SQLite session, an httpx client bound to the FastAPI
app, user/admin factories and a fake PhonePe client.
"""
from datetime import datetime, timedelta
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import StaticPool

from main import app
from database import Base, get_db
from config import settings

# ── Test Configuration ───────────────────────────────────────────────
# Set test-only values for settings that would normally come from .env
if not settings.jwt_secret:
    settings.jwt_secret = "test-jwt-secret-for-pytest-only"
settings.phonepe_webhook_secret = "test-webhook-secret"
settings.resend_api_key = ""
settings.slack_orders_webhook_url = ""
settings.slack_contact_webhook_url = ""

STOREFRONT_ORIGIN = "http://localhost:3000"


# ── Database Fixtures ────────────────────────────────────────────────


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Create an in-memory SQLite database session for each test.

    Uses StaticPool to allow in-memory SQLite with async SQLAlchemy.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session

    await engine.dispose()


@pytest.fixture(scope="function")
async def file_sessions(tmp_path):
    """
    Session factory over a SQLite file.

    For tests that need separate connections writing at the same time; the
    in-memory database above is a single shared connection.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx client bound to the app with the in-memory database.

    Overrides the get_db dependency; the lifespan (reconciler) is not run.
    """
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ── Global state resets ───────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _reset_guards():
    """Rate limiter and replay guard are process globals."""
    from middleware import rate_limit as rl
    from middleware.security import replay_guard

    rl._limiter.reset()
    replay_guard.reset()
    original = settings.rate_limit_enabled
    settings.rate_limit_enabled = False
    yield
    settings.rate_limit_enabled = original
    rl._limiter.reset()
    replay_guard.reset()


@pytest.fixture(autouse=True)
def notifications():
    """Post-payment notifications are recorded instead of sent."""
    with patch("services.notification_service.schedule_order_notifications") as scheduled:
        yield scheduled


# ── Users ─────────────────────────────────────────────────────────────


@pytest.fixture
def make_user(db_session: AsyncSession):
    from db_models import User
    from middleware.auth import hash_password

    async def _make(email: str = "shopper@example.com", role: str = "user", password: str = "correct-horse"):
        user = User(
            email=email,
            password_hash=hash_password(password),
            first_name="Asha",
            last_name="Verma",
            name="Asha Verma",
            role=role,
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _make


@pytest.fixture
async def user(make_user):
    return await make_user()


@pytest.fixture
async def other_user(make_user):
    return await make_user(email="someone.else@example.com")


@pytest.fixture
async def admin_user(make_user):
    return await make_user(email="admin@example.com", role="admin")


def _auth_headers(user, **extra) -> dict:
    from middleware.auth import issue_access_token

    headers = {"Authorization": f"Bearer {issue_access_token(user_id=user.id, role=user.role)}"}
    headers.update(extra)
    return headers


@pytest.fixture
def auth_headers():
    return _auth_headers


# ── Orders ────────────────────────────────────────────────────────────


@pytest.fixture
def make_order(db_session: AsyncSession):
    """Persist an order directly (bypassing the gateway)."""
    from db_models import Order, OrderItem
    from services import order_service

    async def _make(
        user=None,
        *,
        merchant_order_id: str = "CPTEST00001",
        state: str = "PENDING",
        total: float = 549.0,
        order_date: datetime | None = None,
        expire_at: datetime | None = None,
        phonepe_order_id: str | None = "OMO123",
        payment_url: str | None = "https://mercury.phonepe.com/pay/OMO123",
    ):
        order = Order(
            merchant_order_id=merchant_order_id,
            user_id=user.id if user else None,
            customer_name="Asha Verma",
            customer_email="shopper@example.com",
            customer_phone="9876543210",
            address="12 MG Road, Indiranagar, Bengaluru, Karnataka",
            subtotal=450.0,
            shipping=99.0,
            total=total,
            payment_state=state,
            order_date=order_date or datetime.utcnow(),
            expire_at=expire_at,
            phonepe_order_id=phonepe_order_id,
            payment_url=payment_url,
            items=[OrderItem(product_id="single-box", name="5-in-1 Laundry Pod", price=450.0, quantity=1)],
        )
        db_session.add(order)
        await order_service.assign_numbers(db_session, order)
        await db_session.commit()
        return order

    return _make


# ── PhonePe ───────────────────────────────────────────────────────────


def gateway_status(
    state: str = "COMPLETED",
    *,
    amount_paise: int = 54900,
    transaction_id: str = "T2503011234",
    order_id: str = "OMO123",
    error_code: str | None = None,
) -> dict:
    """Shape of a PhonePe order status response."""
    detail = {
        "paymentMode": "UPI_QR",
        "transactionId": transaction_id,
        "timestamp": 1740800000000,
        "amount": amount_paise,
        "state": state,
        "rail": {"type": "UPI", "utr": "506012345678"},
        "instrument": {"type": "ACCOUNT", "accountType": "SAVINGS", "maskedAccountNumber": "XXXX1234"},
    }
    if error_code:
        detail["errorCode"] = error_code
    return {
        "orderId": order_id,
        "state": state,
        "amount": amount_paise,
        "expireAt": 1740801200000,
        "paymentDetails": [detail],
    }


@pytest.fixture
def phonepe_status():
    return gateway_status


@pytest.fixture
def fake_phonepe():
    """
    Fake PhonePe client wired into every service that asks for one.

    create_payment returns a checkout URL; get_order_status returns COMPLETED
    for ₹549 unless a test overrides return_value / side_effect.
    """
    client = MagicMock()
    client.create_payment = AsyncMock(
        return_value={
            "orderId": "OMO123",
            "state": "PENDING",
            "expireAt": int((datetime.utcnow() + timedelta(minutes=20)).timestamp() * 1000),
            "redirectUrl": "https://mercury.phonepe.com/pay/OMO123",
        }
    )
    client.get_order_status = AsyncMock(return_value=gateway_status())

    with patch("services.checkout_service.get_phonepe_client", return_value=client), \
         patch("services.reconciler_service.get_phonepe_client", return_value=client):
        yield client
