"""
Async database engine and sessions for the BubbleBeads storefront.

SQLAlchemy 2.x async engine over aiosqlite by default. Any async URL
(e.g. postgresql+asyncpg://) works as long as the driver is installed.
Tables are created on startup via init_db(); there are no migrations.
"""
import logging
import os

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


def to_async_url(url: str) -> str:
    """Rewrite a plain sqlite URL to use the aiosqlite driver."""
    if url.startswith("sqlite:///"):
        return url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return url


# ── Engine ──────────────────────────────────────────────────────────

_async_url = to_async_url(settings.database_url)

engine = create_async_engine(
    _async_url,
    echo=False,
    future=True,
)

if _async_url.startswith("sqlite"):
    @event.listens_for(engine.sync_engine, "connect")
    def _sqlite_pragmas(dbapi_connection, connection_record):
        # Order items and payment events rely on FK cascades
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# ── Helpers ─────────────────────────────────────────────────────────

async def init_db() -> None:
    """Create all tables. Called once on server startup."""
    import db_models  # noqa: F401  (registers tables on Base.metadata)

    if _async_url.startswith("sqlite+aiosqlite:///") and ":memory:" not in _async_url:
        db_dir = os.path.dirname(_async_url[len("sqlite+aiosqlite:///"):])
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created (or already exist)")


async def ping_db(db: AsyncSession) -> bool:
    """Round-trip a trivial query; used by the health endpoint."""
    result = await db.execute(text("SELECT 1"))
    return result.scalar() == 1


async def get_db() -> AsyncSession:
    """FastAPI dependency that yields an async session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()
