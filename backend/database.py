"""
Database engine and session management for the storefront payments backend.

Uses SQLAlchemy async engine with aiosqlite for non-blocking DB operations
inside FastAPI. Tables are auto-created on server startup via init_db().
Every write that spans an order and its products goes through atomic().
"""
import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from config import settings
from domain.errors import PersistenceFailureError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


# ── Engine ──────────────────────────────────────────────────────────

# Convert sqlite:///... → sqlite+aiosqlite:///... for async driver
_raw_url = settings.database_url
if _raw_url.startswith("sqlite:///"):
    _async_url = _raw_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
else:
    _async_url = _raw_url

engine = create_async_engine(
    _async_url,
    echo=(settings.environment == "development"),
    future=True,
)

async_session = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


# ── Helpers ─────────────────────────────────────────────────────────

async def init_db() -> None:
    """Create all tables. Called once on server startup."""
    # Import models so Base.metadata knows about them
    import db_models  # noqa: F401

    if _raw_url.startswith("sqlite:///"):
        db_dir = os.path.dirname(_raw_url.replace("sqlite:///", "", 1))
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created (or already exist)")


async def ping_db(session: AsyncSession) -> bool:
    """Run SELECT 1 against the database. Used by /health."""
    await session.execute(text("SELECT 1"))
    return True


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency — yields an async session."""
    async with async_session() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block as one all-or-nothing transaction.

    Commits when the block exits cleanly and rolls back on any exception.
    Driver/ORM failures (including optimistic-lock StaleDataError from the
    orders.version column) surface as PersistenceFailureError so callers can
    tell "retry later" apart from a domain rejection.
    """
    try:
        yield session
        await session.commit()
    except SQLAlchemyError as e:
        await session.rollback()
        logger.error(f"Transaction rolled back: {type(e).__name__}: {e}")
        raise PersistenceFailureError(details={"cause": type(e).__name__}) from e
    except BaseException:
        await session.rollback()
        raise
