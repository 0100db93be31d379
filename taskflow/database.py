"""Async engine and session factory for the task store database."""

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from .config import settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for ORM models."""
    pass


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Create an async engine for the task store.

    In-memory SQLite keeps a single shared connection so every session
    sees the same tables.

    Args:
        database_url: SQLAlchemy async URL
        echo: Log emitted SQL

    Returns:
        AsyncEngine bound to the URL
    """
    if database_url.startswith("sqlite") and ":memory:" in database_url:
        return create_async_engine(database_url, echo=echo, poolclass=StaticPool)
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create any missing task store tables (models must be imported first)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Task store tables ready: {sorted(Base.metadata.tables)}")


engine = build_engine(settings.database_url, settings.sql_echo)
async_session_maker = build_session_maker(engine)
