"""SQLAlchemy 2.0 async database setup.

Provides the declarative Base shared by all ORM models, a module-level
engine/session factory initialised at application startup, the FastAPI
session dependency, and a small generic repository base class.
"""

import uuid
from collections.abc import AsyncIterator
from datetime import datetime, timezone
from typing import Generic, TypeVar

from sqlalchemy import DateTime
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from partner_financials.settings import Settings


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for all ORM models."""


class TimestampMixin:
    """Adds created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_database(settings: Settings) -> AsyncEngine:
    """Create the process-wide async engine and session factory.

    Args:
        settings: Service settings providing ``database_url``.

    Returns:
        The initialised AsyncEngine.
    """
    global _engine, _session_factory
    _engine = create_async_engine(settings.database_url, echo=settings.database_echo)
    _session_factory = async_sessionmaker(_engine, expire_on_commit=False)
    return _engine


async def dispose_database() -> None:
    """Dispose of the engine created by init_database."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_db_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a session committed on success.

    Raises:
        RuntimeError: If init_database has not been called.
    """
    if _session_factory is None:
        raise RuntimeError("Database is not initialised; call init_database() first")
    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


ModelT = TypeVar("ModelT", bound=Base)


class BaseRepository(Generic[ModelT]):
    """Generic async repository with primary-key access and transaction control."""

    def __init__(self, session: AsyncSession, model: type[ModelT]) -> None:
        self._session = session
        self._model = model

    async def create(self, instance: ModelT) -> ModelT:
        """Add a new instance and flush it so generated columns are populated."""
        self._session.add(instance)
        await self._session.flush()
        return instance

    async def get_by_id(self, record_id: uuid.UUID) -> ModelT | None:
        """Return the row with the given primary key, re-read from the database."""
        return await self._session.get(self._model, record_id, populate_existing=True)

    async def checkpoint(self) -> None:
        """Commit the current transaction so that its writes are durable."""
        await self._session.commit()
