"""Async engine and session handling for the client registry database."""

from collections.abc import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from osa.core.settings import DatabaseSettings
from osa.db.base import BaseEntity
from osa.db.models_clients import OAuthClientEntity

_registered = (OAuthClientEntity,)


class _RegistryDatabase:
    """Engine and session factory, created on first use."""

    engine: AsyncEngine | None = None
    factory: async_sessionmaker[AsyncSession] | None = None


_db = _RegistryDatabase()


def get_engine() -> AsyncEngine:
    """Return the shared engine, creating it from ``DatabaseSettings`` once."""
    if _db.engine is None:
        settings = DatabaseSettings()
        _db.engine = create_async_engine(
            settings.async_url,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_pre_ping=True,
        )
    return _db.engine


def _session_factory() -> async_sessionmaker[AsyncSession]:
    if _db.factory is None:
        _db.factory = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _db.factory


async def create_schema(engine: AsyncEngine | None = None) -> None:
    """Create any missing registry tables."""
    if engine is None:
        engine = get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(BaseEntity.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections; called on application shutdown."""
    if _db.engine is not None:
        await _db.engine.dispose()
    _db.engine = None
    _db.factory = None


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency yielding a session committed on success."""
    async with _session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
