"""Database engine and sessions for Kualitee.

Request handlers receive a session from get_async_session(); Celery workers
and the health check open one with session_scope(). Both commit once at the
end of the unit of work and roll back on any exception, so repositories
only add(), flush() and delete().
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from src.config.settings import Environment, get_settings

# Stable constraint names keep alembic batch migrations working on SQLite.
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Declarative base for the project and test set tables."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)


def build_engine(url: str, *, echo: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite files skip the pre-ping round trip."""
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=echo)
    return create_async_engine(url, echo=echo, pool_pre_ping=True, pool_size=5, max_overflow=10)


_settings = get_settings()

engine = build_engine(
    _settings.DATABASE_URL,
    echo=_settings.ENVIRONMENT == Environment.DEV and _settings.LOG_LEVEL == "DEBUG",
)

async_session_factory = async_sessionmaker(bind=engine, expire_on_commit=False)


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """One unit of work outside a request: commit on success, else roll back."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency wrapping session_scope() around a request."""
    async with session_scope() as session:
        yield session
