"""
Async SQLAlchemy engine and session factory.

PostgreSQL through ``asyncpg`` in deployment; any SQLAlchemy async URL
works (the test-suite uses ``sqlite+aiosqlite``).  Services never hold a
session across requests: they take ``async_session_factory`` and open one
session per transaction attempt.
"""

from sqlalchemy import MetaData
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from marketplace.config import settings

# stable constraint names so Alembic diffs stay readable
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


def build_engine(url: str = settings.database_url) -> AsyncEngine:
    options = {"echo": settings.database_echo, "pool_pre_ping": True}
    if make_url(url).get_backend_name() != "sqlite":
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
        )
    return create_async_engine(url, **options)


engine = build_engine()

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    await engine.dispose()


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""

    metadata = MetaData(naming_convention=NAMING_CONVENTION)
