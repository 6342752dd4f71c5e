"""SQLAlchemy declarative base and async engine helpers."""

from sqlalchemy.ext.asyncio import (
    AsyncAttrs,
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase


class Base(AsyncAttrs, DeclarativeBase):
    """Declarative base of every KubeFleet table."""


def create_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create the async engine for ``database_url`` (asyncpg or aiosqlite).

    Pooled connections are checked before use so a database restart does not
    surface as errors on the first queries after it.
    """
    return create_async_engine(database_url, echo=echo, pool_pre_ping=True)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Sessions keep loaded attributes after commit; repositories return them."""
    return async_sessionmaker(engine, expire_on_commit=False)
