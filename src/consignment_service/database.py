"""Database initialization helpers."""
from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings


class Base(DeclarativeBase):
    """Base class for SQLAlchemy models."""


def _configure_sqlite(engine: AsyncEngine) -> None:
    """Enable FK cascades and let SQLAlchemy own BEGIN so savepoints work."""

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record) -> None:
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn) -> None:
        conn.exec_driver_sql("BEGIN")


def create_engine(database_url: str | None = None, *, echo: bool | None = None) -> AsyncEngine:
    """Create a configured SQLAlchemy async engine."""

    settings = get_settings()
    url = database_url or settings.database_url
    db_engine = create_async_engine(url, echo=settings.echo_sql if echo is None else echo)
    if url.startswith("sqlite"):
        _configure_sqlite(db_engine)
    return db_engine


engine = create_engine()
SessionFactory = async_sessionmaker(bind=engine, expire_on_commit=False)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Yield an :class:`AsyncSession` for FastAPI dependencies."""

    async with SessionFactory() as session:
        yield session


@asynccontextmanager
async def atomic(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a unit of work: commit when the block succeeds, roll back otherwise."""

    try:
        yield session
    except BaseException:
        await session.rollback()
        raise
    await session.commit()


__all__ = [
    "Base",
    "engine",
    "SessionFactory",
    "atomic",
    "create_engine",
    "get_session",
]
