"""
Database session configuration.

This module owns the persistence gateway: an explicitly constructed
`Database` object holding the async engine and session factory. The
application factory creates one per process, stores it on `app.state.db`
and disposes it on shutdown.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import Request
from sqlalchemy import event
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from healthpal.app.core.config import Settings

# Create declarative base for models
Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_conn, connection_record):
    """SQLite leaves FK enforcement off unless asked per connection."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    """
    Pooled SQL client.

    Owns no business logic, only the connection lifecycle:
    create_all() on startup, dispose() on shutdown.
    """

    def __init__(self, url: str, echo: bool = False, pool_size: int = 20, max_overflow: int = 10):
        self.url = url

        if url.startswith("sqlite"):
            # Single shared connection so in-memory databases survive across sessions
            self.engine = create_async_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
            )
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        else:
            self.engine = create_async_engine(
                url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_pre_ping=True,
            )

        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.database_url,
            echo=settings.db_echo,
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    async def create_all(self) -> None:
        """Create tables for every model registered on Base."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            yield session

    async def dispose(self) -> None:
        await self.engine.dispose()


async def get_db(request: Request):
    """
    FastAPI dependency for database sessions.

    Yields an async database session from the application's gateway
    and ensures it's properly closed.
    """
    db: Database = request.app.state.db
    async with db.session() as session:
        try:
            yield session
        finally:
            await session.close()
