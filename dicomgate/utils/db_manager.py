"""
Database manager for the cache store.

This module provides a connection manager for the SQLite file backing the
cache store, avoiding global engine state and supporting async sessions.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import SQLModel

from ..utils.logger import logger


def _configure_sqlite_connection(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=5000")
    cursor.close()


class DatabaseManager:
    """
    Manages the async database engine and sessions.

    The engine is created lazily on first use.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        """Initialize the database manager.

        Args:
            database_url: Async SQLAlchemy URL, e.g. ``sqlite+aiosqlite:///cache.db``
            echo: Log every SQL statement
        """
        self.database_url = database_url
        self.echo = echo
        self._async_engine: AsyncEngine | None = None
        self._async_session_factory: async_sessionmaker[AsyncSession] | None = None

    def _create_async_engine(self) -> AsyncEngine:
        """Create and configure the asynchronous database engine."""
        engine = create_async_engine(
            self.database_url,
            connect_args={"check_same_thread": False},
            echo=self.echo,
        )
        # The server and the `dicomgate sweep` command may share the file
        event.listen(engine.sync_engine, "connect", _configure_sqlite_connection)
        logger.info(f"Async database engine created: {self.database_url}")
        return engine

    @property
    def async_engine(self) -> AsyncEngine:
        """Get or create the asynchronous database engine."""
        if self._async_engine is None:
            self._async_engine = self._create_async_engine()
        return self._async_engine

    @property
    def async_session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get or create the async session factory."""
        if self._async_session_factory is None:
            self._async_session_factory = async_sessionmaker(
                self.async_engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._async_session_factory

    async def create_db_and_tables_async(self) -> None:
        """Create database tables asynchronously."""
        prefix = "sqlite+aiosqlite:///"
        if self.database_url.startswith(prefix) and ":memory:" not in self.database_url:
            Path(self.database_url.removeprefix(prefix)).parent.mkdir(parents=True, exist_ok=True)

        async with self.async_engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("Cache store tables created")

    @asynccontextmanager
    async def get_async_session_context(self) -> AsyncGenerator[AsyncSession]:
        """
        Get an async database session as a context manager.

        Usage:
            async with db_manager.get_async_session_context() as session:
                session.add(model_instance)

        Yields:
            AsyncSession: SQLModel async session, committed on exit
        """
        async with self.async_session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                logger.error(f"Database error: {e}")
                await session.rollback()
                raise
            finally:
                await session.close()

    async def close(self) -> None:
        """Close all database connections."""
        if self._async_engine:
            await self._async_engine.dispose()
            self._async_engine = None
            self._async_session_factory = None
            logger.info("Async database engine disposed")

    def __repr__(self) -> str:
        """String representation of the DatabaseManager."""
        return (
            f"<DatabaseManager("
            f"url={self.database_url}, "
            f"async_initialized={self._async_engine is not None}"
            f")>"
        )
