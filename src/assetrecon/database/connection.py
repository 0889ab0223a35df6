"""Database connection management for Assetrecon.

This module provides factory functions for creating SQLAlchemy async engines
and session factories, plus a ``Database`` handle with an explicit
connect/disconnect lifecycle. Services receive the handle (or its session
factory) at construction time; there is no module-level connection state.

Example usage:
    >>> from assetrecon.config import DatabaseConfig
    >>> from assetrecon.database.connection import Database
    >>>
    >>> database = Database(DatabaseConfig(url="postgresql+asyncpg://localhost/assetrecon"))
    >>> await database.connect()
    >>> async with database.session_factory() as session:
    ...     result = await session.execute(select(CatalogAsset))
    >>> await database.disconnect()
"""

from __future__ import annotations

from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from assetrecon.config import DatabaseConfig
from assetrecon.errors import InfrastructureError, NotConnectedError

logger = structlog.get_logger(__name__)


def get_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async SQLAlchemy engine from database configuration.

    Pool sizing is applied to server databases only; SQLite engines (used by
    the test suite) manage their own pool.

    Args:
        config: Database configuration containing URL, pool settings,
                and SQL echo preference.

    Returns:
        Configured AsyncEngine instance.
    """
    kwargs: dict[str, Any] = {"echo": config.echo}
    if not config.url.startswith("sqlite"):
        kwargs["pool_size"] = config.pool_size
        kwargs["max_overflow"] = config.max_overflow
        kwargs["pool_pre_ping"] = True

    return create_async_engine(config.url, **kwargs)


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an async session factory bound to the given engine.

    Sessions use expire_on_commit=False so attributes stay readable after
    commit without triggering lazy loads in async code.

    Args:
        engine: AsyncEngine to bind sessions to.

    Returns:
        Configured async_sessionmaker that produces AsyncSession instances.
    """
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


class Database:
    """Explicitly managed database handle.

    Attributes:
        config: Database configuration used to build the engine.
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self.config = config
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_connected(self) -> bool:
        """Whether connect() has completed and disconnect() has not run."""
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        """Active engine.

        Raises:
            NotConnectedError: If the handle is not connected.
        """
        if self._engine is None:
            raise NotConnectedError()
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Session factory bound to the active engine.

        Raises:
            NotConnectedError: If the handle is not connected.
        """
        if self._session_factory is None:
            raise NotConnectedError()
        return self._session_factory

    async def connect(self) -> None:
        """Create the engine and verify the database answers a ping.

        Calling connect() on a connected handle is a no-op.

        Raises:
            InfrastructureError: If the database cannot be reached.
        """
        if self._engine is not None:
            return

        engine = get_engine(self.config)
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except (SQLAlchemyError, OSError) as e:
            await engine.dispose()
            logger.error("database_connect_failed", error=str(e))
            raise InfrastructureError(f"Unable to connect to database: {e}") from e

        self._engine = engine
        self._session_factory = get_session_factory(engine)

        logger.info(
            "database_connected",
            pool_size=self.config.pool_size,
            max_overflow=self.config.max_overflow,
        )

    async def disconnect(self) -> None:
        """Dispose of the engine and its pooled connections."""
        if self._engine is None:
            return

        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("database_disconnected")

