"""
Outbox - Database Connection and Session Management

This module handles connectivity to the persistent queue store, session
management and health checks. SQLite via aiosqlite is the default store so
queued mutations survive process restarts without external services.
"""
from typing import AsyncGenerator, Optional
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    AsyncEngine,
    create_async_engine,
    async_sessionmaker
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import text
import structlog

from ..shared.exceptions import StorageUnavailable
from .models import Base

logger = structlog.get_logger(__name__)


class QueueDatabase:
    """
    Manages the queue store engine and sessions.
    Creates the schema on initialize and reports health.
    """

    def __init__(self, database_url: str, echo: bool = False):
        self.database_url = database_url
        self.echo = echo
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self._is_connected = False

    async def initialize(self) -> None:
        """Open the store and create the queue table if absent."""
        if self._is_connected:
            return

        try:
            self.engine = create_async_engine(
                self.database_url,
                echo=self.echo,
                pool_pre_ping=True,
            )

            self.session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            self._is_connected = True
            logger.info("Queue store initialized", database_url=self._safe_url())

        except (SQLAlchemyError, OSError) as e:
            logger.error("Failed to open queue store", database_url=self._safe_url(), error=str(e))
            if self.engine:
                await self.engine.dispose()
            self.engine = None
            self.session_factory = None
            raise StorageUnavailable(f"Queue store unavailable: {e}") from e

    async def health_check(self) -> bool:
        """
        Perform queue store health check.
        Returns True if the store is accessible, False otherwise.
        """
        if not self.engine:
            return False

        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(text("SELECT 1"))
                return result.scalar() == 1
        except SQLAlchemyError as e:
            logger.error("Queue store health check failed", error=str(e))
            return False

    async def close(self) -> None:
        """Close store connections."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None
            self._is_connected = False
            logger.info("Queue store connections closed")

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get a session with automatic rollback on error.

        Usage:
            async with queue_db.get_session() as session:
                ...
        """
        if not self.session_factory:
            await self.initialize()

        async with self.session_factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    def _safe_url(self) -> str:
        # Hide credentials for server-backed stores
        if "@" in self.database_url:
            scheme, rest = self.database_url.split("://", 1)
            return f"{scheme}://***@{rest.split('@', 1)[1]}"
        return self.database_url
