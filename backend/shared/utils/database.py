"""
Async database connection manager using SQLAlchemy 2.0+ async engine.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from shared.config import Settings, get_settings
from shared.models.orm import Base
from shared.utils.logging import get_logger

logger = get_logger(__name__)


class StoreError(Exception):
    """Raised when the persistent store cannot be reached or a statement fails."""


class DatabaseManager:
    """Manages async SQLAlchemy engine and session factory."""

    def __init__(self, settings: Settings | None = None, url: str | None = None) -> None:
        self._settings = settings or get_settings()
        self._url = url or self._settings.database_url
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    def _engine_kwargs(self) -> dict[str, Any]:
        if self._url.startswith("sqlite"):
            # In-memory databases live on a single connection
            return {"poolclass": StaticPool, "connect_args": {"check_same_thread": False}}
        return {
            "pool_size": self._settings.db_pool_min,
            "max_overflow": self._settings.db_pool_max - self._settings.db_pool_min,
            "pool_pre_ping": True,
            "pool_recycle": 300,
            "connect_args": {
                "timeout": self._settings.db_command_timeout,
                "command_timeout": self._settings.db_command_timeout,
            },
        }

    async def connect(self) -> None:
        """Create the async engine and session factory."""
        self._engine = create_async_engine(self._url, echo=self._settings.debug, **self._engine_kwargs())
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        logger.info("database_connected", url=self._url.rsplit("@", 1)[-1])

    async def disconnect(self) -> None:
        """Dispose of the engine and all connections."""
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            logger.info("database_disconnected")

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("DatabaseManager not connected.")
        return self._engine

    async def create_all(self) -> None:
        """Create any missing tables."""
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            raise StoreError(f"schema sync failed: {exc}") from exc

    async def ping(self) -> bool:
        """Return True when a trivial statement round-trips."""
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("database_ping_failed", error=str(exc))
            return False

    @asynccontextmanager
    async def read_session(self) -> AsyncIterator[AsyncSession]:
        """Provide a read-only session (no commit)."""
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not connected.")
        async with self._session_factory() as session:
            try:
                yield session
            except (SQLAlchemyError, OSError) as exc:
                raise StoreError(str(exc)) from exc

    @asynccontextmanager
    async def write_session(self) -> AsyncIterator[AsyncSession]:
        """Provide a transactional session that auto-commits on success."""
        if self._session_factory is None:
            raise RuntimeError("DatabaseManager not connected.")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise
            except (SQLAlchemyError, OSError) as exc:
                await session.rollback()
                raise StoreError(str(exc)) from exc
            except Exception:
                await session.rollback()
                raise
