"""
Database Connection Management

Async SQLAlchemy engine and session factory for the relay tables.
Connection establishment is retried with exponential backoff.
"""

import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from sqlalchemy import text
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import Settings

logger = structlog.get_logger()


class DatabaseManager:
    """
    Database connection manager.

    Owns one async engine per process. Sessions commit on success and roll
    back on any exception.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None

    @property
    def is_initialized(self) -> bool:
        return self.session_factory is not None

    def _create_engine(self) -> AsyncEngine:
        url = self.settings.DATABASE_URL
        if url.startswith("sqlite"):
            return create_async_engine(url, echo=self.settings.DATABASE_ECHO)

        return create_async_engine(
            url,
            pool_size=self.settings.DATABASE_POOL_SIZE,
            max_overflow=self.settings.DATABASE_POOL_SIZE,
            pool_pre_ping=True,
            pool_recycle=3600,
            pool_timeout=30,
            echo=self.settings.DATABASE_ECHO,
            connect_args={
                "command_timeout": 60,
                "server_settings": {"application_name": "webhook_relay"},
            },
        )

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((OperationalError, ConnectionError, OSError)),
        reraise=True,
        before_sleep=lambda retry_state: logger.warning(
            "Database connection retry",
            attempt=retry_state.attempt_number,
            wait_time=retry_state.next_action.sleep,
        ),
    )
    async def _verify_connection(self) -> None:
        async with self.engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            assert result.scalar() == 1

    async def initialize(self, verify: bool = True) -> None:
        """Create the engine and session factory, optionally checking connectivity."""
        if self.engine is not None:
            return

        self.engine = self._create_engine()
        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

        if verify:
            try:
                await self._verify_connection()
            except Exception as e:
                logger.error(
                    "Database initialization failed", error=str(e), exc_info=True
                )
                await self.close()
                raise

        logger.info(
            "Database initialized",
            pool_size=self.settings.DATABASE_POOL_SIZE,
            dialect=self.engine.dialect.name,
        )

    async def create_all(self) -> None:
        """Create tables from model metadata. Used for tests and local SQLite runs."""
        from ..models import Base

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get database session with transaction management.

        Yields:
            AsyncSession: committed on success, rolled back on error
        """
        if not self.session_factory:
            raise RuntimeError("Database not initialized. Call initialize() first.")

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception as e:
                await session.rollback()
                logger.error("Database transaction failed", error=str(e))
                raise

    async def health_check(self) -> Dict[str, Any]:
        """Check database connectivity."""
        start_time = time.time()

        if not self.session_factory:
            return {"status": "unhealthy", "error": "not initialized"}

        try:
            async with self.get_session() as session:
                result = await session.execute(text("SELECT 1"))
                assert result.scalar() == 1

            return {
                "status": "healthy",
                "duration_seconds": time.time() - start_time,
                "dialect": self.engine.dialect.name,
            }

        except Exception as e:
            duration = time.time() - start_time
            logger.error(
                "Database health check failed",
                error=str(e),
                duration_seconds=duration,
            )
            return {
                "status": "unhealthy",
                "duration_seconds": duration,
                "error": str(e),
            }

    async def close(self) -> None:
        """Close database connections and cleanup resources."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None

            logger.info("Database connections closed")
