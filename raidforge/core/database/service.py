"""
Database Service - Core Infrastructure Layer

Purpose
-------
Async database engine and session management for the lockout store.
Provides atomic transactions, schema bootstrap and health checks.

Responsibilities
----------------
- Own one AsyncEngine and session factory per service instance
- Provide async context managers for read sessions and atomic transactions
- Enforce transaction discipline: commit on success, rollback on exception
- Create the schema for registered models (tests and first boot)
- Expose a cheap health check

Non-Responsibilities
--------------------
- Domain logic (the lockout ledger owns its queries)
- Migrations

Architecture Notes
------------------
**Instances, not a singleton**: the application context builds exactly one
service, and tests build one per temporary database. Nothing is global.

**Transaction Model**:
- `get_transaction()` is the interface for all state mutations
- Automatic commit on success, rollback on any exception
- Never call `session.commit()` inside service code

**Connection Pooling**:
- QueuePool-backed engine for server databases
- NullPool for SQLite and the testing environment

Usage Example
-------------
>>> db = DatabaseService(Config.DATABASE_URL)
>>> await db.initialize()
>>> async with db.get_transaction() as session:
...     await session.execute(stmt)
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from raidforge.core.config.config import Config
from raidforge.core.database.base import Base
from raidforge.core.logging.logger import get_logger

logger = get_logger(__name__)


# ============================================================================
# Exceptions
# ============================================================================


class DatabaseInitializationError(RuntimeError):
    """Raised when database engine initialization fails."""


class DatabaseNotInitializedError(RuntimeError):
    """Raised when database operations are attempted before initialization."""


# ============================================================================
# DatabaseService
# ============================================================================


class DatabaseService:
    """
    Async engine and session management.

    Public API
    ----------
    - initialize() / shutdown()
    - get_session() -> read-only or manual control
    - get_transaction() -> atomic write transaction (preferred)
    - create_schema() -> create tables for registered models
    - health_check() -> fast reachability check
    """

    def __init__(
        self,
        url: Optional[str] = None,
        *,
        echo: Optional[bool] = None,
        pool_size: Optional[int] = None,
        max_overflow: Optional[int] = None,
    ) -> None:
        self._url = url or Config.DATABASE_URL
        self._echo = Config.DATABASE_ECHO if echo is None else echo
        self._pool_size = pool_size or Config.DATABASE_POOL_SIZE
        self._max_overflow = (
            Config.DATABASE_MAX_OVERFLOW if max_overflow is None else max_overflow
        )

        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._init_lock = asyncio.Lock()

        self._transactions_committed = 0
        self._transactions_rolled_back = 0

    @property
    def url_scheme(self) -> str:
        return self._url.split(":", 1)[0] if ":" in self._url else "unknown"

    @property
    def is_sqlite(self) -> bool:
        return self._url.startswith("sqlite")

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    # ========================================================================
    # Initialization & Shutdown
    # ========================================================================

    def _engine_kwargs(self) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {"echo": self._echo}
        if self.is_sqlite or Config.is_testing():
            kwargs["poolclass"] = NullPool
        else:
            kwargs.update(
                {
                    "pool_size": self._pool_size,
                    "max_overflow": self._max_overflow,
                    "pool_pre_ping": True,
                }
            )
        return kwargs

    async def initialize(self) -> None:
        """
        Create the engine and session factory.

        Idempotent; a second call is a no-op.

        Raises
        ------
        DatabaseInitializationError
            If the URL is missing or engine creation fails.
        """
        async with self._init_lock:
            if self._engine is not None:
                logger.debug("DatabaseService already initialized; skipping")
                return

            if not self._url:
                raise DatabaseInitializationError(
                    "DATABASE_URL must be configured as a non-empty string"
                )

            try:
                self._engine = create_async_engine(self._url, **self._engine_kwargs())
            except Exception as exc:
                logger.error(
                    "DatabaseService initialization failed",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                    exc_info=True,
                )
                raise DatabaseInitializationError(
                    f"Database initialization failed: {exc}"
                ) from exc

            self._session_factory = async_sessionmaker(
                bind=self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

            logger.info(
                "DatabaseService initialized",
                extra={"url_scheme": self.url_scheme},
            )

    async def shutdown(self) -> None:
        """Dispose the engine. Safe to call multiple times."""
        async with self._init_lock:
            if self._engine is None:
                return

            try:
                await self._engine.dispose()
                logger.info("DatabaseService shutdown complete")
            finally:
                self._engine = None
                self._session_factory = None

    async def create_schema(self) -> None:
        """Create every table registered on `Base.metadata` (idempotent)."""
        self._ensure_initialized()
        assert self._engine is not None

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info(
            "Database schema ensured",
            extra={"tables": sorted(Base.metadata.tables.keys())},
        )

    # ========================================================================
    # Health Check
    # ========================================================================

    async def health_check(self) -> bool:
        """
        Lightweight `SELECT 1` probe.

        Does not raise on failure; returns False instead.
        """
        if self._engine is None:
            logger.warning("Health check called on uninitialized DatabaseService")
            return False

        start = time.perf_counter()
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (OperationalError, DBAPIError, OSError) as exc:
            logger.warning(
                "Database health check failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return False
        finally:
            logger.debug(
                "Database health check finished",
                extra={"duration_ms": (time.perf_counter() - start) * 1000.0},
            )

    # ========================================================================
    # Session & Transaction Context Managers
    # ========================================================================

    def _ensure_initialized(self) -> None:
        if self._session_factory is None or self._engine is None:
            raise DatabaseNotInitializedError(
                "DatabaseService must be initialized before use. "
                "Call initialize() during startup."
            )

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session without automatic commit, for reads.

        For writes prefer `get_transaction()`.
        """
        self._ensure_initialized()
        assert self._session_factory is not None

        async with self._session_factory() as session:
            yield session

    @asynccontextmanager
    async def get_transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Session wrapped in an atomic transaction.

        Commits on success. On any exception rolls back and re-raises.
        Integrity conflicts are expected by compare-and-set callers, so they
        are logged at debug level only.
        """
        self._ensure_initialized()
        assert self._session_factory is not None

        start = time.perf_counter()
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
                self._transactions_committed += 1

            except IntegrityError as exc:
                await session.rollback()
                self._transactions_rolled_back += 1
                logger.debug(
                    "Integrity conflict in transaction; rolled back",
                    extra={"error_type": type(exc).__name__},
                )
                raise

            except Exception as exc:
                await session.rollback()
                self._transactions_rolled_back += 1
                logger.error(
                    "Error in transaction; rolled back",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "duration_ms": (time.perf_counter() - start) * 1000.0,
                    },
                )
                raise

    def get_metrics(self) -> Dict[str, Any]:
        return {
            "initialized": self.is_initialized,
            "url_scheme": self.url_scheme,
            "transactions_committed": self._transactions_committed,
            "transactions_rolled_back": self._transactions_rolled_back,
        }
