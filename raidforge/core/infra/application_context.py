"""
Application Context (Kernel) - raidforge component wiring
==========================================================

Purpose
-------
Build every raidforge component exactly once, in dependency order, and hand
out references to them. Replaces any module-level singletons: the write
coalescer, the ledger and the lifecycle manager are plain instances owned
here.

Responsibilities
----------------
- Initialize ConfigManager from the YAML game data
- Connect the Redis entity store and the WriteCoalescer in front of it
- Initialize DatabaseService, check it answers, ensure the lockout schema
- Load and validate the EncounterCatalog
- Build LootGenerator, LockoutLedger, RewardDistributor and
  EncounterLifecycleManager
- Start periodic sweeps (instance TTL, expired lockouts)
- Shut everything down in reverse order

Non-Responsibilities
--------------------
- Business logic (delegated to domain services)
- Party formation and command handling (callers of the core)

Initialization Order (Critical):
    1. ConfigManager
    2. Entity store committer + WriteCoalescer
    3. DatabaseService (+ health check, schema)
    4. EncounterCatalog
    5. Domain services
    6. Periodic sweeps

Shutdown Order (Reverse):
    1. Periodic sweeps
    2. WriteCoalescer.force_flush()
    3. Redis client
    4. DatabaseService.shutdown()
"""

from __future__ import annotations

import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import redis.asyncio as redis

from raidforge.core.clock import Clock, SystemClock
from raidforge.core.config.config import Config
from raidforge.core.config.manager import ConfigManager
from raidforge.core.database.service import DatabaseService
from raidforge.core.exceptions import DatabaseError
from raidforge.core.infra.periodic import PeriodicTask
from raidforge.core.logging.logger import get_logger, get_logging_health
from raidforge.core.persistence.coalescer import BatchCommitter, WriteCoalescer
from raidforge.core.redis.batch import RedisBatchCommitter
from raidforge.modules.catalog.service import EncounterCatalog
from raidforge.modules.encounter.service import EncounterLifecycleManager
from raidforge.modules.lockout.service import LockoutLedger
from raidforge.modules.loot.service import LootGenerator
from raidforge.modules.rewards.models import AcceptAllInventory, InventoryGateway
from raidforge.modules.rewards.service import RewardDistributor

logger = get_logger(__name__)


class ApplicationContext:
    """
    Kernel for component construction and lifecycle.

    Usage:
        context = ApplicationContext()
        await context.initialize()
        instance = await context.lifecycle.start("corrupted_temple", roster)
        ...
        await context.shutdown()

    Every collaborator can be injected (tests pass a SQLite URL, an
    in-memory committer and a manual clock).
    """

    def __init__(
        self,
        *,
        config_dir: Optional[Path] = None,
        database_url: Optional[str] = None,
        committer: Optional[BatchCommitter] = None,
        inventory: Optional[InventoryGateway] = None,
        clock: Optional[Clock] = None,
        start_sweeps: bool = True,
    ) -> None:
        self._config_dir = config_dir
        self._database_url = database_url
        self._committer = committer
        self._inventory = inventory or AcceptAllInventory()
        self._clock = clock or SystemClock()
        self._start_sweeps = start_sweeps

        self._redis: Optional[redis.Redis] = None
        self._database: Optional[DatabaseService] = None
        self._writer: Optional[WriteCoalescer] = None
        self._catalog: Optional[EncounterCatalog] = None
        self._loot: Optional[LootGenerator] = None
        self._ledger: Optional[LockoutLedger] = None
        self._distributor: Optional[RewardDistributor] = None
        self._lifecycle: Optional[EncounterLifecycleManager] = None
        self._tasks: List[PeriodicTask] = []
        self._initialized = False

        logger.debug("ApplicationContext created")

    # ========================================================================
    # INITIALIZATION
    # ========================================================================

    async def initialize(self) -> None:
        """
        Build every component in dependency order.

        Raises:
            RuntimeError: If already initialized or initialization fails
        """
        if self._initialized:
            raise RuntimeError("ApplicationContext already initialized")

        logger.info("Application context initialization started")
        start_time = time.perf_counter()

        try:
            # Step 1: game data and tunables
            ConfigManager.initialize(self._config_dir)

            # Step 2: entity store write path
            if self._committer is None:
                self._redis = redis.from_url(
                    Config.REDIS_URL,
                    socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                )
                self._committer = RedisBatchCommitter(self._redis, Config.REDIS_KEY_PREFIX)
            self._writer = WriteCoalescer(
                self._committer,
                batch_interval=float(ConfigManager.get("write_coalescer.batch_interval_seconds", 10)),
                max_batch_size=int(ConfigManager.get("write_coalescer.max_batch_size", 20)),
                max_ops_per_commit=int(ConfigManager.get("write_coalescer.max_ops_per_commit", 500)),
                clock=self._clock,
            )

            # Step 3: relational store for lockouts
            self._database = DatabaseService(self._database_url)
            await self._database.initialize()
            if not await self._database.health_check():
                raise DatabaseError("health_check", ConnectionError("SELECT 1 failed"))
            await self._database.create_schema()

            # Step 4: reference data
            self._catalog = EncounterCatalog.from_config(ConfigManager)

            # Step 5: domain services
            self._loot = LootGenerator(
                self._catalog, ConfigManager, get_logger("raidforge.modules.loot")
            )
            self._ledger = LockoutLedger(
                self._database,
                ConfigManager,
                get_logger("raidforge.modules.lockout"),
                clock=self._clock,
            )
            self._distributor = RewardDistributor(
                self._ledger,
                self._loot,
                self._writer,
                self._inventory,
                ConfigManager,
                get_logger("raidforge.modules.rewards"),
            )
            self._lifecycle = EncounterLifecycleManager(
                self._catalog,
                self._ledger,
                self._distributor,
                self._writer,
                ConfigManager,
                get_logger("raidforge.modules.encounter"),
                clock=self._clock,
            )

            # Step 6: background sweeps
            self._tasks = [
                PeriodicTask(
                    "encounter-sweep",
                    self._lifecycle.sweep,
                    float(ConfigManager.get("lifecycle.sweep_interval_seconds", 60)),
                ),
                PeriodicTask(
                    "lockout-sweep",
                    self._ledger.sweep_expired,
                    float(ConfigManager.get("lockout.sweep_interval_seconds", 3600)),
                ),
            ]
            if self._start_sweeps:
                for task in self._tasks:
                    task.start()

            self._initialized = True
            logger.info(
                "Application context initialized",
                extra={
                    "duration_ms": round((time.perf_counter() - start_time) * 1000, 2),
                    "encounters": len(self._catalog),
                    "config": Config.get_config_summary(),
                },
            )

        except Exception as exc:
            logger.critical(
                "Application context initialization failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
                exc_info=True,
            )
            await self._emergency_shutdown()
            raise RuntimeError("Failed to initialize application context") from exc

    # ========================================================================
    # SHUTDOWN
    # ========================================================================

    async def shutdown(self) -> None:
        """Stop sweeps, flush pending writes, close connections."""
        if not self._initialized:
            logger.warning("ApplicationContext not initialized, nothing to shut down")
            return

        for task in self._tasks:
            await task.stop()

        if self._writer is not None:
            report = await self._writer.force_flush()
            if not report.ok:
                logger.error(
                    "Writes dropped during shutdown flush",
                    extra={"dropped_entity_ids": report.dropped_entity_ids},
                )

        await self._close_connections()
        self._initialized = False
        logger.info("Application context shutdown complete")

    async def _close_connections(self) -> None:
        if self._redis is not None:
            try:
                await self._redis.aclose()
            except Exception as exc:
                logger.error(
                    "Error closing Redis client",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                )
            self._redis = None

        if self._database is not None:
            try:
                await self._database.shutdown()
            except Exception as exc:
                logger.error(
                    "Error shutting down database",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                )

    async def _emergency_shutdown(self) -> None:
        """Best-effort cleanup when initialization fails partway through."""
        logger.warning("Performing emergency shutdown")
        for task in self._tasks:
            await task.stop()

        if self._writer is not None:
            try:
                report = await self._writer.force_flush()
            except Exception as exc:
                logger.error(
                    "Error flushing writes during emergency shutdown",
                    extra={"error": str(exc), "error_type": type(exc).__name__},
                )
            else:
                if not report.ok:
                    logger.error(
                        "Writes dropped during emergency shutdown",
                        extra={"dropped_entity_ids": report.dropped_entity_ids},
                    )
        await self._close_connections()

    # ========================================================================
    # HEALTH
    # ========================================================================

    async def health(self) -> Dict[str, Any]:
        """Snapshot of the database, the write path and the logging pipeline."""
        database_ok = await self._database.health_check() if self._database else False
        return {
            "initialized": self._initialized,
            "database": database_ok,
            "writer": self._writer.metrics if self._writer else None,
            "sweeps": {task.name: task.is_running for task in self._tasks},
            "logging": asdict(get_logging_health()),
        }

    # ========================================================================
    # PROPERTIES
    # ========================================================================

    def _require(self, component: Optional[object], name: str) -> object:
        if not self._initialized or component is None:
            raise RuntimeError(f"{name} not available: ApplicationContext not initialized")
        return component

    @property
    def catalog(self) -> EncounterCatalog:
        return self._require(self._catalog, "EncounterCatalog")  # type: ignore[return-value]

    @property
    def loot(self) -> LootGenerator:
        return self._require(self._loot, "LootGenerator")  # type: ignore[return-value]

    @property
    def lockout(self) -> LockoutLedger:
        return self._require(self._ledger, "LockoutLedger")  # type: ignore[return-value]

    @property
    def rewards(self) -> RewardDistributor:
        return self._require(self._distributor, "RewardDistributor")  # type: ignore[return-value]

    @property
    def lifecycle(self) -> EncounterLifecycleManager:
        return self._require(self._lifecycle, "EncounterLifecycleManager")  # type: ignore[return-value]

    @property
    def writer(self) -> WriteCoalescer:
        return self._require(self._writer, "WriteCoalescer")  # type: ignore[return-value]

    @property
    def database(self) -> DatabaseService:
        return self._require(self._database, "DatabaseService")  # type: ignore[return-value]

    @property
    def periodic_tasks(self) -> List[PeriodicTask]:
        return list(self._tasks)
