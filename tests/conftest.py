"""
Pytest Configuration and Fixtures for raidforge Tests
======================================================

Purpose
-------
Centralized fixtures for the raidforge test suite: configuration, the
encounter catalog, a controllable clock, an in-memory batch committer and
a temporary SQLite lockout store.

Responsibilities
----------------
- Force the testing environment before any raidforge import
- Load the real YAML game data into ConfigManager per test
- Provide a SQLite-backed DatabaseService for integration tests
- Provide fakes for the entity store and inventory boundary

Non-Responsibilities
--------------------
- Test implementation (delegated to test files)
- Production configuration (test-specific only)

Architecture Notes
------------------
- Unit tests use mocks and fakes (fast, isolated)
- Integration tests use a throwaway SQLite file per test via aiosqlite
- Every fixture is function scoped; ConfigManager is reset around each test
"""

from __future__ import annotations

import os

os.environ["RAIDFORGE_ENV"] = "testing"
os.environ["LOG_TO_FILE"] = "false"
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import random
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator, Dict, List, Sequence, Set, Tuple

import pytest
import pytest_asyncio

from raidforge.core.config.manager import ConfigManager
from raidforge.core.database.service import DatabaseService
from raidforge.core.logging.logger import get_logger
from raidforge.core.persistence.coalescer import PendingWrite, WriteCoalescer
from raidforge.modules.catalog.service import EncounterCatalog
from raidforge.modules.lockout.model import LockoutRecord  # noqa: F401  registers the table
from raidforge.modules.lockout.service import LockoutLedger
from raidforge.modules.loot.service import LootGenerator

PROJECT_ROOT = Path(__file__).resolve().parents[1]
CONFIG_DIR = PROJECT_ROOT / "config"

START_TIME = datetime(2025, 6, 2, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# FAKES
# ============================================================================


class ManualClock:
    """
    Clock that only moves when a test tells it to.

    `advance` moves both readings; `set` steps the wall clock alone, the way
    an NTP correction would.
    """

    def __init__(self, start: datetime = START_TIME) -> None:
        self._now = start
        self._monotonic = 0.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, **delta: float) -> datetime:
        step = timedelta(**delta)
        self._now = self._now + step
        self._monotonic += step.total_seconds()
        return self._now

    def set(self, value: datetime) -> None:
        self._now = value


class FakeCommitter:
    """
    In-memory BatchCommitter.

    Records every chunk as (partition, [(entity_id, fields), ...]) and fails
    chunks for any partition listed in `fail_partitions`.
    """

    def __init__(self, fail_partitions: Sequence[str] = ()) -> None:
        self.fail_partitions: Set[str] = set(fail_partitions)
        self.commits: List[Tuple[str, List[Tuple[str, Dict]]]] = []

    async def commit_batch(self, partition: str, writes: Sequence[PendingWrite]) -> None:
        if partition in self.fail_partitions:
            raise ConnectionError(f"store unavailable for {partition}")
        self.commits.append(
            (partition, [(write.entity_id, dict(write.fields)) for write in writes])
        )

    def writes_for(self, partition: str, entity_id: str) -> List[Dict]:
        return [
            fields
            for committed_partition, writes in self.commits
            if committed_partition == partition
            for written_id, fields in writes
            if written_id == entity_id
        ]


# ============================================================================
# CONFIGURATION FIXTURES
# ============================================================================


@pytest.fixture
def config_manager():
    """
    ConfigManager loaded from the repository's YAML game data.

    Scope: function (overrides made with `set()` never leak between tests)
    """
    ConfigManager.reset()
    ConfigManager.initialize(CONFIG_DIR)
    yield ConfigManager
    ConfigManager.reset()


@pytest.fixture
def catalog(config_manager) -> EncounterCatalog:
    return EncounterCatalog.from_config(config_manager)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


# ============================================================================
# SERVICE FIXTURES
# ============================================================================


@pytest.fixture
def committer() -> FakeCommitter:
    return FakeCommitter()


@pytest_asyncio.fixture
async def writer(committer: FakeCommitter, clock: ManualClock) -> AsyncGenerator[WriteCoalescer, None]:
    """WriteCoalescer over the fake committer; drained on teardown so no timer outlives the test."""
    coalescer = WriteCoalescer(
        committer,
        batch_interval=10,
        max_batch_size=20,
        max_ops_per_commit=500,
        clock=clock,
    )
    yield coalescer
    await coalescer.force_flush()


@pytest.fixture
def loot(catalog: EncounterCatalog, config_manager) -> LootGenerator:
    return LootGenerator(
        catalog, config_manager, get_logger("tests.loot"), rng=random.Random(1234)
    )


# ============================================================================
# DATABASE FIXTURES (Integration Tests)
# ============================================================================


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncGenerator[DatabaseService, None]:
    """
    DatabaseService over a fresh SQLite file.

    Scope: function (clean slate per test)
    """
    service = DatabaseService(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await service.initialize()
    await service.create_schema()
    yield service
    await service.shutdown()


@pytest.fixture
def ledger(database: DatabaseService, config_manager, clock: ManualClock) -> LockoutLedger:
    return LockoutLedger(
        database, config_manager, get_logger("tests.lockout"), clock=clock
    )
