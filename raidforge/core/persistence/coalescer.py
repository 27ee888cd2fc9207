"""
Write Coalescer - buffered, merged entity writes.

Purpose
-------
Absorb bursts of partial updates to the same entities (participants,
encounter instance documents) and push them to the entity store as grouped
atomic commits, so a party of ten finishing a raid costs one commit instead
of dozens of single-field writes.

Responsibilities
----------------
- Merge partial field maps per (partition, entity_id) key
- Flush on an explicit immediate request, on the batch-size threshold, or
  on a delayed timer after `batch_interval`
- Chunk each partition's writes to the store's per-commit operation limit
- Log and drop failed chunks (no re-queue)
- Expose pending count and metrics

Merge Semantics
---------------
Fields are last-writer-wins per field, not per document:

- plain value then plain value: the newer value wins
- `Increment` then `Increment`: amounts are summed
- `Append` then `Append`: values are concatenated in queue order
- plain number then `Increment`: the increment is applied to the plain value
- plain list then `Append`: the values are appended to the plain list
- anything then plain value: the plain value wins

Architecture Notes
------------------
- One instance per process, built by the application context and passed to
  every caller. There is no module-level batcher.
- Merge and drain share one `asyncio.Lock`; a drain is taken in the same
  critical section as the merge that crossed the threshold, so no commit
  ever carries more than `max_batch_size` entities.
- Commits run outside the merge lock; new writes arriving meanwhile are
  merged into a fresh pending map.
- Commits are applied one at a time, in drain order, under a separate commit
  lock. An older drain of an entity therefore always lands before a newer
  one, and a plain field in the store ends up with the last queued value.
- Each commit runs as its own task and the caller awaits it through
  `asyncio.shield`. Cancelling the caller (a sweep being stopped, a request
  timing out) does not cancel the commit, and `force_flush` waits for every
  commit still in flight.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence, Set, Tuple, Union

from raidforge.core.clock import Clock, SystemClock
from raidforge.core.exceptions import TransientStoreError
from raidforge.core.logging.logger import get_logger

logger = get_logger(__name__)

Number = Union[int, float]


# ============================================================================
# Field transforms
# ============================================================================


@dataclass(frozen=True, slots=True)
class Increment:
    """Add `amount` to the stored numeric field."""

    amount: Number

    def merge(self, newer: "Increment") -> "Increment":
        return Increment(self.amount + newer.amount)


@dataclass(frozen=True, slots=True)
class Append:
    """Append `values` to the stored list field."""

    values: Tuple[Any, ...]

    def __init__(self, values: Sequence[Any]) -> None:
        object.__setattr__(self, "values", tuple(values))

    def merge(self, newer: "Append") -> "Append":
        return Append(self.values + newer.values)


def merge_field(older: Any, newer: Any) -> Any:
    """Combine two queued values for the same field."""
    if isinstance(newer, Increment):
        if isinstance(older, Increment):
            return older.merge(newer)
        if isinstance(older, (int, float)) and not isinstance(older, bool):
            return older + newer.amount
        return newer
    if isinstance(newer, Append):
        if isinstance(older, Append):
            return older.merge(newer)
        if isinstance(older, list):
            return [*older, *newer.values]
        return newer
    return newer


# ============================================================================
# Pending state
# ============================================================================


@dataclass(slots=True)
class PendingWrite:
    """Accumulated fields for one entity, held until flushed."""

    partition: str
    entity_id: str
    fields: Dict[str, Any]
    touched_at: datetime

    @property
    def key(self) -> Tuple[str, str]:
        return (self.partition, self.entity_id)

    def absorb(self, fields: Mapping[str, Any], touched_at: datetime) -> None:
        for name, value in fields.items():
            if name in self.fields:
                self.fields[name] = merge_field(self.fields[name], value)
            else:
                self.fields[name] = value
        self.touched_at = touched_at


class BatchCommitter(Protocol):
    """Grouped atomic write against the entity store. Raises on failure."""

    async def commit_batch(self, partition: str, writes: Sequence[PendingWrite]) -> None:
        ...


@dataclass(slots=True)
class FlushReport:
    entities: int = 0
    chunks: int = 0
    committed_chunks: int = 0
    failed_chunks: int = 0
    dropped_entity_ids: List[str] = field(default_factory=list)
    errors: List[TransientStoreError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed_chunks == 0

    def combine(self, other: "FlushReport") -> "FlushReport":
        return FlushReport(
            entities=self.entities + other.entities,
            chunks=self.chunks + other.chunks,
            committed_chunks=self.committed_chunks + other.committed_chunks,
            failed_chunks=self.failed_chunks + other.failed_chunks,
            dropped_entity_ids=self.dropped_entity_ids + other.dropped_entity_ids,
            errors=self.errors + other.errors,
        )


@dataclass(slots=True)
class CoalescerMetrics:
    writes_queued: int = 0
    merges: int = 0
    flushes: int = 0
    largest_flush: int = 0
    entities_committed: int = 0
    entities_dropped: int = 0
    chunks_committed: int = 0
    chunks_failed: int = 0
    last_flush_at: Optional[str] = None


# ============================================================================
# WriteCoalescer
# ============================================================================


class WriteCoalescer:
    """
    Buffers per-entity partial updates and flushes them in grouped commits.

    Args:
        committer: Store adapter implementing `commit_batch`
        batch_interval: Seconds before a scheduled flush fires
        max_batch_size: Pending entity count that triggers an immediate flush
        max_ops_per_commit: Largest chunk handed to one `commit_batch` call
        clock: Time source for `touched_at`
    """

    def __init__(
        self,
        committer: BatchCommitter,
        *,
        batch_interval: float = 10.0,
        max_batch_size: int = 20,
        max_ops_per_commit: int = 500,
        clock: Optional[Clock] = None,
    ) -> None:
        if batch_interval <= 0:
            raise ValueError("batch_interval must be positive")
        if max_batch_size < 1:
            raise ValueError("max_batch_size must be at least 1")
        if max_ops_per_commit < 1:
            raise ValueError("max_ops_per_commit must be at least 1")

        self._committer = committer
        self._batch_interval = float(batch_interval)
        self._max_batch_size = int(max_batch_size)
        self._max_ops_per_commit = int(max_ops_per_commit)
        self._clock = clock or SystemClock()

        self._pending: Dict[Tuple[str, str], PendingWrite] = {}
        self._lock = asyncio.Lock()
        self._commit_lock = asyncio.Lock()
        self._in_flight: Set[asyncio.Task[FlushReport]] = set()
        self._timer: Optional[asyncio.Task[None]] = None
        self._metrics = CoalescerMetrics()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    @property
    def max_batch_size(self) -> int:
        return self._max_batch_size

    @property
    def metrics(self) -> Dict[str, Any]:
        return {
            "writes_queued": self._metrics.writes_queued,
            "merges": self._metrics.merges,
            "flushes": self._metrics.flushes,
            "largest_flush": self._metrics.largest_flush,
            "entities_committed": self._metrics.entities_committed,
            "entities_dropped": self._metrics.entities_dropped,
            "chunks_committed": self._metrics.chunks_committed,
            "chunks_failed": self._metrics.chunks_failed,
            "last_flush_at": self._metrics.last_flush_at,
            "pending": self.pending_count,
            "commits_in_flight": len(self._in_flight),
            "timer_scheduled": self._timer is not None and not self._timer.done(),
        }

    def peek(self, partition: str, entity_id: str) -> Optional[Dict[str, Any]]:
        """Copy of the pending fields for an entity, if any."""
        pending = self._pending.get((partition, entity_id))
        return dict(pending.fields) if pending else None

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------

    async def queue_write(
        self,
        partition: str,
        entity_id: str,
        fields: Mapping[str, Any],
        immediate: bool = False,
    ) -> Optional[FlushReport]:
        """
        Merge `fields` into the pending update for the entity.

        Returns the FlushReport when this call triggered a flush, else None.
        """
        if not partition:
            raise ValueError("partition must be non-empty")
        if not entity_id:
            raise ValueError("entity_id must be non-empty")

        now = self._clock.now()
        key = (partition, entity_id)

        async with self._lock:
            existing = self._pending.get(key)
            if existing is None:
                self._pending[key] = PendingWrite(
                    partition=partition,
                    entity_id=entity_id,
                    fields=dict(fields),
                    touched_at=now,
                )
            else:
                existing.absorb(fields, now)
                self._metrics.merges += 1
            self._metrics.writes_queued += 1

            drained: Optional[List[PendingWrite]] = None
            if immediate or len(self._pending) >= self._max_batch_size:
                drained = self._drain_locked()

        if drained is not None:
            logger.debug(
                "Flush triggered by queue_write",
                extra={
                    "partition": partition,
                    "immediate": immediate,
                    "entity_count": len(drained),
                },
            )
            return await self._commit(drained)

        self._schedule_flush()
        return None

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    def _drain_locked(self) -> List[PendingWrite]:
        drained = list(self._pending.values())
        self._pending = {}
        self._cancel_timer()
        return drained

    def _cancel_timer(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None and not timer.done() and timer is not asyncio.current_task():
            timer.cancel()

    def _schedule_flush(self) -> None:
        if self._timer is not None and not self._timer.done():
            return
        if not self._pending:
            return
        self._timer = asyncio.create_task(
            self._delayed_flush(), name="write-coalescer-flush"
        )

    async def _delayed_flush(self) -> None:
        await asyncio.sleep(self._batch_interval)
        await self.flush()

    async def flush(self) -> FlushReport:
        """Drain everything pending and commit it."""
        async with self._lock:
            drained = self._drain_locked()
        return await self._commit(drained)

    async def force_flush(self) -> FlushReport:
        """
        Cancel the timer and drain until nothing is pending.

        Intended for shutdown. Writes that arrive while a commit is in flight
        are picked up by the next pass, and commits started by callers that
        have since been cancelled are waited for.
        """
        report = FlushReport()
        while True:
            async with self._lock:
                drained = self._drain_locked()
            if drained:
                report = report.combine(await self._commit(drained))
                continue

            in_flight = list(self._in_flight)
            if not in_flight:
                break
            for result in await asyncio.gather(*in_flight, return_exceptions=True):
                if isinstance(result, FlushReport):
                    report = report.combine(result)

        logger.info(
            "Write coalescer force-flushed",
            extra={
                "entities": report.entities,
                "failed_chunks": report.failed_chunks,
            },
        )
        return report

    def _chunk(self, drained: List[PendingWrite]) -> List[Tuple[str, List[PendingWrite]]]:
        by_partition: Dict[str, List[PendingWrite]] = {}
        for write in drained:
            by_partition.setdefault(write.partition, []).append(write)

        chunks: List[Tuple[str, List[PendingWrite]]] = []
        for partition, writes in by_partition.items():
            for start in range(0, len(writes), self._max_ops_per_commit):
                chunks.append((partition, writes[start:start + self._max_ops_per_commit]))
        return chunks

    async def _commit(self, drained: List[PendingWrite]) -> FlushReport:
        if not drained:
            return FlushReport()

        # task creation order is drain order, and the commit lock is FIFO
        task = asyncio.create_task(self._commit_in_order(drained), name="write-coalescer-commit")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning(
                "Flush caller cancelled; commit continues in the background",
                extra={
                    "entity_count": len(drained),
                    "entity_ids": [w.entity_id for w in drained],
                },
            )
            raise

    async def _commit_in_order(self, drained: List[PendingWrite]) -> FlushReport:
        async with self._commit_lock:
            return await self._commit_chunks(drained)

    async def _commit_chunks(self, drained: List[PendingWrite]) -> FlushReport:
        report = FlushReport(entities=len(drained))
        chunks = self._chunk(drained)
        report.chunks = len(chunks)

        results = await asyncio.gather(
            *(self._committer.commit_batch(partition, writes) for partition, writes in chunks),
            return_exceptions=True,
        )

        for (partition, writes), result in zip(chunks, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.CancelledError):
                    raise result
                entity_ids = [w.entity_id for w in writes]
                error = TransientStoreError(partition, entity_ids, result)  # type: ignore[arg-type]
                report.failed_chunks += 1
                report.dropped_entity_ids.extend(entity_ids)
                report.errors.append(error)
                logger.error(
                    "Store commit failed; dropping chunk",
                    extra={
                        "error_code": error.error_code,
                        "partition": partition,
                        "dropped_entity_ids": entity_ids,
                        "error": str(result),
                        "error_type": type(result).__name__,
                    },
                )
            else:
                report.committed_chunks += 1

        self._metrics.flushes += 1
        self._metrics.largest_flush = max(self._metrics.largest_flush, len(drained))
        self._metrics.entities_committed += len(drained) - len(report.dropped_entity_ids)
        self._metrics.entities_dropped += len(report.dropped_entity_ids)
        self._metrics.chunks_committed += report.committed_chunks
        self._metrics.chunks_failed += report.failed_chunks
        self._metrics.last_flush_at = self._clock.now().isoformat()

        logger.debug(
            "Write coalescer flushed",
            extra={
                "entities": report.entities,
                "chunks": report.chunks,
                "failed_chunks": report.failed_chunks,
            },
        )
        return report
