"""
LockoutLedger - Weekly completion lockouts (anti-farming gate)
==============================================================

Handles:
- Lockout status checks per (participant, encounter)
- Atomic claim of a completion (compare-and-set on `reset_at`)
- Administrative set / reset
- Listing a participant's active lockouts with time remaining
- Maintenance sweep of expired records

Availability over strictness
----------------------------
Every read path FAILS OPEN: if the store cannot be reached, `status()`
reports unlocked and `try_claim()` reports a win. Failures are logged as
warnings.

Atomic claim
------------
`try_claim()` replaces the racy "read status, later write lockout" sequence:

    1. INSERT the record. Succeeds only if no record exists.
    2. On a primary-key conflict, UPDATE ... WHERE reset_at <= now and bump
       `version`. Succeeds only if the existing lockout has expired.

Exactly one of two racing completions for the same pair gets a row count
of 1. The loser is told it lost.

Tunables (ConfigManager):
    lockout.window_days  (default 7)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import delete, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from raidforge.core.clock import Clock, SystemClock, ensure_utc
from raidforge.modules.lockout.model import LockoutRecord
from raidforge.modules.shared.base_service import BaseService

if TYPE_CHECKING:
    from logging import Logger

    from raidforge.core.config.manager import ConfigManager
    from raidforge.core.database.service import DatabaseService

DEFAULT_WINDOW_DAYS = 7


@dataclass(frozen=True)
class LockoutStatus:
    locked: bool
    reset_at: Optional[datetime] = None
    degraded: bool = False  # store unreachable; answer is the fail-open default


@dataclass(frozen=True)
class ActiveLockout:
    encounter_id: str
    last_completed: datetime
    reset_at: datetime
    time_remaining: timedelta


class LockoutLedger(BaseService):
    """
    Lockout records over the relational store.

    Boundary: `locked = now < reset_at`. At exactly `reset_at` the
    participant is unlocked, and expired records need no sweep to read as
    unlocked.
    """

    def __init__(
        self,
        database: DatabaseService,
        config_manager: "type[ConfigManager]",
        logger: Logger,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(config_manager, logger)
        self._db = database
        self._clock = clock or SystemClock()

    @property
    def window(self) -> timedelta:
        return timedelta(days=float(self.get_config("lockout.window_days", DEFAULT_WINDOW_DAYS)))

    def _now(self) -> datetime:
        return ensure_utc(self._clock.now())

    def _validate_key(self, participant_id: str, encounter_id: str) -> None:
        self.validate_non_empty(participant_id, "participant_id")
        self.validate_non_empty(encounter_id, "encounter_id")

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def status(self, participant_id: str, encounter_id: str) -> LockoutStatus:
        """
        Whether the participant is currently gated from this encounter.

        Never raises on store failure; returns unlocked instead.
        """
        self._validate_key(participant_id, encounter_id)
        now = self._now()

        try:
            async with self._db.get_session() as session:
                record = await session.get(LockoutRecord, (participant_id, encounter_id))
                reset_at = ensure_utc(record.reset_at) if record is not None else None
        except (SQLAlchemyError, OSError) as exc:
            self.log.warning(
                "Lockout status read failed; failing open",
                extra={
                    "participant_id": participant_id,
                    "encounter_id": encounter_id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return LockoutStatus(locked=False, reset_at=None, degraded=True)

        if reset_at is None or now >= reset_at:
            return LockoutStatus(locked=False, reset_at=None)
        return LockoutStatus(locked=True, reset_at=reset_at)

    async def list_active(self, participant_id: str) -> List[ActiveLockout]:
        """All encounters the participant is currently locked out of, soonest reset first."""
        self.validate_non_empty(participant_id, "participant_id")
        now = self._now()

        try:
            async with self._db.get_session() as session:
                result = await session.execute(
                    select(LockoutRecord)
                    .where(
                        LockoutRecord.participant_id == participant_id,
                        LockoutRecord.reset_at > now,
                    )
                    .order_by(LockoutRecord.reset_at)
                )
                records = list(result.scalars().all())
        except (SQLAlchemyError, OSError) as exc:
            self.log.warning(
                "Lockout list read failed; returning no lockouts",
                extra={
                    "participant_id": participant_id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return []

        active = []
        for record in records:
            reset_at = ensure_utc(record.reset_at)
            active.append(
                ActiveLockout(
                    encounter_id=record.encounter_id,
                    last_completed=ensure_utc(record.last_completed),
                    reset_at=reset_at,
                    time_remaining=reset_at - now,
                )
            )
        return active

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def try_claim(self, participant_id: str, encounter_id: str) -> bool:
        """
        Atomically record a completion if the participant is not locked.

        Returns:
            True if this call now owns the lockout (rewards may be granted),
            False if another completion holds an unexpired lockout.
        """
        self._validate_key(participant_id, encounter_id)
        now = self._now()
        reset_at = now + self.window

        try:
            try:
                async with self._db.get_transaction() as session:
                    await session.execute(
                        insert(LockoutRecord).values(
                            participant_id=participant_id,
                            encounter_id=encounter_id,
                            last_completed=now,
                            reset_at=reset_at,
                            version=1,
                        )
                    )
                claimed = True
            except IntegrityError:
                async with self._db.get_transaction() as session:
                    result = await session.execute(
                        update(LockoutRecord)
                        .where(
                            LockoutRecord.participant_id == participant_id,
                            LockoutRecord.encounter_id == encounter_id,
                            LockoutRecord.reset_at <= now,
                        )
                        .values(
                            last_completed=now,
                            reset_at=reset_at,
                            version=LockoutRecord.version + 1,
                        )
                    )
                    claimed = result.rowcount == 1  # type: ignore[attr-defined]
        except (SQLAlchemyError, OSError) as exc:
            self.log.warning(
                "Lockout claim failed; failing open",
                extra={
                    "participant_id": participant_id,
                    "encounter_id": encounter_id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return True

        self.log.info(
            "Lockout claimed" if claimed else "Lockout claim lost",
            extra={
                "participant_id": participant_id,
                "encounter_id": encounter_id,
                "claimed": claimed,
                "reset_at": reset_at.isoformat(),
            },
        )
        return claimed

    async def set(self, participant_id: str, encounter_id: str) -> datetime:
        """
        Unconditionally record a completion now.

        Returns:
            The new reset timestamp

        Raises:
            SQLAlchemyError: Writes do not fail open
        """
        self._validate_key(participant_id, encounter_id)
        now = self._now()
        reset_at = now + self.window

        async with self._db.get_transaction() as session:
            record = await session.get(LockoutRecord, (participant_id, encounter_id))
            if record is None:
                session.add(
                    LockoutRecord(
                        participant_id=participant_id,
                        encounter_id=encounter_id,
                        last_completed=now,
                        reset_at=reset_at,
                        version=1,
                    )
                )
            else:
                record.last_completed = now
                record.reset_at = reset_at
                record.version = record.version + 1

        self.log_operation(
            "lockout_set",
            participant_id=participant_id,
            encounter_id=encounter_id,
            reset_at=reset_at.isoformat(),
        )
        return reset_at

    async def reset(self, participant_id: str, encounter_id: str) -> bool:
        """
        Administrative unlock.

        Returns:
            True if a record was removed
        """
        self._validate_key(participant_id, encounter_id)

        async with self._db.get_transaction() as session:
            result = await session.execute(
                delete(LockoutRecord).where(
                    LockoutRecord.participant_id == participant_id,
                    LockoutRecord.encounter_id == encounter_id,
                )
            )
            removed = result.rowcount > 0  # type: ignore[attr-defined]

        self.log_operation(
            "lockout_reset",
            participant_id=participant_id,
            encounter_id=encounter_id,
            removed=removed,
        )
        return removed

    async def sweep_expired(self) -> int:
        """Delete records whose reset time has passed. Returns the count removed."""
        now = self._now()

        try:
            async with self._db.get_transaction() as session:
                result = await session.execute(
                    delete(LockoutRecord).where(LockoutRecord.reset_at <= now)
                )
                removed = int(result.rowcount or 0)  # type: ignore[attr-defined]
        except (SQLAlchemyError, OSError) as exc:
            self.log_error("lockout_sweep", exc)
            return 0

        if removed:
            self.log.info("Expired lockouts swept", extra={"removed": removed})
        return removed
