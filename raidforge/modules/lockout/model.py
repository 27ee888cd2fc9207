"""
LockoutRecord Model - Per-encounter completion gate
===================================================

Purpose
-------
One row per (participant_id, encounter_id) recording the last completion
that paid out rewards, and when the participant may claim again.

Schema Design
-------------
- Composite primary key prevents duplicate records at DB level
- `reset_at` is stored (last_completed + window) so "is locked" and
  "sweep expired" are single indexed comparisons
- `version` is bumped on every write; the conditional claim update checks
  `reset_at` and bumps it in the same statement
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String

from raidforge.core.database.base import Base


class LockoutRecord(Base):
    """
    Last rewarded completion of an encounter by a participant.

    Composite Primary Key: (participant_id, encounter_id)
    """

    __tablename__ = "encounter_lockouts"

    # ========================================================================
    # PRIMARY KEY COMPONENTS
    # ========================================================================

    participant_id = Column(
        String(64),
        primary_key=True,
        nullable=False,
        comment="Participant that completed the encounter",
    )

    encounter_id = Column(
        String(100),
        primary_key=True,
        nullable=False,
        comment="Encounter definition id",
    )

    # ========================================================================
    # LOCKOUT WINDOW
    # ========================================================================

    last_completed = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    reset_at = Column(
        DateTime(timezone=True),
        nullable=False,
        comment="last_completed + lockout window; unlocked at and after this instant",
    )

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        # Index for sweep queries
        Index("idx_encounter_lockouts_reset_at", "reset_at"),
    )

    @property
    def key(self) -> str:
        return f"{self.participant_id}:{self.encounter_id}"

    def __repr__(self) -> str:
        return (
            f"<LockoutRecord("
            f"participant_id='{self.participant_id}', "
            f"encounter_id='{self.encounter_id}', "
            f"reset_at={self.reset_at}, "
            f"version={self.version}"
            f")>"
        )
