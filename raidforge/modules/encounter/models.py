"""
Encounter instance state.

An `EncounterInstance` is the live, mutable record of one party's attempt at
an encounter. Only `EncounterLifecycleManager` mutates it; everything else
reads snapshots via `to_dict()`.

State machine
-------------
    idle -> recruiting -> in_progress(wave_index) -> boss_phase -> completed
                               |                        |
                               +------- wiped ----------+--> failed

    any non-terminal state --(ttl / force_expire)--> expired
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from raidforge.modules.catalog.models import Archetype

if TYPE_CHECKING:
    from raidforge.modules.rewards.models import RewardSettlement


class LifecycleState(str, Enum):
    IDLE = "idle"
    RECRUITING = "recruiting"
    IN_PROGRESS = "in_progress"
    BOSS_PHASE = "boss_phase"
    COMPLETED = "completed"
    FAILED = "failed"
    EXPIRED = "expired"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES

    @property
    def is_running(self) -> bool:
        return self in (LifecycleState.IN_PROGRESS, LifecycleState.BOSS_PHASE)


TERMINAL_STATES = frozenset(
    {LifecycleState.COMPLETED, LifecycleState.FAILED, LifecycleState.EXPIRED}
)


class WaveOutcome(str, Enum):
    CLEARED = "cleared"
    WIPED = "wiped"


@dataclass
class Participant:
    """
    Roster snapshot of one party member.

    Accumulators are reward-weighting inputs only, not combat state.
    """

    participant_id: str
    role: str
    archetype: Archetype
    level: int
    power: int = 0
    display_name: str = ""
    damage_dealt: int = 0
    healing_done: int = 0
    deaths: int = 0

    @property
    def contribution(self) -> int:
        return self.damage_dealt + self.healing_done

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "role": self.role,
            "archetype": self.archetype.value,
            "level": self.level,
            "power": self.power,
            "display_name": self.display_name,
            "damage_dealt": self.damage_dealt,
            "healing_done": self.healing_done,
            "deaths": self.deaths,
        }


@dataclass
class EncounterInstance:
    instance_id: str
    encounter_id: str
    created_at: datetime
    expires_at: datetime
    state: LifecycleState = LifecycleState.IDLE
    wave_index: int = 0
    roster: List[Participant] = field(default_factory=list)
    terminal_at: Optional[datetime] = None
    terminal_reason: Optional[str] = None
    settlement: Optional["RewardSettlement"] = None
    # process-local monotonic readings; never persisted
    ttl_deadline: float = float("inf")
    terminal_monotonic: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def participant(self, participant_id: str) -> Optional[Participant]:
        for member in self.roster:
            if member.participant_id == participant_id:
                return member
        return None

    def participant_ids(self) -> List[str]:
        return [member.participant_id for member in self.roster]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_id": self.instance_id,
            "encounter_id": self.encounter_id,
            "state": self.state.value,
            "wave_index": self.wave_index,
            "roster": [member.to_dict() for member in self.roster],
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "terminal_at": self.terminal_at.isoformat() if self.terminal_at else None,
            "terminal_reason": self.terminal_reason,
            "settlement": self.settlement.summary() if self.settlement else None,
        }
