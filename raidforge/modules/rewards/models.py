"""
Reward settlement records and the inventory boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Protocol, Sequence

from raidforge.modules.loot.items import Item
from raidforge.modules.shared.exceptions import CapacityError, ConcurrencyHazard


class InventoryGateway(Protocol):
    """Pass/fail capacity check owned by the inventory system."""

    async def can_accept(self, participant_id: str, items: Sequence[Item]) -> bool:
        ...


class AcceptAllInventory:
    """Gateway for deployments without inventory limits."""

    async def can_accept(self, participant_id: str, items: Sequence[Item]) -> bool:
        return True


@dataclass
class ParticipantGrant:
    participant_id: str
    gold: int
    tokens: int
    experience: int
    items: List[Item] = field(default_factory=list)
    items_withheld: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "participant_id": self.participant_id,
            "gold": self.gold,
            "tokens": self.tokens,
            "experience": self.experience,
            "items": [item.to_dict() for item in self.items],
            "items_withheld": self.items_withheld,
        }


@dataclass
class RewardSettlement:
    """
    Outcome of paying out one completed instance.

    `capacity_errors` and `conflicts` are surfaced to the caller for player
    messaging; they never abort the settlement for other participants.
    """

    instance_id: str
    encounter_id: str
    grants: List[ParticipantGrant] = field(default_factory=list)
    skipped_locked: List[str] = field(default_factory=list)
    capacity_errors: List[CapacityError] = field(default_factory=list)
    conflicts: List[ConcurrencyHazard] = field(default_factory=list)

    def grant_for(self, participant_id: str) -> ParticipantGrant | None:
        for grant in self.grants:
            if grant.participant_id == participant_id:
                return grant
        return None

    @property
    def rewarded_ids(self) -> List[str]:
        return [grant.participant_id for grant in self.grants]

    def summary(self) -> Dict[str, Any]:
        return {
            "rewarded": self.rewarded_ids,
            "skipped_locked": list(self.skipped_locked),
            "capacity_errors": [err.participant_id for err in self.capacity_errors],
            "conflicts": [err.participant_id for err in self.conflicts],
        }
