"""
Generated item shapes.

Items are a closed tagged variant discriminated by `kind`:

- `GearItem` ("gear"): a rolled equipment piece with rarity-scaled stats and
  zero to three procs drawn from the archetype pool.
- `UniqueItem` ("unique"): a fixed boss item, always legendary, whose stats
  and procs come verbatim from the unique item table.
- `ConsumableItem` ("consumable"): a stackable reward with no stats.

Each shape carries only the fields valid for it. `to_dict()` produces the
document appended to the participant inventory; `item_from_dict()` reverses it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Tuple, Union

from raidforge.modules.catalog.models import Archetype, ProcEffect, Rarity, StatBlock
from raidforge.modules.shared.exceptions import ValidationError

RARITY_SCORE_BONUS: Dict[Rarity, float] = {
    Rarity.RARE: 1.1,
    Rarity.EPIC: 1.3,
    Rarity.LEGENDARY: 1.5,
}
PROC_SCORE = 50


def item_score(stats: StatBlock, rarity: Rarity, proc_count: int) -> int:
    """Single comparable power number: (atk + def + hp/2) * bonus + 50 per proc."""
    base = stats.attack + stats.defense + stats.hp / 2
    return math.floor(base * RARITY_SCORE_BONUS[rarity] + PROC_SCORE * proc_count)


@dataclass(frozen=True, slots=True)
class GearItem:
    item_id: str
    name: str
    rarity: Rarity
    slot: str
    stats: StatBlock
    procs: Tuple[ProcEffect, ...]
    level: int
    archetype: Archetype
    source_encounter: str
    kind: str = "gear"

    @property
    def score(self) -> int:
        return item_score(self.stats, self.rarity, len(self.procs))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "item_id": self.item_id,
            "name": self.name,
            "rarity": self.rarity.value,
            "slot": self.slot,
            "stats": self.stats.to_dict(),
            "procs": [proc.to_dict() for proc in self.procs],
            "level": self.level,
            "archetype": self.archetype.value,
            "source_encounter": self.source_encounter,
            "score": self.score,
        }


@dataclass(frozen=True, slots=True)
class UniqueItem:
    item_id: str
    name: str
    slot: str
    stats: StatBlock
    procs: Tuple[ProcEffect, ...]
    archetype: Archetype
    source_encounter: str
    level: int
    kind: str = "unique"

    @property
    def rarity(self) -> Rarity:
        return Rarity.LEGENDARY

    @property
    def score(self) -> int:
        return item_score(self.stats, self.rarity, len(self.procs))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "item_id": self.item_id,
            "name": self.name,
            "rarity": self.rarity.value,
            "slot": self.slot,
            "stats": self.stats.to_dict(),
            "procs": [proc.to_dict() for proc in self.procs],
            "archetype": self.archetype.value,
            "source_encounter": self.source_encounter,
            "level": self.level,
            "score": self.score,
        }


@dataclass(frozen=True, slots=True)
class ConsumableItem:
    item_id: str
    key: str
    name: str
    quantity: int
    source_encounter: str
    kind: str = "consumable"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "item_id": self.item_id,
            "key": self.key,
            "name": self.name,
            "quantity": self.quantity,
            "source_encounter": self.source_encounter,
        }


Item = Union[GearItem, UniqueItem, ConsumableItem]


def _stats(data: Mapping[str, Any]) -> StatBlock:
    raw = data.get("stats") or {}
    return StatBlock(
        attack=int(raw.get("attack", 0)),
        defense=int(raw.get("defense", 0)),
        hp=int(raw.get("hp", 0)),
    )


def _procs(data: Mapping[str, Any]) -> Tuple[ProcEffect, ...]:
    return tuple(ProcEffect.from_dict(p) for p in data.get("procs") or [])


def item_from_dict(data: Mapping[str, Any]) -> Item:
    """
    Rebuild an item from its inventory document.

    Raises:
        ValidationError: If `kind` is missing or not a known item shape
    """
    kind = data.get("kind")
    try:
        if kind == "gear":
            return GearItem(
                item_id=str(data["item_id"]),
                name=str(data["name"]),
                rarity=Rarity(data["rarity"]),
                slot=str(data["slot"]),
                stats=_stats(data),
                procs=_procs(data),
                level=int(data.get("level", 1)),
                archetype=Archetype(data["archetype"]),
                source_encounter=str(data["source_encounter"]),
            )
        if kind == "unique":
            return UniqueItem(
                item_id=str(data["item_id"]),
                name=str(data["name"]),
                slot=str(data["slot"]),
                stats=_stats(data),
                procs=_procs(data),
                archetype=Archetype(data["archetype"]),
                source_encounter=str(data["source_encounter"]),
                level=int(data.get("level", 1)),
            )
        if kind == "consumable":
            return ConsumableItem(
                item_id=str(data["item_id"]),
                key=str(data["key"]),
                name=str(data["name"]),
                quantity=int(data.get("quantity", 1)),
                source_encounter=str(data["source_encounter"]),
            )
    except (KeyError, ValueError) as exc:
        raise ValidationError("item", f"malformed {kind} item document ({exc})") from exc

    raise ValidationError("item", f"unknown item kind {kind!r}")
