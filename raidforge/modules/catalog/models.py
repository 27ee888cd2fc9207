"""
Encounter and loot reference data models.

Purpose
-------
Immutable value objects describing every encounter template and the loot
tables the generator draws from. Instances are built once at load time by
`raidforge.modules.catalog.loader` and never mutated.

Design Notes
------------
- Frozen dataclasses throughout; collections are tuples so definitions can be
  shared freely between the lifecycle manager, the loot generator and the
  reward distributor.
- `Rarity` is ordered (rare < epic < legendary) by rank, not by string value.
- `RarityTable` stores the cumulative distribution computed at load time;
  sampling is one comparison walk.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Tuple

# ============================================================================
# Enumerations
# ============================================================================


class Difficulty(str, Enum):
    NORMAL = "normal"
    HEROIC = "heroic"
    MYTHIC = "mythic"


class EncounterKind(str, Enum):
    RAID = "raid"
    DUNGEON = "dungeon"


class Archetype(str, Enum):
    TANK = "tank"
    HEALER = "healer"
    DPS = "dps"


class SplitMode(str, Enum):
    """How an envelope's currency and experience are divided."""

    EQUAL = "equal"
    ROLE = "role"
    CONTRIBUTION = "contribution"


class Rarity(str, Enum):
    """Item power tier. Compares by rank: rare < epic < legendary."""

    RARE = "rare"
    EPIC = "epic"
    LEGENDARY = "legendary"

    @property
    def rank(self) -> int:
        return _RARITY_RANK[self.value]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Rarity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Rarity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Rarity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Rarity):
            return NotImplemented
        return self.rank >= other.rank


_RARITY_RANK: Dict[str, int] = {"rare": 0, "epic": 1, "legendary": 2}

EQUIPMENT_SLOTS: Tuple[str, ...] = ("weapon", "armor", "accessory", "shield")


# ============================================================================
# Stats and procs
# ============================================================================


@dataclass(frozen=True, slots=True)
class StatBlock:
    attack: int = 0
    defense: int = 0
    hp: int = 0

    def scaled(self, multiplier: float) -> "StatBlock":
        """Multiply every dimension independently, flooring each result."""
        return StatBlock(
            attack=math.floor(self.attack * multiplier),
            defense=math.floor(self.defense * multiplier),
            hp=math.floor(self.hp * multiplier),
        )

    def to_dict(self) -> Dict[str, int]:
        return {"attack": self.attack, "defense": self.defense, "hp": self.hp}


@dataclass(frozen=True, slots=True)
class ProcEffect:
    """Chance-triggered secondary effect, evaluated by the combat layer."""

    name: str
    effect: str
    magnitude: float
    chance: float
    description: str = ""

    def to_dict(self) -> Dict[str, object]:
        return {
            "name": self.name,
            "effect": self.effect,
            "magnitude": self.magnitude,
            "chance": self.chance,
            "description": self.description,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "ProcEffect":
        return cls(
            name=str(data["name"]),
            effect=str(data["effect"]),
            magnitude=float(data["magnitude"]),  # type: ignore[arg-type]
            chance=float(data["chance"]),  # type: ignore[arg-type]
            description=str(data.get("description", "")),
        )


# ============================================================================
# Loot tables
# ============================================================================


@dataclass(frozen=True, slots=True)
class SlotTemplate:
    slot: str
    name: str
    stats: StatBlock


@dataclass(frozen=True, slots=True)
class UniqueItemTemplate:
    """Fixed boss item that can override a normal roll for one encounter."""

    name: str
    slot: str
    archetype: Archetype
    stats: StatBlock
    procs: Tuple[ProcEffect, ...] = ()


@dataclass(frozen=True, slots=True)
class RarityTable:
    """
    Cumulative distribution over rarity tiers for one difficulty.

    `bounds[i]` is the upper edge of `tiers[i]`; the last bound is 1.0 up to
    float rounding.
    """

    tiers: Tuple[Rarity, ...]
    bounds: Tuple[float, ...]

    @classmethod
    def from_weights(
        cls,
        weights: Mapping[Rarity, float],
        tolerance: float = 1e-9,
    ) -> "RarityTable":
        """
        Build the cumulative table, ordered by rarity rank.

        Raises ValueError if any weight is negative or the total is not 1.0
        within `tolerance`. Zero-weight tiers are omitted.
        """
        if not weights:
            raise ValueError("rarity weights are empty")
        for rarity, weight in weights.items():
            if weight < 0:
                raise ValueError(f"negative weight {weight} for {rarity.value}")

        total = math.fsum(weights.values())
        if abs(total - 1.0) > tolerance:
            raise ValueError(f"rarity weights sum to {total!r}, expected 1.0")

        tiers = []
        bounds = []
        running = 0.0
        for rarity in sorted(weights):
            weight = weights[rarity]
            if weight == 0:
                continue
            running += weight
            tiers.append(rarity)
            bounds.append(running)

        return cls(tiers=tuple(tiers), bounds=tuple(bounds))

    def sample(self, roll: float) -> Rarity:
        """Map a uniform draw in [0, 1) to a tier."""
        for tier, bound in zip(self.tiers, self.bounds):
            if roll < bound:
                return tier
        return self.tiers[-1]

    def probability(self, rarity: Rarity) -> float:
        previous = 0.0
        for tier, bound in zip(self.tiers, self.bounds):
            if tier == rarity:
                return bound - previous
            previous = bound
        return 0.0


@dataclass(frozen=True)
class LootTables:
    difficulty_multipliers: Mapping[Difficulty, float]
    rarity_multipliers: Mapping[Rarity, float]
    rarity_tables: Mapping[Difficulty, RarityTable]
    proc_counts: Mapping[Rarity, int]
    stat_templates: Mapping[Archetype, Mapping[str, SlotTemplate]]
    proc_pools: Mapping[Archetype, Tuple[ProcEffect, ...]]
    unique_items: Mapping[str, UniqueItemTemplate] = field(default_factory=dict)

    def template_for(self, archetype: Archetype, slot: str) -> Optional[SlotTemplate]:
        return self.stat_templates.get(archetype, {}).get(slot)

    def slots_for(self, archetype: Archetype) -> Tuple[str, ...]:
        return tuple(self.stat_templates.get(archetype, {}).keys())


# ============================================================================
# Encounters
# ============================================================================


@dataclass(frozen=True, slots=True)
class EnemyGroup:
    enemy_type: str
    count: int
    level: int


@dataclass(frozen=True, slots=True)
class WaveDefinition:
    name: str
    enemies: Tuple[EnemyGroup, ...]

    @property
    def enemy_count(self) -> int:
        return sum(group.count for group in self.enemies)


@dataclass(frozen=True, slots=True)
class BossDescriptor:
    name: str
    level: int
    hp: int = 0
    attack: int = 0
    defense: int = 0
    mechanics: Tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class EncounterRequirements:
    min_level: int = 1
    min_power: int = 0
    min_party_size: int = 1
    max_party_size: int = 1


@dataclass(frozen=True, slots=True)
class ConsumableGrant:
    key: str
    name: str
    quantity: int = 1


@dataclass(frozen=True)
class RewardEnvelope:
    gold: int = 0
    tokens: int = 0
    experience: int = 0
    guaranteed_loot: Tuple[str, ...] = ()
    consumables: Tuple[ConsumableGrant, ...] = ()
    split_mode: SplitMode = SplitMode.EQUAL
    role_weights: Mapping[Archetype, float] = field(default_factory=dict)


@dataclass(frozen=True)
class EncounterDefinition:
    encounter_id: str
    name: str
    kind: EncounterKind
    difficulty: Difficulty
    waves: Tuple[WaveDefinition, ...]
    boss: BossDescriptor
    requirements: EncounterRequirements
    rewards: RewardEnvelope
    description: str = ""
    estimated_duration_seconds: int = 0

    @property
    def wave_count(self) -> int:
        return len(self.waves)

    def admits(self, level: int, power: int) -> bool:
        return (
            level >= self.requirements.min_level
            and power >= self.requirements.min_power
        )
