"""
Encounter catalog: static encounter templates and loot reference data.
"""

from __future__ import annotations

from .models import (
    EQUIPMENT_SLOTS,
    Archetype,
    BossDescriptor,
    ConsumableGrant,
    Difficulty,
    EncounterDefinition,
    EncounterKind,
    EncounterRequirements,
    EnemyGroup,
    LootTables,
    ProcEffect,
    Rarity,
    RarityTable,
    RewardEnvelope,
    SlotTemplate,
    SplitMode,
    StatBlock,
    UniqueItemTemplate,
    WaveDefinition,
)
from .service import EncounterCatalog

__all__ = [
    "EQUIPMENT_SLOTS",
    "Archetype",
    "BossDescriptor",
    "ConsumableGrant",
    "Difficulty",
    "EncounterCatalog",
    "EncounterDefinition",
    "EncounterKind",
    "EncounterRequirements",
    "EnemyGroup",
    "LootTables",
    "ProcEffect",
    "Rarity",
    "RarityTable",
    "RewardEnvelope",
    "SlotTemplate",
    "SplitMode",
    "StatBlock",
    "UniqueItemTemplate",
    "WaveDefinition",
]
