"""
Loot generation: item shapes and the weighted LootGenerator.
"""

from __future__ import annotations

from .items import (
    ConsumableItem,
    GearItem,
    Item,
    UniqueItem,
    item_from_dict,
    item_score,
)
from .service import LootGenerator

__all__ = [
    "ConsumableItem",
    "GearItem",
    "Item",
    "LootGenerator",
    "UniqueItem",
    "item_from_dict",
    "item_score",
]
