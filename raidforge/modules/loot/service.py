"""
LootGenerator - Weighted item generation for encounter rewards
==============================================================

Handles:
- Unique boss item override roll (per-encounter unique item table)
- Rarity selection from the difficulty's precomputed cumulative table
- Stat scaling by difficulty, rarity and level
- Proc effect selection without replacement from the archetype pool
- Consumable grants from the reward envelope

Pipeline for `generate()`:
    validate -> unique roll -> rarity roll -> scale template -> draw procs

The unique roll and the rarity roll are independent draws from the same
random source, unique first. Nothing is built until every input has been
validated, so callers never see a partially rolled item.

Tunables (ConfigManager):
    loot.unique_drop_chance  (default 0.15)
    loot.level_scaling       (default 0.1)
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING, Iterable, List, Optional

from raidforge.modules.catalog.models import (
    EQUIPMENT_SLOTS,
    Archetype,
    ConsumableGrant,
    Difficulty,
    Rarity,
    SlotTemplate,
)
from raidforge.modules.loot.items import ConsumableItem, GearItem, Item, UniqueItem
from raidforge.modules.shared.base_service import BaseService
from raidforge.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from raidforge.core.config.manager import ConfigManager
    from raidforge.modules.catalog.service import EncounterCatalog

DEFAULT_UNIQUE_DROP_CHANCE = 0.15
DEFAULT_LEVEL_SCALING = 0.1


def _item_id(encounter_id: str, rng: random.Random) -> str:
    return f"{encounter_id}-{rng.getrandbits(48):012x}"


class LootGenerator(BaseService):
    """
    Pure item generator over the catalog's loot tables.

    All randomness comes from one `random.Random`, either the generator's own
    or one passed per call, so a fixed seed reproduces the same item
    (ids included).
    """

    def __init__(
        self,
        catalog: EncounterCatalog,
        config_manager: "type[ConfigManager]",
        logger: Logger,
        rng: Optional[random.Random] = None,
    ) -> None:
        super().__init__(config_manager, logger)
        self._catalog = catalog
        self._tables = catalog.loot_tables
        self._rng = rng or random.Random()

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @property
    def unique_drop_chance(self) -> float:
        return float(self.get_config("loot.unique_drop_chance", DEFAULT_UNIQUE_DROP_CHANCE))

    @property
    def level_scaling(self) -> float:
        return float(self.get_config("loot.level_scaling", DEFAULT_LEVEL_SCALING))

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def roll_rarity(self, difficulty: Difficulty | str, rng: Optional[random.Random] = None) -> Rarity:
        """One uniform draw mapped through the difficulty's cumulative table."""
        difficulty = self._validate_difficulty(difficulty)
        source = rng or self._rng
        return self._tables.rarity_tables[difficulty].sample(source.random())

    def generate(
        self,
        encounter_id: str,
        difficulty: Difficulty | str,
        role: Archetype | str,
        slot: str,
        level: int,
        rng: Optional[random.Random] = None,
    ) -> Item:
        """
        Roll one item for an encounter reward slot.

        Args:
            encounter_id: Encounter the item drops from (provenance tag)
            difficulty: Difficulty tier driving rarity weights and multiplier
            role: Role archetype or class name selecting template and proc pool
            slot: Equipment slot tag
            level: Item level, usually the boss level
            rng: Optional random source overriding the generator's own

        Returns:
            A GearItem, or the encounter's UniqueItem on a successful override

        Raises:
            ValidationError: Unknown encounter, difficulty, role or slot
        """
        if not self._catalog.contains(encounter_id):
            raise ValidationError("encounter_id", f"unknown encounter '{encounter_id}'")
        difficulty = self._validate_difficulty(difficulty)
        archetype = self._catalog.resolve_archetype(role)
        template = self._validate_slot(archetype, slot)
        self.validate_positive_int(level, "level")

        source = rng or self._rng

        unique = self._tables.unique_items.get(encounter_id)
        if unique is not None and source.random() < self.unique_drop_chance:
            item = UniqueItem(
                item_id=_item_id(encounter_id, source),
                name=unique.name,
                slot=unique.slot,
                stats=unique.stats,
                procs=unique.procs,
                archetype=unique.archetype,
                source_encounter=encounter_id,
                level=level,
            )
            self.log.info(
                "Unique item dropped",
                extra={
                    "encounter_id": encounter_id,
                    "item_name": item.name,
                    "slot": item.slot,
                    "requested_slot": slot,
                },
            )
            return item

        rarity = self._tables.rarity_tables[difficulty].sample(source.random())

        multiplier = (
            self._tables.difficulty_multipliers[difficulty]
            * self._tables.rarity_multipliers[rarity]
            * (1 + level * self.level_scaling)
        )
        stats = template.stats.scaled(multiplier)

        proc_count = self._tables.proc_counts.get(rarity, 0)
        pool = self._tables.proc_pools.get(archetype, ())
        procs = tuple(source.sample(pool, proc_count)) if proc_count else ()

        item = GearItem(
            item_id=_item_id(encounter_id, source),
            name=f"{rarity.value.title()} {template.name}",
            rarity=rarity,
            slot=slot,
            stats=stats,
            procs=procs,
            level=level,
            archetype=archetype,
            source_encounter=encounter_id,
        )

        self.log.debug(
            "Gear item generated",
            extra={
                "encounter_id": encounter_id,
                "difficulty": difficulty.value,
                "archetype": archetype.value,
                "slot": slot,
                "rarity": rarity.value,
                "level": level,
                "proc_count": len(procs),
                "score": item.score,
            },
        )
        return item

    def consumables(
        self,
        encounter_id: str,
        grants: Iterable[ConsumableGrant],
        rng: Optional[random.Random] = None,
    ) -> List[ConsumableItem]:
        """Materialize an envelope's consumable grants as items."""
        source = rng or self._rng
        return [
            ConsumableItem(
                item_id=_item_id(encounter_id, source),
                key=grant.key,
                name=grant.name,
                quantity=grant.quantity,
                source_encounter=encounter_id,
            )
            for grant in grants
        ]

    def has_template(self, role: Archetype | str, slot: str) -> bool:
        archetype = self._catalog.resolve_archetype(role)
        return self._tables.template_for(archetype, slot) is not None

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def _validate_difficulty(self, difficulty: Difficulty | str) -> Difficulty:
        try:
            parsed = Difficulty(difficulty)
        except ValueError:
            raise ValidationError("difficulty", f"unknown difficulty '{difficulty}'") from None
        if parsed not in self._tables.rarity_tables:
            raise ValidationError("difficulty", f"no rarity table for '{parsed.value}'")
        return parsed

    def _validate_slot(self, archetype: Archetype, slot: str) -> SlotTemplate:
        if slot not in EQUIPMENT_SLOTS:
            raise ValidationError("slot", f"unknown equipment slot '{slot}'")
        template = self._tables.template_for(archetype, slot)
        if template is None:
            raise ValidationError(
                "slot", f"no {slot} template for archetype '{archetype.value}'"
            )
        return template
