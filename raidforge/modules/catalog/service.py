"""
EncounterCatalog - read-only encounter and loot reference data
===============================================================

Handles:
- Lookup of encounter definitions by id (raids and dungeons share one id space)
- Filtering by difficulty, kind and participant eligibility
- Mapping class names (paladin, cleric, mage, ...) to role archetypes
- Owning the loot tables the LootGenerator draws from

The catalog has no mutation operations. It is built once, either from the
YAML tree held by ConfigManager or from a plain mapping, and validated
completely at load time (see `raidforge.modules.catalog.loader`).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Mapping, Optional

from raidforge.core.logging.logger import get_logger
from raidforge.modules.catalog.loader import CatalogLoader
from raidforge.modules.catalog.models import (
    Archetype,
    Difficulty,
    EncounterDefinition,
    EncounterKind,
    LootTables,
)
from raidforge.modules.shared.exceptions import NotFoundError, ValidationError

if TYPE_CHECKING:
    from raidforge.core.config.manager import ConfigManager

logger = get_logger(__name__)

CATALOG_SECTIONS = ("raids", "dungeons", "loot_tables", "role_archetypes")


class EncounterCatalog:
    """
    Immutable registry of encounter templates.

    Usage
    -----
    >>> catalog = EncounterCatalog.from_config(ConfigManager)
    >>> definition = catalog.get("corrupted_temple")
    >>> definition.wave_count
    3
    """

    def __init__(
        self,
        encounters: Mapping[str, EncounterDefinition],
        loot_tables: LootTables,
        role_archetypes: Optional[Mapping[str, Archetype]] = None,
    ) -> None:
        self._encounters: Dict[str, EncounterDefinition] = dict(encounters)
        self._loot_tables = loot_tables
        self._roles: Dict[str, Archetype] = dict(role_archetypes or {})

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "EncounterCatalog":
        """
        Build and validate a catalog from a raw configuration tree.

        Raises:
            CatalogValidationError: listing every problem found
        """
        encounters, tables, roles = CatalogLoader(data).load()
        catalog = cls(encounters, tables, roles)
        logger.info(
            "Encounter catalog loaded",
            extra={
                "encounter_count": len(encounters),
                "raid_count": len(catalog.by_kind(EncounterKind.RAID)),
                "dungeon_count": len(catalog.by_kind(EncounterKind.DUNGEON)),
                "unique_item_count": len(tables.unique_items),
                "role_count": len(roles),
            },
        )
        return catalog

    @classmethod
    def from_config(cls, config_manager: "type[ConfigManager]") -> "EncounterCatalog":
        data = {section: config_manager.get(section, {}) for section in CATALOG_SECTIONS}
        return cls.from_mapping(data)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, encounter_id: str) -> EncounterDefinition:
        """
        Return the definition for `encounter_id`.

        Raises:
            NotFoundError: If no encounter has that id
        """
        definition = self._encounters.get(encounter_id)
        if definition is None:
            raise NotFoundError("Encounter", encounter_id)
        return definition

    def contains(self, encounter_id: str) -> bool:
        return encounter_id in self._encounters

    def __contains__(self, encounter_id: object) -> bool:
        return encounter_id in self._encounters

    def __len__(self) -> int:
        return len(self._encounters)

    def __iter__(self) -> Iterator[EncounterDefinition]:
        return iter(self._encounters.values())

    def all(self) -> List[EncounterDefinition]:
        return list(self._encounters.values())

    def by_difficulty(self, difficulty: Difficulty) -> List[EncounterDefinition]:
        return [d for d in self._encounters.values() if d.difficulty == difficulty]

    def by_kind(self, kind: EncounterKind) -> List[EncounterDefinition]:
        return [d for d in self._encounters.values() if d.kind == kind]

    def available_for(self, level: int, power: int) -> List[EncounterDefinition]:
        """Encounters whose level and item-score gates the participant clears."""
        return [d for d in self._encounters.values() if d.admits(level, power)]

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def resolve_archetype(self, role: str | Archetype) -> Archetype:
        """
        Map a class name or archetype name to its archetype.

        Raises:
            ValidationError: If the role is neither a known class nor archetype
        """
        if isinstance(role, Archetype):
            return role
        key = str(role or "").strip().lower()
        if key in self._roles:
            return self._roles[key]
        try:
            return Archetype(key)
        except ValueError:
            raise ValidationError("role", f"unknown role archetype '{role}'") from None

    @property
    def loot_tables(self) -> LootTables:
        return self._loot_tables
