"""
Catalog loading and load-time validation.

Turns the raw configuration tree (`raids`, `dungeons`, `loot_tables`,
`role_archetypes`) into immutable catalog models. Every problem found is
collected and reported together in one `CatalogValidationError`, so a broken
data file is fixed in one pass rather than one error per boot.

Checks
------
- every rarity-weight table sums to 1.0 (tolerance 1e-9)
- every difficulty has a rarity table, a difficulty multiplier and is used
  only if both exist
- every rarity has a multiplier and a proc count
- every archetype has a proc pool large enough for the highest proc count
- every encounter has a non-empty wave list, a boss, consistent party bounds
  and only known equipment slots in its guaranteed loot
- at most one unique item per encounter id, and only for known encounters
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Type, TypeVar

from raidforge.core.exceptions import CatalogValidationError
from raidforge.core.logging.logger import get_logger
from raidforge.modules.catalog.models import (
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

logger = get_logger(__name__)

RARITY_SUM_TOLERANCE = 1e-9

E = TypeVar("E")


class CatalogLoader:
    """
    Single-use parser for one configuration tree.

    Usage
    -----
    >>> loader = CatalogLoader(raw)
    >>> encounters, tables, roles = loader.load()
    """

    def __init__(self, data: Mapping[str, Any]) -> None:
        self._data = data
        self._problems: List[str] = []

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def load(
        self,
    ) -> Tuple[Dict[str, EncounterDefinition], LootTables, Dict[str, Archetype]]:
        roles = self._parse_roles(self._data.get("role_archetypes") or {})
        tables = self._parse_loot_tables(self._data.get("loot_tables") or {})

        encounters: Dict[str, EncounterDefinition] = {}
        for section, kind in (("raids", EncounterKind.RAID), ("dungeons", EncounterKind.DUNGEON)):
            for encounter_id, raw in (self._data.get(section) or {}).items():
                where = f"{section}.{encounter_id}"
                if encounter_id in encounters:
                    self._problem(where, "duplicate encounter id")
                    continue
                definition = self._parse_encounter(str(encounter_id), kind, raw, where)
                if definition is not None:
                    encounters[definition.encounter_id] = definition

        if not encounters:
            self._problem("encounters", "no raids or dungeons defined")

        if tables is not None:
            self._cross_check(encounters, tables)

        if self._problems:
            logger.error(
                "Catalog validation failed",
                extra={"problem_count": len(self._problems), "problems": self._problems},
            )
            raise CatalogValidationError(self._problems)

        assert tables is not None
        return encounters, tables, roles

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _problem(self, where: str, message: str) -> None:
        self._problems.append(f"{where}: {message}")

    def _enum(self, enum_type: Type[E], value: Any, where: str) -> Optional[E]:
        try:
            return enum_type(str(value).lower())  # type: ignore[call-arg]
        except ValueError:
            self._problem(where, f"unknown {enum_type.__name__.lower()} '{value}'")
            return None

    def _number(
        self,
        raw: Mapping[str, Any],
        key: str,
        where: str,
        cast: Callable[[Any], Any] = int,
        default: Any = 0,
        minimum: Optional[float] = 0,
    ) -> Any:
        value = raw.get(key, default)
        try:
            result = cast(value)
        except (TypeError, ValueError):
            self._problem(f"{where}.{key}", f"expected a number, got {value!r}")
            return default
        if minimum is not None and result < minimum:
            self._problem(f"{where}.{key}", f"must be >= {minimum}, got {result}")
        return result

    def _stats(self, raw: Mapping[str, Any], where: str) -> StatBlock:
        return StatBlock(
            attack=self._number(raw, "attack", where),
            defense=self._number(raw, "defense", where),
            hp=self._number(raw, "hp", where),
        )

    def _procs(self, raw_list: Any, where: str) -> Tuple[ProcEffect, ...]:
        procs = []
        for index, raw in enumerate(raw_list or []):
            try:
                proc = ProcEffect.from_dict(raw)
            except (KeyError, TypeError, ValueError) as exc:
                self._problem(f"{where}[{index}]", f"malformed proc effect ({exc})")
                continue
            if not 0.0 <= proc.chance <= 1.0:
                self._problem(f"{where}[{index}]", f"trigger chance {proc.chance} outside [0, 1]")
            procs.append(proc)
        return tuple(procs)

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def _parse_roles(self, raw: Mapping[str, Any]) -> Dict[str, Archetype]:
        roles: Dict[str, Archetype] = {}
        for archetype_name, class_names in raw.items():
            archetype = self._enum(Archetype, archetype_name, f"role_archetypes.{archetype_name}")
            if archetype is None:
                continue
            for class_name in class_names or []:
                key = str(class_name).lower()
                if key in roles and roles[key] != archetype:
                    self._problem(
                        f"role_archetypes.{archetype_name}",
                        f"class '{key}' already mapped to {roles[key].value}",
                    )
                    continue
                roles[key] = archetype
        return roles

    # ------------------------------------------------------------------
    # Loot tables
    # ------------------------------------------------------------------

    def _parse_loot_tables(self, raw: Mapping[str, Any]) -> Optional[LootTables]:
        where = "loot_tables"
        if not raw:
            self._problem(where, "missing")
            return None

        difficulty_multipliers: Dict[Difficulty, float] = {}
        for name, value in (raw.get("difficulty_multipliers") or {}).items():
            difficulty = self._enum(Difficulty, name, f"{where}.difficulty_multipliers")
            if difficulty is not None:
                difficulty_multipliers[difficulty] = float(value)

        rarity_multipliers: Dict[Rarity, float] = {}
        for name, value in (raw.get("rarity_multipliers") or {}).items():
            rarity = self._enum(Rarity, name, f"{where}.rarity_multipliers")
            if rarity is not None:
                rarity_multipliers[rarity] = float(value)
        for rarity in Rarity:
            if rarity not in rarity_multipliers:
                self._problem(f"{where}.rarity_multipliers", f"missing {rarity.value}")

        proc_counts: Dict[Rarity, int] = {}
        for name, value in (raw.get("proc_counts") or {}).items():
            rarity = self._enum(Rarity, name, f"{where}.proc_counts")
            if rarity is not None:
                proc_counts[rarity] = int(value)
        for rarity in Rarity:
            if rarity not in proc_counts:
                self._problem(f"{where}.proc_counts", f"missing {rarity.value}")

        rarity_tables: Dict[Difficulty, RarityTable] = {}
        for name, weights in (raw.get("rarity_weights") or {}).items():
            table_where = f"{where}.rarity_weights.{name}"
            difficulty = self._enum(Difficulty, name, table_where)
            if difficulty is None:
                continue
            parsed: Dict[Rarity, float] = {}
            for rarity_name, weight in (weights or {}).items():
                rarity = self._enum(Rarity, rarity_name, table_where)
                if rarity is not None:
                    parsed[rarity] = float(weight)
            try:
                rarity_tables[difficulty] = RarityTable.from_weights(
                    parsed, tolerance=RARITY_SUM_TOLERANCE
                )
            except ValueError as exc:
                self._problem(table_where, str(exc))

        for difficulty in Difficulty:
            if difficulty not in rarity_tables:
                self._problem(f"{where}.rarity_weights", f"missing {difficulty.value}")
            if difficulty not in difficulty_multipliers:
                self._problem(f"{where}.difficulty_multipliers", f"missing {difficulty.value}")

        stat_templates: Dict[Archetype, Dict[str, SlotTemplate]] = {}
        for archetype_name, slots in (raw.get("stat_templates") or {}).items():
            archetype = self._enum(Archetype, archetype_name, f"{where}.stat_templates")
            if archetype is None:
                continue
            templates: Dict[str, SlotTemplate] = {}
            for slot, template in (slots or {}).items():
                slot_where = f"{where}.stat_templates.{archetype_name}.{slot}"
                if slot not in EQUIPMENT_SLOTS:
                    self._problem(slot_where, "unknown equipment slot")
                    continue
                templates[slot] = SlotTemplate(
                    slot=slot,
                    name=str(template.get("name", slot.title())),
                    stats=self._stats(template, slot_where),
                )
            stat_templates[archetype] = templates

        max_procs = max(proc_counts.values(), default=0)
        proc_pools: Dict[Archetype, Tuple[ProcEffect, ...]] = {}
        for archetype_name, pool in (raw.get("proc_pools") or {}).items():
            archetype = self._enum(Archetype, archetype_name, f"{where}.proc_pools")
            if archetype is not None:
                proc_pools[archetype] = self._procs(pool, f"{where}.proc_pools.{archetype_name}")

        for archetype in Archetype:
            if not stat_templates.get(archetype):
                self._problem(f"{where}.stat_templates", f"missing {archetype.value}")
            pool = proc_pools.get(archetype)
            if pool is None:
                self._problem(f"{where}.proc_pools", f"missing {archetype.value}")
            elif len(pool) < max_procs:
                self._problem(
                    f"{where}.proc_pools.{archetype.value}",
                    f"{len(pool)} effects cannot supply {max_procs} distinct procs",
                )

        unique_items: Dict[str, UniqueItemTemplate] = {}
        for encounter_id, template in (raw.get("unique_items") or {}).items():
            item_where = f"{where}.unique_items.{encounter_id}"
            if not isinstance(template, Mapping) or "name" not in template:
                self._problem(item_where, "expected one unique item with a name")
                continue
            archetype = self._enum(Archetype, template.get("archetype"), item_where)
            slot = str(template.get("slot"))
            if slot not in EQUIPMENT_SLOTS:
                self._problem(item_where, f"unknown equipment slot '{slot}'")
                continue
            if archetype is None:
                continue
            unique_items[str(encounter_id)] = UniqueItemTemplate(
                name=str(template["name"]),
                slot=slot,
                archetype=archetype,
                stats=self._stats(template, item_where),
                procs=self._procs(template.get("procs"), f"{item_where}.procs"),
            )

        return LootTables(
            difficulty_multipliers=difficulty_multipliers,
            rarity_multipliers=rarity_multipliers,
            rarity_tables=rarity_tables,
            proc_counts=proc_counts,
            stat_templates=stat_templates,
            proc_pools=proc_pools,
            unique_items=unique_items,
        )

    # ------------------------------------------------------------------
    # Encounters
    # ------------------------------------------------------------------

    def _parse_waves(self, raw_waves: Any, where: str) -> Tuple[WaveDefinition, ...]:
        waves = []
        for index, raw in enumerate(raw_waves or []):
            wave_where = f"{where}.waves[{index}]"
            enemies = []
            for group in raw.get("enemies") or []:
                enemies.append(
                    EnemyGroup(
                        enemy_type=str(group.get("type", "Unknown")),
                        count=self._number(group, "count", wave_where, default=1, minimum=1),
                        level=self._number(group, "level", wave_where, default=1, minimum=1),
                    )
                )
            if not enemies:
                self._problem(wave_where, "wave has no enemies")
            waves.append(
                WaveDefinition(name=str(raw.get("name", f"Wave {index + 1}")), enemies=tuple(enemies))
            )
        if not waves:
            self._problem(where, "wave list is empty")
        return tuple(waves)

    def _parse_rewards(self, raw: Mapping[str, Any], where: str) -> RewardEnvelope:
        rewards_where = f"{where}.rewards"

        guaranteed = tuple(str(slot) for slot in raw.get("guaranteed_loot") or [])
        for slot in guaranteed:
            if slot not in EQUIPMENT_SLOTS:
                self._problem(rewards_where, f"unknown guaranteed loot slot '{slot}'")

        consumables = tuple(
            ConsumableGrant(
                key=str(item["key"]),
                name=str(item.get("name", item["key"])),
                quantity=self._number(item, "quantity", rewards_where, default=1, minimum=1),
            )
            for item in raw.get("consumables") or []
        )

        split_mode = self._enum(SplitMode, raw.get("split_mode", "equal"), rewards_where)
        role_weights: Dict[Archetype, float] = {}
        for name, weight in (raw.get("role_weights") or {}).items():
            archetype = self._enum(Archetype, name, f"{rewards_where}.role_weights")
            if archetype is None:
                continue
            if float(weight) <= 0:
                self._problem(f"{rewards_where}.role_weights.{name}", "weight must be positive")
            role_weights[archetype] = float(weight)
        if split_mode is SplitMode.ROLE:
            for archetype in Archetype:
                if archetype not in role_weights:
                    self._problem(f"{rewards_where}.role_weights", f"missing {archetype.value}")

        return RewardEnvelope(
            gold=self._number(raw, "gold", rewards_where),
            tokens=self._number(raw, "tokens", rewards_where),
            experience=self._number(raw, "experience", rewards_where),
            guaranteed_loot=guaranteed,
            consumables=consumables,
            split_mode=split_mode or SplitMode.EQUAL,
            role_weights=role_weights,
        )

    def _parse_encounter(
        self,
        encounter_id: str,
        kind: EncounterKind,
        raw: Any,
        where: str,
    ) -> Optional[EncounterDefinition]:
        if not isinstance(raw, Mapping):
            self._problem(where, "expected a mapping")
            return None

        difficulty = self._enum(Difficulty, raw.get("difficulty"), where)
        waves = self._parse_waves(raw.get("waves"), where)

        raw_boss = raw.get("boss")
        if not isinstance(raw_boss, Mapping) or "name" not in raw_boss:
            self._problem(where, "boss descriptor missing")
            raw_boss = {"name": "Unknown"}
        boss = BossDescriptor(
            name=str(raw_boss["name"]),
            level=self._number(raw_boss, "level", f"{where}.boss", default=1, minimum=1),
            hp=self._number(raw_boss, "hp", f"{where}.boss"),
            attack=self._number(raw_boss, "attack", f"{where}.boss"),
            defense=self._number(raw_boss, "defense", f"{where}.boss"),
            mechanics=tuple(str(m) for m in raw_boss.get("mechanics") or []),
        )

        raw_req = raw.get("requirements") or {}
        req_where = f"{where}.requirements"
        requirements = EncounterRequirements(
            min_level=self._number(raw_req, "min_level", req_where, default=1, minimum=1),
            min_power=self._number(raw_req, "min_power", req_where),
            min_party_size=self._number(raw_req, "min_party_size", req_where, default=1, minimum=1),
            max_party_size=self._number(raw_req, "max_party_size", req_where, default=1, minimum=1),
        )
        if requirements.min_party_size > requirements.max_party_size:
            self._problem(
                req_where,
                f"min_party_size {requirements.min_party_size} exceeds "
                f"max_party_size {requirements.max_party_size}",
            )

        rewards = self._parse_rewards(raw.get("rewards") or {}, where)

        if difficulty is None:
            return None

        return EncounterDefinition(
            encounter_id=encounter_id,
            name=str(raw.get("name", encounter_id)),
            kind=kind,
            difficulty=difficulty,
            waves=waves,
            boss=boss,
            requirements=requirements,
            rewards=rewards,
            description=str(raw.get("description", "")),
            estimated_duration_seconds=self._number(raw, "estimated_duration_seconds", where),
        )

    def _cross_check(
        self,
        encounters: Mapping[str, EncounterDefinition],
        tables: LootTables,
    ) -> None:
        for encounter_id in tables.unique_items:
            if encounter_id not in encounters:
                self._problem(
                    f"loot_tables.unique_items.{encounter_id}",
                    "references an unknown encounter",
                )
        for definition in encounters.values():
            where = f"encounter {definition.encounter_id}"
            if definition.difficulty not in tables.rarity_tables:
                self._problem(where, f"no rarity table for {definition.difficulty.value}")
            if definition.difficulty not in tables.difficulty_multipliers:
                self._problem(where, f"no difficulty multiplier for {definition.difficulty.value}")
