"""
Unit tests for LootGenerator.

Tests rarity distribution, stat scaling, proc selection, unique overrides
and input validation.
"""

import random
from collections import Counter

import pytest

from raidforge.modules.catalog import Archetype, Rarity, StatBlock
from raidforge.modules.loot import ConsumableItem, GearItem, UniqueItem
from raidforge.modules.shared.exceptions import ValidationError


class ScriptedRandom(random.Random):
    """Random whose uniform draws come from a script, then the seeded stream."""

    def __init__(self, draws, seed=7):
        super().__init__(seed)
        self._draws = list(draws)

    def random(self):
        if self._draws:
            return self._draws.pop(0)
        return super().random()

    def getrandbits(self, k):
        # keep integer draws (sample, ids) on the seeded stream
        return super().getrandbits(k)


@pytest.mark.unit
class TestRarityRoll:
    """Rarity selection follows the difficulty's weights."""

    def test_normal_distribution_matches_weights(self, loot):
        """100k draws land within one percentage point of each weight."""
        rng = random.Random(42)

        counts = Counter(loot.roll_rarity("normal", rng=rng) for _ in range(100_000))

        assert counts[Rarity.RARE] / 100_000 == pytest.approx(0.55, abs=0.01)
        assert counts[Rarity.EPIC] / 100_000 == pytest.approx(0.35, abs=0.01)
        assert counts[Rarity.LEGENDARY] / 100_000 == pytest.approx(0.10, abs=0.01)

    def test_mythic_never_rolls_rare(self, loot):
        rng = random.Random(3)

        rolls = {loot.roll_rarity("mythic", rng=rng) for _ in range(5_000)}

        assert rolls == {Rarity.EPIC, Rarity.LEGENDARY}

    def test_unknown_difficulty(self, loot):
        with pytest.raises(ValidationError) as exc_info:
            loot.roll_rarity("nightmare")

        assert exc_info.value.field == "difficulty"


@pytest.mark.unit
class TestGearGeneration:
    """Stat scaling, naming and proc selection for rolled gear."""

    def test_heroic_epic_level_20_weapon(self, loot):
        """Template attack 10 at heroic (1.25), epic (1.5), level 20 gives 56."""
        # Arrange - heroic bounds are 0.30 / 0.80 / 1.00, so 0.5 is epic
        rng = ScriptedRandom([0.5])

        # Act
        item = loot.generate("elder_dragon_heroic", "heroic", "dps", "weapon", 20, rng=rng)

        # Assert
        assert isinstance(item, GearItem)
        assert item.rarity is Rarity.EPIC
        assert item.stats == StatBlock(attack=56, defense=0, hp=0)
        assert item.name == "Epic Devastating Blade"
        assert item.source_encounter == "elder_dragon_heroic"
        assert item.level == 20

    def test_each_stat_floored_independently(self, loot):
        """Armor 6/5/12 at normal (1.2), rare (1.2), level 30."""
        rng = ScriptedRandom([0.1])

        item = loot.generate("goblin_cave", "normal", "dps", "armor", 30, rng=rng)

        assert item.rarity is Rarity.RARE
        assert item.stats == StatBlock(attack=34, defense=28, hp=69)

    def test_rare_has_no_procs(self, loot):
        item = loot.generate("goblin_cave", "normal", "mage", "weapon", 10, rng=ScriptedRandom([0.0]))

        assert item.rarity is Rarity.RARE
        assert item.procs == ()

    def test_epic_draws_two_distinct_procs_from_archetype_pool(self, loot, catalog):
        pool = catalog.loot_tables.proc_pools[Archetype.TANK]

        item = loot.generate("elder_dragon_heroic", "heroic", "paladin", "shield", 45, rng=ScriptedRandom([0.5]))

        assert len(item.procs) == 2
        assert len({proc.name for proc in item.procs}) == 2
        assert all(proc in pool for proc in item.procs)
        assert item.archetype is Archetype.TANK

    def test_legendary_draws_three_procs(self, loot, config_manager):
        # Arrange - no unique override; first draw is the unique roll, second the rarity
        config_manager.set("loot.unique_drop_chance", 0.0)
        rng = ScriptedRandom([0.99, 0.9])

        # Act
        item = loot.generate("void_citadel", "mythic", "healer", "accessory", 57, rng=rng)

        # Assert
        assert isinstance(item, GearItem)
        assert item.rarity is Rarity.LEGENDARY
        assert len({proc.name for proc in item.procs}) == 3

    def test_same_seed_same_item(self, loot):
        first = loot.generate("dragons_lair", "heroic", "dps", "weapon", 40, rng=random.Random(99))
        second = loot.generate("dragons_lair", "heroic", "dps", "weapon", 40, rng=random.Random(99))

        assert first.to_dict() == second.to_dict()

    def test_item_ids_are_unique_per_roll(self, loot):
        ids = {loot.generate("goblin_cave", "normal", "dps", "weapon", 10).item_id for _ in range(200)}

        assert len(ids) == 200
        assert all(item_id.startswith("goblin_cave-") for item_id in ids)


@pytest.mark.unit
class TestUniqueOverride:
    """Per-encounter unique boss items."""

    def test_unique_replaces_roll_when_chance_hits(self, loot, config_manager):
        config_manager.set("loot.unique_drop_chance", 1.0)

        item = loot.generate("dragons_lair", "heroic", "tank", "armor", 40)

        assert isinstance(item, UniqueItem)
        assert item.name == "Dragon Fang Blade"
        assert item.slot == "weapon"
        assert item.rarity is Rarity.LEGENDARY
        assert item.stats == StatBlock(attack=35, defense=0, hp=0)
        assert len(item.procs) == 3
        assert item.source_encounter == "dragons_lair"

    def test_no_unique_when_chance_is_zero(self, loot, config_manager):
        config_manager.set("loot.unique_drop_chance", 0.0)
        rng = random.Random(5)

        items = [loot.generate("dragons_lair", "heroic", "dps", "weapon", 40, rng=rng) for _ in range(500)]

        assert all(isinstance(item, GearItem) for item in items)

    def test_encounter_without_unique_never_overrides(self, loot, config_manager):
        config_manager.set("loot.unique_drop_chance", 1.0)

        item = loot.generate("elder_dragon_normal", "normal", "dps", "weapon", 28)

        assert isinstance(item, GearItem)

    def test_unique_rate_near_configured_chance(self, loot):
        rng = random.Random(11)

        hits = sum(
            isinstance(loot.generate("haunted_crypt", "normal", "tank", "shield", 21, rng=rng), UniqueItem)
            for _ in range(10_000)
        )

        assert hits / 10_000 == pytest.approx(0.15, abs=0.015)


@pytest.mark.unit
class TestGenerateValidation:
    """Invalid inputs are rejected before anything is rolled."""

    @pytest.mark.parametrize(
        "args,field",
        [
            (("atlantis", "normal", "dps", "weapon", 10), "encounter_id"),
            (("goblin_cave", "nightmare", "dps", "weapon", 10), "difficulty"),
            (("goblin_cave", "normal", "jester", "weapon", 10), "role"),
            (("goblin_cave", "normal", "dps", "ring", 10), "slot"),
            (("goblin_cave", "normal", "healer", "shield", 10), "slot"),
            (("goblin_cave", "normal", "dps", "weapon", 0), "level"),
        ],
    )
    def test_rejects(self, loot, args, field):
        with pytest.raises(ValidationError) as exc_info:
            loot.generate(*args)

        assert exc_info.value.field == field

    def test_has_template(self, loot):
        assert loot.has_template("tank", "shield")
        assert not loot.has_template("healer", "shield")


@pytest.mark.unit
def test_consumables_materialized(loot, catalog):
    grants = catalog.get("goblin_cave").rewards.consumables

    items = loot.consumables("goblin_cave", grants)

    assert len(items) == 1
    assert isinstance(items[0], ConsumableItem)
    assert items[0].key == "health_potion"
    assert items[0].quantity == 2
