"""
Unit tests for generated item shapes and item scoring.
"""

import pytest

from raidforge.modules.catalog import Archetype, ProcEffect, Rarity, StatBlock
from raidforge.modules.loot import (
    ConsumableItem,
    GearItem,
    UniqueItem,
    item_from_dict,
    item_score,
)
from raidforge.modules.shared.exceptions import ValidationError

CRIT = ProcEffect(name="Raid Deadly", effect="critChance", magnitude=0.2, chance=0.25)
HASTE = ProcEffect(name="Raid Swift", effect="hasteProc", magnitude=0.15, chance=0.15)


def make_gear(**overrides):
    fields = dict(
        item_id="dragons_lair-00000000abcd",
        name="Epic Devastating Blade",
        rarity=Rarity.EPIC,
        slot="weapon",
        stats=StatBlock(attack=56),
        procs=(CRIT, HASTE),
        level=40,
        archetype=Archetype.DPS,
        source_encounter="dragons_lair",
    )
    fields.update(overrides)
    return GearItem(**fields)


@pytest.mark.unit
@pytest.mark.domain
class TestItemScore:
    """Single comparable power number."""

    def test_epic_with_two_procs(self):
        # (56 + 0 + 0) * 1.3 + 2 * 50
        assert make_gear().score == 172

    def test_hp_counts_half(self):
        assert item_score(StatBlock(attack=0, defense=10, hp=35), Rarity.RARE, 0) == 30

    def test_unique_scores_as_legendary(self):
        item = UniqueItem(
            item_id="x",
            name="Dragon Fang Blade",
            slot="weapon",
            stats=StatBlock(attack=35),
            procs=(CRIT, HASTE, CRIT),
            archetype=Archetype.DPS,
            source_encounter="dragons_lair",
            level=40,
        )

        assert item.rarity is Rarity.LEGENDARY
        assert item.score == 202


@pytest.mark.unit
@pytest.mark.domain
class TestItemDocuments:
    """Inventory documents carry only the fields of their shape."""

    def test_gear_document(self):
        document = make_gear().to_dict()

        assert document["kind"] == "gear"
        assert document["rarity"] == "epic"
        assert document["stats"] == {"attack": 56, "defense": 0, "hp": 0}
        assert [p["name"] for p in document["procs"]] == ["Raid Deadly", "Raid Swift"]
        assert document["score"] == 172

    def test_consumable_document_has_no_stats(self):
        document = ConsumableItem(
            item_id="c1", key="health_potion", name="Health Potion", quantity=2,
            source_encounter="goblin_cave",
        ).to_dict()

        assert document["kind"] == "consumable"
        assert "stats" not in document
        assert "rarity" not in document

    def test_gear_document_rebuilds(self):
        original = make_gear()

        assert item_from_dict(original.to_dict()) == original

    def test_unknown_kind_rejected(self):
        with pytest.raises(ValidationError):
            item_from_dict({"kind": "artifact", "item_id": "a"})

    def test_malformed_document_rejected(self):
        document = make_gear().to_dict()
        del document["archetype"]

        with pytest.raises(ValidationError) as exc_info:
            item_from_dict(document)

        assert exc_info.value.field == "item"

    def test_items_are_immutable(self):
        item = make_gear()

        with pytest.raises(AttributeError):
            item.name = "Renamed"  # type: ignore[misc]
