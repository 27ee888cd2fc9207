"""
Unit tests for RewardDistributor and share computation.

The lockout ledger and inventory gateway are mocked; loot is rolled by the
real LootGenerator and reward mutations land in the in-memory committer.
"""

from datetime import timedelta

import pytest

from raidforge.core.logging.logger import get_logger
from raidforge.core.persistence import Append, Increment
from raidforge.modules.catalog import Archetype, RewardEnvelope, SplitMode
from raidforge.modules.encounter import EncounterInstance, LifecycleState, Participant
from raidforge.modules.lockout import LockoutStatus
from raidforge.modules.rewards import (
    PARTICIPANT_PARTITION,
    RewardDistributor,
    compute_shares,
)
from tests.conftest import START_TIME


def member(participant_id, archetype=Archetype.DPS, damage=0, healing=0):
    return Participant(
        participant_id=participant_id,
        role=archetype.value,
        archetype=archetype,
        level=20,
        power=800,
        damage_dealt=damage,
        healing_done=healing,
    )


def completed_instance(encounter_id, roster):
    return EncounterInstance(
        instance_id="inst-1",
        encounter_id=encounter_id,
        created_at=START_TIME,
        expires_at=START_TIME + timedelta(minutes=30),
        state=LifecycleState.COMPLETED,
        wave_index=3,
        roster=list(roster),
        terminal_at=START_TIME,
    )


@pytest.fixture
def fake_ledger(mocker):
    ledger = mocker.MagicMock()
    ledger.status = mocker.AsyncMock(return_value=LockoutStatus(locked=False))
    ledger.try_claim = mocker.AsyncMock(return_value=True)
    return ledger


@pytest.fixture
def inventory(mocker):
    gateway = mocker.MagicMock()
    gateway.can_accept = mocker.AsyncMock(return_value=True)
    return gateway


@pytest.fixture
def distributor(fake_ledger, loot, writer, inventory, config_manager):
    return RewardDistributor(
        fake_ledger, loot, writer, inventory, config_manager, get_logger("tests.rewards")
    )


@pytest.fixture
def five_party():
    return [
        member("p1", Archetype.TANK),
        member("p2", Archetype.HEALER),
        member("p3"),
        member("p4"),
        member("p5"),
    ]


@pytest.mark.unit
@pytest.mark.domain
class TestComputeShares:
    """Split modes over the full roster."""

    def test_equal_split(self, five_party):
        shares = compute_shares(RewardEnvelope(gold=500), five_party)

        assert all(share == pytest.approx(0.2) for share in shares.values())

    def test_role_weighted(self):
        envelope = RewardEnvelope(
            split_mode=SplitMode.ROLE,
            role_weights={Archetype.TANK: 1.2, Archetype.HEALER: 1.0, Archetype.DPS: 0.9},
        )
        roster = [member("t", Archetype.TANK), member("h", Archetype.HEALER), member("d")]

        shares = compute_shares(envelope, roster)

        assert shares["t"] == pytest.approx(1.2 / 3.1)
        assert shares["d"] == pytest.approx(0.9 / 3.1)
        assert sum(shares.values()) == pytest.approx(1.0)

    def test_contribution_weighted(self):
        envelope = RewardEnvelope(split_mode=SplitMode.CONTRIBUTION)
        roster = [member("a", damage=3000), member("b", healing=1000)]

        shares = compute_shares(envelope, roster)

        assert shares == {"a": pytest.approx(0.75), "b": pytest.approx(0.25)}

    def test_contribution_without_activity_falls_back_to_equal(self):
        envelope = RewardEnvelope(split_mode=SplitMode.CONTRIBUTION)

        shares = compute_shares(envelope, [member("a"), member("b")])

        assert shares == {"a": 0.5, "b": 0.5}

    def test_empty_roster(self):
        assert compute_shares(RewardEnvelope(), []) == {}


@pytest.mark.asyncio
@pytest.mark.unit
class TestSettle:
    """Per-participant settlement."""

    async def test_equal_split_and_items(self, distributor, catalog, five_party, committer):
        # Arrange
        definition = catalog.get("corrupted_temple")
        instance = completed_instance("corrupted_temple", five_party)

        # Act
        settlement = await distributor.settle(instance, definition)

        # Assert
        assert settlement.rewarded_ids == ["p1", "p2", "p3", "p4", "p5"]
        grant = settlement.grant_for("p3")
        assert (grant.gold, grant.tokens, grant.experience) == (100, 2, 400)
        assert len(grant.items) == 2

        fields = committer.writes_for(PARTICIPANT_PARTITION, "p3")[0]
        assert fields["gold"] == Increment(100)
        assert fields["experience"] == Increment(400)
        assert isinstance(fields["inventory"], Append)
        assert len(fields["inventory"].values) == 2

    async def test_locked_participant_skipped_and_share_not_redistributed(
        self, distributor, catalog, five_party, fake_ledger, committer
    ):
        # Arrange
        async def status(participant_id, encounter_id):
            return LockoutStatus(locked=participant_id == "p2")

        fake_ledger.status.side_effect = status
        instance = completed_instance("corrupted_temple", five_party)

        # Act
        settlement = await distributor.settle(instance, catalog.get("corrupted_temple"))

        # Assert
        assert settlement.skipped_locked == ["p2"]
        assert settlement.grant_for("p2") is None
        assert settlement.grant_for("p1").gold == 100
        assert committer.writes_for(PARTICIPANT_PARTITION, "p2") == []
        assert "p2" not in [call.args[0] for call in fake_ledger.try_claim.await_args_list]

    async def test_full_inventory_keeps_currency(self, distributor, catalog, five_party, inventory, committer):
        # Arrange
        async def can_accept(participant_id, items):
            return participant_id != "p1"

        inventory.can_accept.side_effect = can_accept
        instance = completed_instance("corrupted_temple", five_party)

        # Act
        settlement = await distributor.settle(instance, catalog.get("corrupted_temple"))

        # Assert
        assert [err.participant_id for err in settlement.capacity_errors] == ["p1"]
        grant = settlement.grant_for("p1")
        assert grant.gold == 100
        assert grant.items == []
        assert grant.items_withheld is True
        assert "inventory" not in committer.writes_for(PARTICIPANT_PARTITION, "p1")[0]

    async def test_lost_claim_recorded_as_conflict(self, distributor, catalog, five_party, fake_ledger, committer):
        async def try_claim(participant_id, encounter_id):
            return participant_id != "p5"

        fake_ledger.try_claim.side_effect = try_claim
        instance = completed_instance("corrupted_temple", five_party)

        settlement = await distributor.settle(instance, catalog.get("corrupted_temple"))

        assert [c.participant_id for c in settlement.conflicts] == ["p5"]
        assert settlement.grant_for("p5") is None
        assert committer.writes_for(PARTICIPANT_PARTITION, "p5") == []

    async def test_slot_without_template_skipped(self, distributor, catalog):
        """haunted_crypt guarantees armor and shield; healers have no shield template."""
        roster = [member("h1", Archetype.HEALER), member("h2", Archetype.HEALER), member("t1", Archetype.TANK)]
        instance = completed_instance("haunted_crypt", roster)

        settlement = await distributor.settle(instance, catalog.get("haunted_crypt"))

        assert len(settlement.grant_for("h1").items) == 1
        assert len(settlement.grant_for("t1").items) == 2

    async def test_consumables_granted(self, distributor, catalog):
        instance = completed_instance("goblin_cave", [member("solo")])

        settlement = await distributor.settle(instance, catalog.get("goblin_cave"))

        kinds = sorted(item.to_dict()["kind"] for item in settlement.grant_for("solo").items)
        assert kinds == ["consumable", "gear"]
        assert settlement.grant_for("solo").gold == 200

    async def test_role_split_floors_shares(self, distributor, catalog):
        roster = [
            member("t1", Archetype.TANK),
            member("h1", Archetype.HEALER),
            member("d1"),
            member("d2"),
            member("d3"),
        ]
        instance = completed_instance("titans_keep", roster)

        settlement = await distributor.settle(instance, catalog.get("titans_keep"))

        # weights 1.2 + 1.0 + 3 * 0.9 = 4.9
        assert settlement.grant_for("t1").gold == 367
        assert settlement.grant_for("d1").gold == 275
        assert sum(g.gold for g in settlement.grants) <= 1500
