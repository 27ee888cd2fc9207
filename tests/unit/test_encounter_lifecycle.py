"""
Unit tests for EncounterLifecycleManager.

The lockout ledger and reward distributor are mocked; the catalog is the
real shipped game data and writes go through a WriteCoalescer over the
in-memory committer.
"""

import asyncio
from datetime import timedelta

import pytest

from raidforge.core.logging.logger import get_logger
from raidforge.modules.encounter import (
    INSTANCE_PARTITION,
    EncounterLifecycleManager,
    LifecycleState,
    WaveOutcome,
)
from raidforge.modules.lockout import LockoutStatus
from raidforge.modules.rewards import RewardSettlement
from raidforge.modules.shared.exceptions import (
    EncounterClosedError,
    InvalidOperationError,
    LockoutActiveError,
    NotFoundError,
    RequirementNotMetError,
    ValidationError,
)


@pytest.fixture
def fake_ledger(mocker):
    ledger = mocker.MagicMock()
    ledger.status = mocker.AsyncMock(return_value=LockoutStatus(locked=False))
    return ledger


@pytest.fixture
def fake_distributor(mocker):
    distributor = mocker.MagicMock()

    async def settle(instance, definition):
        return RewardSettlement(instance_id=instance.instance_id, encounter_id=definition.encounter_id)

    distributor.settle = mocker.AsyncMock(side_effect=settle)
    return distributor


@pytest.fixture
def manager(catalog, fake_ledger, fake_distributor, writer, config_manager, clock):
    return EncounterLifecycleManager(
        catalog,
        fake_ledger,
        fake_distributor,
        writer,
        config_manager,
        get_logger("tests.lifecycle"),
        clock=clock,
    )


@pytest.fixture
def party(manager):
    """Five eligible members for corrupted_temple (level 15, power 500)."""
    roles = ["paladin", "cleric", "mage", "hunter", "assassin"]
    return [
        manager.build_participant(f"p{i}", role, level=20, power=800)
        for i, role in enumerate(roles, start=1)
    ]


async def clear_to_boss(manager, instance_id, waves=3):
    for _ in range(waves):
        await manager.advance_wave(instance_id, "cleared")


@pytest.mark.asyncio
@pytest.mark.unit
class TestStart:
    """Pre-formed party start and its gates."""

    async def test_start_enters_wave_zero(self, manager, party, committer):
        instance = await manager.start("corrupted_temple", party)

        assert instance.state is LifecycleState.IN_PROGRESS
        assert instance.wave_index == 0
        assert instance.participant_ids() == ["p1", "p2", "p3", "p4", "p5"]
        assert manager.get(instance.instance_id) is instance

    async def test_unknown_encounter(self, manager, party):
        with pytest.raises(NotFoundError):
            await manager.start("atlantis", party)

    async def test_party_too_small(self, manager, party):
        with pytest.raises(RequirementNotMetError) as exc_info:
            await manager.start("corrupted_temple", party[:2])

        assert exc_info.value.requirement == "min_party_size"

    async def test_party_too_large(self, manager):
        roster = [manager.build_participant(f"p{i}", "mage", 20, 800) for i in range(6)]

        with pytest.raises(RequirementNotMetError) as exc_info:
            await manager.start("corrupted_temple", roster)

        assert exc_info.value.requirement == "max_party_size"

    async def test_underleveled_member(self, manager, party):
        party[2] = manager.build_participant("p3", "mage", level=10, power=800)

        with pytest.raises(RequirementNotMetError) as exc_info:
            await manager.start("corrupted_temple", party)

        assert exc_info.value.requirement == "min_level"

    async def test_duplicate_member(self, manager, party):
        with pytest.raises(ValidationError):
            await manager.start("corrupted_temple", party + [party[0]])

    async def test_locked_member_blocks_start_and_leaves_no_instance(self, manager, party, fake_ledger, clock):
        # Arrange
        reset_at = clock.advance(days=3)

        async def status(participant_id, encounter_id):
            return LockoutStatus(locked=participant_id == "p4", reset_at=reset_at)

        fake_ledger.status.side_effect = status

        # Act
        with pytest.raises(LockoutActiveError) as exc_info:
            await manager.start("corrupted_temple", party)

        # Assert
        assert exc_info.value.participant_id == "p4"
        assert manager.active_instances() == []

    async def test_unknown_role(self, manager):
        with pytest.raises(ValidationError):
            manager.build_participant("p1", "jester", 20, 800)


@pytest.mark.asyncio
@pytest.mark.unit
class TestRecruitment:
    """open_recruitment -> join (-> begin)."""

    async def test_reaching_min_party_starts_encounter(self, manager, party):
        # Arrange
        instance = await manager.open_recruitment("corrupted_temple")
        assert instance.state is LifecycleState.RECRUITING

        # Act
        await manager.join(instance.instance_id, party[0])
        await manager.join(instance.instance_id, party[1])
        assert instance.state is LifecycleState.RECRUITING
        await manager.join(instance.instance_id, party[2])

        # Assert
        assert instance.state is LifecycleState.IN_PROGRESS
        assert instance.wave_index == 0
        assert len(instance.roster) == 3

    async def test_solo_dungeon_starts_on_first_join(self, manager):
        instance = await manager.open_recruitment("goblin_cave")

        await manager.join(instance.instance_id, manager.build_participant("solo", "mage", 10, 200))

        assert instance.state is LifecycleState.IN_PROGRESS
        with pytest.raises(InvalidOperationError):
            await manager.join(instance.instance_id, manager.build_participant("other", "mage", 10, 200))

    async def test_manual_begin_lets_party_fill_past_minimum(self, manager, party, config_manager):
        config_manager.set("lifecycle.auto_begin", False)
        instance = await manager.open_recruitment("corrupted_temple")

        for member in party:
            await manager.join(instance.instance_id, member)
        assert instance.state is LifecycleState.RECRUITING
        await manager.begin(instance.instance_id)

        assert instance.state is LifecycleState.IN_PROGRESS
        assert len(instance.roster) == 5

    async def test_begin_requires_min_party(self, manager, party):
        instance = await manager.open_recruitment("corrupted_temple")
        await manager.join(instance.instance_id, party[0])

        with pytest.raises(RequirementNotMetError):
            await manager.begin(instance.instance_id)

        assert instance.state is LifecycleState.RECRUITING

    async def test_begin_after_auto_start_rejected(self, manager, party):
        instance = await manager.open_recruitment("corrupted_temple")
        for member in party[:3]:
            await manager.join(instance.instance_id, member)

        with pytest.raises(InvalidOperationError):
            await manager.begin(instance.instance_id)

    async def test_duplicate_join(self, manager, party):
        instance = await manager.open_recruitment("corrupted_temple")
        await manager.join(instance.instance_id, party[0])

        with pytest.raises(InvalidOperationError):
            await manager.join(instance.instance_id, party[0])

    async def test_roster_full(self, manager, party, config_manager):
        config_manager.set("lifecycle.auto_begin", False)
        instance = await manager.open_recruitment("corrupted_temple")
        for member in party:
            await manager.join(instance.instance_id, member)
        extra = manager.build_participant("p6", "mage", 20, 800)

        with pytest.raises(InvalidOperationError):
            await manager.join(instance.instance_id, extra)

        assert len(instance.roster) == 5

    async def test_locked_participant_cannot_join(self, manager, party, fake_ledger):
        fake_ledger.status.return_value = LockoutStatus(locked=True)
        instance = await manager.open_recruitment("corrupted_temple")

        with pytest.raises(LockoutActiveError):
            await manager.join(instance.instance_id, party[0])

        assert instance.roster == []

    async def test_join_after_begin_rejected(self, manager, party):
        instance = await manager.start("corrupted_temple", party[:3])

        with pytest.raises(InvalidOperationError):
            await manager.join(instance.instance_id, party[3])


@pytest.mark.asyncio
@pytest.mark.unit
class TestProgression:
    """Wave progression, boss phase, completion and failure."""

    async def test_final_wave_clear_enters_boss_phase(self, manager, party):
        instance = await manager.start("corrupted_temple", party)

        await manager.advance_wave(instance.instance_id, WaveOutcome.CLEARED)
        await manager.advance_wave(instance.instance_id, "cleared")
        assert instance.state is LifecycleState.IN_PROGRESS
        assert instance.wave_index == 2

        await manager.advance_wave(instance.instance_id, "cleared")

        assert instance.state is LifecycleState.BOSS_PHASE

    async def test_boss_defeat_completes_and_settles_once(self, manager, party, fake_distributor, committer):
        # Arrange
        instance = await manager.start("corrupted_temple", party)
        await clear_to_boss(manager, instance.instance_id)

        # Act
        await manager.advance_wave(instance.instance_id, "cleared")

        # Assert
        assert instance.state is LifecycleState.COMPLETED
        assert instance.terminal_reason == "boss_defeated"
        assert instance.settlement is not None
        fake_distributor.settle.assert_awaited_once()
        document = committer.writes_for(INSTANCE_PARTITION, instance.instance_id)[-1]
        assert document["state"] == "completed"

    async def test_events_after_completion_rejected(self, manager, party, fake_distributor):
        instance = await manager.start("corrupted_temple", party)
        await clear_to_boss(manager, instance.instance_id)
        await manager.advance_wave(instance.instance_id, "cleared")

        with pytest.raises(EncounterClosedError):
            await manager.advance_wave(instance.instance_id, "cleared")
        with pytest.raises(EncounterClosedError):
            await manager.force_expire(instance.instance_id)

        assert fake_distributor.settle.await_count == 1

    async def test_concurrent_boss_kill_settles_exactly_once(self, manager, party, fake_distributor):
        """A second kill arriving while settlement is in flight sees a terminal instance."""
        # Arrange
        release = asyncio.Event()

        async def slow_settle(instance, definition):
            await release.wait()
            return RewardSettlement(instance_id=instance.instance_id, encounter_id=definition.encounter_id)

        fake_distributor.settle.side_effect = slow_settle
        instance = await manager.start("corrupted_temple", party)
        await clear_to_boss(manager, instance.instance_id)

        # Act
        first = asyncio.create_task(manager.advance_wave(instance.instance_id, "cleared"))
        await asyncio.sleep(0)
        with pytest.raises(EncounterClosedError):
            await manager.advance_wave(instance.instance_id, "cleared")
        release.set()
        await first

        # Assert
        assert fake_distributor.settle.await_count == 1
        assert instance.state is LifecycleState.COMPLETED

    async def test_wipe_fails_without_rewards(self, manager, party, fake_distributor):
        instance = await manager.start("corrupted_temple", party)
        await manager.advance_wave(instance.instance_id, "cleared")

        await manager.advance_wave(instance.instance_id, "wiped")

        assert instance.state is LifecycleState.FAILED
        fake_distributor.settle.assert_not_awaited()

    async def test_wipe_in_boss_phase(self, manager, party):
        instance = await manager.start("corrupted_temple", party)
        await clear_to_boss(manager, instance.instance_id)

        await manager.advance_wave(instance.instance_id, "wiped")

        assert instance.state is LifecycleState.FAILED

    async def test_advance_before_begin(self, manager):
        instance = await manager.open_recruitment("corrupted_temple")

        with pytest.raises(InvalidOperationError):
            await manager.advance_wave(instance.instance_id, "cleared")

    async def test_unknown_outcome(self, manager, party):
        instance = await manager.start("corrupted_temple", party)

        with pytest.raises(ValidationError):
            await manager.advance_wave(instance.instance_id, "fled")

    async def test_settlement_failure_keeps_completed(self, manager, party, fake_distributor):
        fake_distributor.settle.side_effect = RuntimeError("store down")
        instance = await manager.start("corrupted_temple", party)
        await clear_to_boss(manager, instance.instance_id)

        with pytest.raises(RuntimeError):
            await manager.advance_wave(instance.instance_id, "cleared")

        assert instance.state is LifecycleState.COMPLETED
        with pytest.raises(EncounterClosedError):
            await manager.advance_wave(instance.instance_id, "cleared")

    async def test_record_contribution(self, manager, party):
        instance = await manager.start("corrupted_temple", party)

        await manager.record_contribution(instance.instance_id, "p3", damage=1200)
        member = await manager.record_contribution(instance.instance_id, "p3", damage=300, healing=50)

        assert member.damage_dealt == 1500
        assert member.contribution == 1550

    async def test_record_contribution_unknown_member(self, manager, party):
        instance = await manager.start("corrupted_temple", party)

        with pytest.raises(NotFoundError):
            await manager.record_contribution(instance.instance_id, "stranger", damage=1)


@pytest.mark.asyncio
@pytest.mark.unit
class TestExpiry:
    """TTL, force-expire and the sweep."""

    async def test_event_past_ttl_expires_instead(self, manager, party, clock, fake_distributor):
        instance = await manager.start("corrupted_temple", party)
        await clear_to_boss(manager, instance.instance_id)
        clock.advance(seconds=1800)

        result = await manager.advance_wave(instance.instance_id, "cleared")

        assert result.state is LifecycleState.EXPIRED
        assert result.terminal_reason == "ttl_exceeded"
        fake_distributor.settle.assert_not_awaited()

    async def test_join_past_ttl(self, manager, party, clock):
        instance = await manager.open_recruitment("corrupted_temple")
        clock.advance(minutes=31)

        with pytest.raises(EncounterClosedError):
            await manager.join(instance.instance_id, party[0])

        assert instance.state is LifecycleState.EXPIRED

    async def test_force_expire(self, manager, party):
        instance = await manager.start("corrupted_temple", party)

        await manager.force_expire(instance.instance_id, reason="admin_cancel")

        assert instance.state is LifecycleState.EXPIRED
        assert instance.terminal_reason == "admin_cancel"
        assert manager.active_instances() == []

    async def test_sweep_expires_then_archives(self, manager, party, clock, committer):
        # Arrange
        instance = await manager.start("corrupted_temple", party)
        instance_id = instance.instance_id

        # Act - past TTL
        clock.advance(seconds=1800)
        expired = await manager.sweep()

        # Assert
        assert expired == [instance_id]
        assert instance.state is LifecycleState.EXPIRED

        # Act - inside retention nothing happens
        clock.advance(seconds=3599)
        assert await manager.sweep() == []

        # Act - past retention the instance is archived
        clock.advance(seconds=1)
        archived = await manager.sweep()

        # Assert - archival is eviction only; state is unchanged
        assert archived == [instance_id]
        with pytest.raises(NotFoundError):
            manager.get(instance_id)
        document = committer.writes_for(INSTANCE_PARTITION, instance_id)[-1]
        assert document["state"] == "expired"
        assert "archived_at" in document

    async def test_sweep_ignores_live_instances(self, manager, party, clock):
        await manager.start("corrupted_temple", party)
        clock.advance(seconds=60)

        assert await manager.sweep() == []

    async def test_wall_clock_step_does_not_expire(self, manager, party, clock):
        """TTL follows the monotonic reading, not the wall clock."""
        instance = await manager.start("corrupted_temple", party)
        clock.set(clock.now() + timedelta(days=1))

        await manager.advance_wave(instance.instance_id, "cleared")

        assert instance.state is LifecycleState.IN_PROGRESS
        assert await manager.sweep() == []

    async def test_ttl_counts_elapsed_time_after_backward_step(self, manager, party, clock):
        instance = await manager.start("corrupted_temple", party)
        clock.set(clock.now() - timedelta(hours=2))
        clock.advance(seconds=1800)

        await manager.advance_wave(instance.instance_id, "cleared")

        assert instance.state is LifecycleState.EXPIRED
