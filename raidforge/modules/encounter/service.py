"""
EncounterLifecycleManager - Encounter instance state machine
============================================================

Handles:
- Opening an instance and recruiting a roster (level / power / lockout gates)
- Starting the fight once the party size requirement is met
- Wave progression, boss phase, completion and failure
- TTL expiry (lazy on the next event and via the periodic sweep)
- Administrative force-expire
- Archival of terminal instances after the retention window

Exactly-once rewards
--------------------
The `completed` state is assigned synchronously, before the first await of
the transition that settles rewards. Any other event for the same instance
that runs while settlement is in flight sees a terminal instance and is
rejected with `EncounterClosedError`. There is no separate "grant if not yet
granted" pass anywhere.

Persistence
-----------
Every transition queues the instance document through the WriteCoalescer
(partition `encounter_instances`). Terminal transitions and archival flush
immediately; in-flight progress rides the normal batch interval.

Tunables (ConfigManager):
    lifecycle.instance_ttl_seconds  (default 1800)
    lifecycle.retention_seconds     (default 3600)
    lifecycle.auto_begin            (default true)

Recruitment
-----------
With `auto_begin` on, the join that brings the roster to `min_party_size`
moves the instance straight to `in_progress(0)`. With it off the instance
stays recruiting until `begin()` is called, so a party can fill up to
`max_party_size` first.

TTL and retention deadlines are taken from `Clock.monotonic()`; the wall
timestamps on the instance are for the persisted document only.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Dict, List, Optional, Sequence

from raidforge.core.clock import Clock, SystemClock, ensure_utc
from raidforge.core.logging.logger import LogContext
from raidforge.modules.encounter.models import (
    EncounterInstance,
    LifecycleState,
    Participant,
    WaveOutcome,
)
from raidforge.modules.shared.base_service import BaseService
from raidforge.modules.shared.exceptions import (
    EncounterClosedError,
    InvalidOperationError,
    LockoutActiveError,
    NotFoundError,
    RequirementNotMetError,
    ValidationError,
)

if TYPE_CHECKING:
    from logging import Logger

    from raidforge.core.config.manager import ConfigManager
    from raidforge.core.persistence.coalescer import WriteCoalescer
    from raidforge.modules.catalog.models import Archetype, EncounterDefinition
    from raidforge.modules.catalog.service import EncounterCatalog
    from raidforge.modules.lockout.service import LockoutLedger
    from raidforge.modules.rewards.service import RewardDistributor

INSTANCE_PARTITION = "encounter_instances"
DEFAULT_INSTANCE_TTL_SECONDS = 1800
DEFAULT_RETENTION_SECONDS = 3600


class EncounterLifecycleManager(BaseService):
    """
    Owns every live EncounterInstance in this process.

    Instances are kept in memory until archived; the coalesced instance
    documents are the durable record.
    """

    def __init__(
        self,
        catalog: EncounterCatalog,
        ledger: LockoutLedger,
        distributor: RewardDistributor,
        writer: WriteCoalescer,
        config_manager: "type[ConfigManager]",
        logger: Logger,
        clock: Optional[Clock] = None,
    ) -> None:
        super().__init__(config_manager, logger)
        self._catalog = catalog
        self._ledger = ledger
        self._distributor = distributor
        self._writer = writer
        self._clock = clock or SystemClock()
        self._instances: Dict[str, EncounterInstance] = {}

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    @property
    def instance_ttl(self) -> timedelta:
        return timedelta(
            seconds=float(self.get_config("lifecycle.instance_ttl_seconds", DEFAULT_INSTANCE_TTL_SECONDS))
        )

    @property
    def retention(self) -> timedelta:
        return timedelta(
            seconds=float(self.get_config("lifecycle.retention_seconds", DEFAULT_RETENTION_SECONDS))
        )

    @property
    def auto_begin(self) -> bool:
        return bool(self.get_config("lifecycle.auto_begin", True))

    def _now(self) -> datetime:
        return ensure_utc(self._clock.now())

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get(self, instance_id: str) -> EncounterInstance:
        """
        Raises:
            NotFoundError: If the instance is unknown or already archived
        """
        instance = self._instances.get(instance_id)
        if instance is None:
            raise NotFoundError("EncounterInstance", instance_id)
        return instance

    def active_instances(self) -> List[EncounterInstance]:
        return [i for i in self._instances.values() if not i.is_terminal]

    def build_participant(
        self,
        participant_id: str,
        role: str,
        level: int,
        power: int = 0,
        display_name: str = "",
    ) -> Participant:
        """Roster snapshot with the role resolved to its archetype."""
        self.validate_non_empty(participant_id, "participant_id")
        self.validate_positive_int(level, "level")
        self.validate_non_negative_int(power, "power")
        archetype: Archetype = self._catalog.resolve_archetype(role)
        return Participant(
            participant_id=participant_id,
            role=str(role).lower(),
            archetype=archetype,
            level=level,
            power=power,
            display_name=display_name or participant_id,
        )

    # -------------------------------------------------------------------------
    # Recruitment
    # -------------------------------------------------------------------------

    async def open_recruitment(self, encounter_id: str) -> EncounterInstance:
        """
        Create an instance and move it from idle to recruiting.

        Raises:
            NotFoundError: Unknown encounter id
        """
        definition = self._catalog.get(encounter_id)
        instance = self._new_instance(definition)
        instance.state = LifecycleState.RECRUITING

        self.log_operation(
            "open_recruitment",
            encounter_id=encounter_id,
            instance_id=instance.instance_id,
            expires_at=instance.expires_at.isoformat(),
        )
        await self._persist(instance)
        return instance

    async def join(self, instance_id: str, participant: Participant) -> EncounterInstance:
        """
        Add a participant to a recruiting instance.

        With `lifecycle.auto_begin` on, the join that reaches `min_party_size`
        also starts wave 0.

        Raises:
            EncounterClosedError: Instance is terminal (or just expired)
            InvalidOperationError: Not recruiting, roster full, or duplicate
            RequirementNotMetError: Level or power below the encounter gate
            LockoutActiveError: Participant is locked out of this encounter
        """
        instance = await self._require_open(instance_id)
        definition = self._catalog.get(instance.encounter_id)
        self._check_eligibility(definition, participant)

        status = await self._ledger.status(participant.participant_id, instance.encounter_id)
        if status.locked:
            raise LockoutActiveError(participant.participant_id, instance.encounter_id, status.reset_at)

        # re-check after the await; another join may have landed meanwhile
        if instance.state is not LifecycleState.RECRUITING:
            if instance.is_terminal:
                raise EncounterClosedError(instance.instance_id, instance.state.value)
            raise InvalidOperationError("join", f"instance is {instance.state.value}")
        if instance.participant(participant.participant_id) is not None:
            raise InvalidOperationError("join", f"{participant.participant_id} already joined")
        if len(instance.roster) >= definition.requirements.max_party_size:
            raise InvalidOperationError(
                "join", f"roster is full ({definition.requirements.max_party_size})"
            )

        instance.roster.append(participant)
        self.log.info(
            "Participant joined encounter",
            extra={
                "instance_id": instance.instance_id,
                "participant_id": participant.participant_id,
                "archetype": participant.archetype.value,
                "roster_size": len(instance.roster),
            },
        )
        if self.auto_begin and len(instance.roster) >= definition.requirements.min_party_size:
            self._enter_first_wave(instance, definition)
        await self._persist(instance)
        return instance

    async def begin(self, instance_id: str) -> EncounterInstance:
        """
        Start wave 0 once the roster meets the minimum party size.

        Raises:
            RequirementNotMetError: Roster smaller than min_party_size
        """
        instance = await self._require_open(instance_id)
        if instance.state is not LifecycleState.RECRUITING:
            raise InvalidOperationError("begin", f"instance is {instance.state.value}")

        definition = self._catalog.get(instance.encounter_id)
        if len(instance.roster) < definition.requirements.min_party_size:
            raise RequirementNotMetError(
                "min_party_size", definition.requirements.min_party_size, len(instance.roster)
            )

        self._enter_first_wave(instance, definition)
        await self._persist(instance)
        return instance

    async def start(
        self,
        encounter_id: str,
        roster: Sequence[Participant],
    ) -> EncounterInstance:
        """
        Open, fill and begin an instance for a pre-formed party.

        The whole roster is checked before the instance is created, so a
        rejected start leaves no instance behind.

        Raises:
            NotFoundError: Unknown encounter id
            ValidationError: Empty roster or duplicate participants
            RequirementNotMetError: Party size, level or power gate
            LockoutActiveError: Any participant is currently locked out
        """
        definition = self._catalog.get(encounter_id)
        if not roster:
            raise ValidationError("roster", "roster must not be empty")
        ids = [p.participant_id for p in roster]
        if len(set(ids)) != len(ids):
            raise ValidationError("roster", "roster contains duplicate participants")

        requirements = definition.requirements
        if len(roster) < requirements.min_party_size:
            raise RequirementNotMetError("min_party_size", requirements.min_party_size, len(roster))
        if len(roster) > requirements.max_party_size:
            raise RequirementNotMetError("max_party_size", requirements.max_party_size, len(roster))

        for participant in roster:
            self._check_eligibility(definition, participant)
        for participant in roster:
            status = await self._ledger.status(participant.participant_id, encounter_id)
            if status.locked:
                self.log.info(
                    "Start rejected: participant locked out",
                    extra={
                        "encounter_id": encounter_id,
                        "participant_id": participant.participant_id,
                        "reset_at": status.reset_at.isoformat() if status.reset_at else None,
                    },
                )
                raise LockoutActiveError(participant.participant_id, encounter_id, status.reset_at)

        instance = self._new_instance(definition)
        instance.roster.extend(roster)
        instance.state = LifecycleState.IN_PROGRESS
        instance.wave_index = 0

        self.log_operation(
            "start",
            encounter_id=encounter_id,
            instance_id=instance.instance_id,
            roster_size=len(roster),
            wave_count=definition.wave_count,
        )
        await self._persist(instance)
        return instance

    # -------------------------------------------------------------------------
    # Progression
    # -------------------------------------------------------------------------

    async def advance_wave(
        self,
        instance_id: str,
        outcome: WaveOutcome | str,
    ) -> EncounterInstance:
        """
        Apply a wave result.

        `cleared` in progress moves to the next wave, or to the boss phase
        after the last wave. `cleared` in the boss phase completes the
        encounter and settles rewards. `wiped` fails the encounter. A call
        past the TTL expires the instance instead and returns it.

        Raises:
            NotFoundError: Unknown instance
            EncounterClosedError: Instance already terminal
            InvalidOperationError: Instance has not started
            ValidationError: Unknown outcome
        """
        try:
            outcome = WaveOutcome(outcome)
        except ValueError:
            raise ValidationError("outcome", f"unknown wave outcome '{outcome}'") from None

        instance = self.get(instance_id)
        if instance.is_terminal:
            raise EncounterClosedError(instance.instance_id, instance.state.value)

        if self._past_ttl(instance):
            self._terminate(instance, LifecycleState.EXPIRED, "ttl_exceeded")
            await self._persist(instance, immediate=True)
            return instance

        if not instance.state.is_running:
            raise InvalidOperationError("advance_wave", f"instance is {instance.state.value}")

        definition = self._catalog.get(instance.encounter_id)

        if outcome is WaveOutcome.WIPED:
            self._terminate(instance, LifecycleState.FAILED, "party_wiped")
            await self._persist(instance, immediate=True)
            return instance

        if instance.state is LifecycleState.IN_PROGRESS:
            instance.wave_index += 1
            if instance.wave_index >= definition.wave_count:
                instance.state = LifecycleState.BOSS_PHASE
                self.log.info(
                    "Boss phase reached",
                    extra={
                        "instance_id": instance.instance_id,
                        "boss": definition.boss.name,
                    },
                )
            else:
                self.log.debug(
                    "Wave cleared",
                    extra={
                        "instance_id": instance.instance_id,
                        "wave_index": instance.wave_index,
                        "wave_count": definition.wave_count,
                    },
                )
            await self._persist(instance)
            return instance

        # boss defeated: terminal state is set before the first await below
        self._terminate(instance, LifecycleState.COMPLETED, "boss_defeated")
        await self._complete(instance, definition)
        return instance

    async def record_contribution(
        self,
        instance_id: str,
        participant_id: str,
        damage: int = 0,
        healing: int = 0,
        deaths: int = 0,
    ) -> Participant:
        """
        Add to a participant's reward-weighting accumulators.

        Raises:
            EncounterClosedError: Instance already terminal
            InvalidOperationError: Encounter not running
            NotFoundError: Participant not on the roster
        """
        for value, name in ((damage, "damage"), (healing, "healing"), (deaths, "deaths")):
            self.validate_non_negative_int(value, name)

        instance = self.get(instance_id)
        if instance.is_terminal:
            raise EncounterClosedError(instance.instance_id, instance.state.value)
        if not instance.state.is_running:
            raise InvalidOperationError("record_contribution", f"instance is {instance.state.value}")

        participant = instance.participant(participant_id)
        if participant is None:
            raise NotFoundError("Participant", participant_id)

        participant.damage_dealt += damage
        participant.healing_done += healing
        participant.deaths += deaths
        await self._persist(instance)
        return participant

    # -------------------------------------------------------------------------
    # Expiry and archival
    # -------------------------------------------------------------------------

    async def force_expire(self, instance_id: str, reason: str = "force_expired") -> EncounterInstance:
        """
        Administrative cancellation. A normal `expired` transition; writes
        already queued for the roster stay queued.

        Raises:
            EncounterClosedError: Instance already terminal
        """
        instance = self.get(instance_id)
        if instance.is_terminal:
            raise EncounterClosedError(instance.instance_id, instance.state.value)

        self._terminate(instance, LifecycleState.EXPIRED, reason)
        await self._persist(instance, immediate=True)
        return instance

    async def sweep(self) -> List[str]:
        """
        Expire overdue instances and archive terminal ones past retention.

        Returns:
            Ids of every instance expired or archived by this pass
        """
        now = self._now()
        ticks = self._clock.monotonic()
        retention = self.retention.total_seconds()
        touched: List[str] = []

        for instance in list(self._instances.values()):
            if not instance.is_terminal and self._past_ttl(instance):
                self._terminate(instance, LifecycleState.EXPIRED, "ttl_exceeded")
                await self._persist(instance, immediate=True)
                touched.append(instance.instance_id)
            elif (
                instance.is_terminal
                and instance.terminal_monotonic is not None
                and ticks >= instance.terminal_monotonic + retention
            ):
                await self._archive(instance, now)
                touched.append(instance.instance_id)

        if touched:
            self.log.info(
                "Encounter sweep finished",
                extra={"touched": len(touched), "live": len(self._instances)},
            )
        return touched

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _new_instance(self, definition: EncounterDefinition) -> EncounterInstance:
        now = self._now()
        instance = EncounterInstance(
            instance_id=uuid.uuid4().hex,
            encounter_id=definition.encounter_id,
            created_at=now,
            expires_at=now + self.instance_ttl,
            ttl_deadline=self._clock.monotonic() + self.instance_ttl.total_seconds(),
        )
        self._instances[instance.instance_id] = instance
        return instance

    async def _require_open(self, instance_id: str) -> EncounterInstance:
        instance = self.get(instance_id)
        if instance.is_terminal:
            raise EncounterClosedError(instance.instance_id, instance.state.value)
        if self._past_ttl(instance):
            self._terminate(instance, LifecycleState.EXPIRED, "ttl_exceeded")
            await self._persist(instance, immediate=True)
            raise EncounterClosedError(instance.instance_id, instance.state.value)
        return instance

    def _enter_first_wave(self, instance: EncounterInstance, definition: EncounterDefinition) -> None:
        instance.state = LifecycleState.IN_PROGRESS
        instance.wave_index = 0
        self.log.info(
            "Encounter started",
            extra={
                "instance_id": instance.instance_id,
                "encounter_id": instance.encounter_id,
                "roster_size": len(instance.roster),
                "wave_count": definition.wave_count,
            },
        )

    def _past_ttl(self, instance: EncounterInstance) -> bool:
        return self._clock.monotonic() >= instance.ttl_deadline

    def _check_eligibility(self, definition: EncounterDefinition, participant: Participant) -> None:
        requirements = definition.requirements
        if participant.level < requirements.min_level:
            raise RequirementNotMetError("min_level", requirements.min_level, participant.level)
        if participant.power < requirements.min_power:
            raise RequirementNotMetError("min_power", requirements.min_power, participant.power)

    def _terminate(self, instance: EncounterInstance, state: LifecycleState, reason: str) -> None:
        # callers invoke this before their first await
        if instance.is_terminal:
            raise EncounterClosedError(instance.instance_id, instance.state.value)
        previous = instance.state
        instance.state = state
        instance.terminal_at = self._now()
        instance.terminal_monotonic = self._clock.monotonic()
        instance.terminal_reason = reason
        self.log.info(
            "Encounter reached terminal state",
            extra={
                "instance_id": instance.instance_id,
                "encounter_id": instance.encounter_id,
                "previous_state": previous.value,
                "state": state.value,
                "reason": reason,
                "wave_index": instance.wave_index,
            },
        )

    async def _complete(self, instance: EncounterInstance, definition: EncounterDefinition) -> None:
        async with LogContext(
            encounter_id=instance.encounter_id,
            instance_id=instance.instance_id,
            operation="complete_encounter",
        ):
            try:
                instance.settlement = await self._distributor.settle(instance, definition)
            except Exception as exc:
                # instance stays completed; no automatic re-settlement
                self.log_error("settle_rewards", exc, instance_id=instance.instance_id)
                await self._persist(instance, immediate=True)
                raise
            await self._persist(instance, immediate=True)

    async def _archive(self, instance: EncounterInstance, now: datetime) -> None:
        self._instances.pop(instance.instance_id, None)
        document = instance.to_dict()
        document["archived_at"] = now.isoformat()
        await self._writer.queue_write(
            INSTANCE_PARTITION, instance.instance_id, document, immediate=True
        )
        self.log.debug(
            "Encounter instance archived",
            extra={"instance_id": instance.instance_id, "state": instance.state.value},
        )

    async def _persist(self, instance: EncounterInstance, immediate: bool = False) -> None:
        await self._writer.queue_write(
            INSTANCE_PARTITION, instance.instance_id, instance.to_dict(), immediate=immediate
        )
