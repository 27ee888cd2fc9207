"""
RewardDistributor - Completion reward settlement
================================================

Handles:
- Lockout gating per participant (locked participants earn nothing)
- Currency / experience split (equal, role-weighted or contribution-weighted)
- Guaranteed loot rolls per slot tag and envelope consumables
- External inventory capacity check before item grants
- Atomic lockout claim + one combined participant mutation per member

Ordering per participant:
    status -> share -> roll items -> capacity check -> try_claim -> queue write

The lockout claim and the reward mutation are issued back to back for the
same participant, and the mutation is queued with `immediate=True`, so a
claimed lockout is never observed without its rewards being on their way to
the store. A participant who loses the claim race gets nothing and is
recorded as a `ConcurrencyHazard`.

Shares are computed over the FULL roster, so a locked participant's share is
not redistributed to the others.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING, Dict, List, Sequence

from raidforge.core.logging.logger import LogContext
from raidforge.core.persistence.coalescer import Append, Increment
from raidforge.modules.catalog.models import EncounterDefinition, RewardEnvelope, SplitMode
from raidforge.modules.encounter.models import EncounterInstance, Participant
from raidforge.modules.loot.items import Item
from raidforge.modules.rewards.models import (
    InventoryGateway,
    ParticipantGrant,
    RewardSettlement,
)
from raidforge.modules.shared.base_service import BaseService
from raidforge.modules.shared.exceptions import CapacityError, ConcurrencyHazard

if TYPE_CHECKING:
    from logging import Logger

    from raidforge.core.config.manager import ConfigManager
    from raidforge.core.persistence.coalescer import WriteCoalescer
    from raidforge.modules.lockout.service import LockoutLedger
    from raidforge.modules.loot.service import LootGenerator

PARTICIPANT_PARTITION = "participants"


def compute_shares(envelope: RewardEnvelope, roster: Sequence[Participant]) -> Dict[str, float]:
    """
    Fraction of the envelope each roster member is entitled to.

    Fractions sum to 1.0 over the roster. Contribution weighting falls back
    to an equal split when nobody dealt damage or healing.
    """
    if not roster:
        return {}

    if envelope.split_mode is SplitMode.ROLE and envelope.role_weights:
        weights = {p.participant_id: envelope.role_weights.get(p.archetype, 1.0) for p in roster}
    elif envelope.split_mode is SplitMode.CONTRIBUTION:
        weights = {p.participant_id: float(p.contribution) for p in roster}
    else:
        weights = {}

    total = math.fsum(weights.values())
    if total <= 0:
        return {p.participant_id: 1.0 / len(roster) for p in roster}
    return {pid: weight / total for pid, weight in weights.items()}


class RewardDistributor(BaseService):
    """Pays out one completed encounter instance."""

    def __init__(
        self,
        ledger: LockoutLedger,
        loot: LootGenerator,
        writer: WriteCoalescer,
        inventory: InventoryGateway,
        config_manager: "type[ConfigManager]",
        logger: Logger,
    ) -> None:
        super().__init__(config_manager, logger)
        self._ledger = ledger
        self._loot = loot
        self._writer = writer
        self._inventory = inventory

    async def settle(
        self,
        instance: EncounterInstance,
        definition: EncounterDefinition,
    ) -> RewardSettlement:
        """
        Grant rewards to every eligible roster member.

        Never raises for a single participant's capacity or lockout problem;
        those are recorded on the returned settlement.
        """
        settlement = RewardSettlement(
            instance_id=instance.instance_id,
            encounter_id=definition.encounter_id,
        )
        envelope = definition.rewards
        shares = compute_shares(envelope, instance.roster)

        async with LogContext(
            encounter_id=definition.encounter_id,
            instance_id=instance.instance_id,
            operation="settle_rewards",
        ):
            for participant in instance.roster:
                await self._settle_participant(
                    participant, definition, shares[participant.participant_id], settlement
                )

            self.log.info(
                "Encounter rewards settled",
                extra={
                    "rewarded": len(settlement.grants),
                    "skipped_locked": len(settlement.skipped_locked),
                    "capacity_errors": len(settlement.capacity_errors),
                    "conflicts": len(settlement.conflicts),
                    "split_mode": envelope.split_mode.value,
                },
            )
        return settlement

    async def _settle_participant(
        self,
        participant: Participant,
        definition: EncounterDefinition,
        share: float,
        settlement: RewardSettlement,
    ) -> None:
        participant_id = participant.participant_id
        encounter_id = definition.encounter_id
        envelope = definition.rewards

        status = await self._ledger.status(participant_id, encounter_id)
        if status.locked:
            settlement.skipped_locked.append(participant_id)
            self.log.info(
                "Participant locked out; no completion rewards",
                extra={
                    "participant_id": participant_id,
                    "reset_at": status.reset_at.isoformat() if status.reset_at else None,
                },
            )
            return

        grant = ParticipantGrant(
            participant_id=participant_id,
            gold=math.floor(envelope.gold * share),
            tokens=math.floor(envelope.tokens * share),
            experience=math.floor(envelope.experience * share),
        )

        items = self._roll_items(participant, definition)
        if items and not await self._inventory.can_accept(participant_id, items):
            settlement.capacity_errors.append(CapacityError(participant_id, len(items)))
            grant.items_withheld = True
            self.log.info(
                "Inventory full; item grants skipped",
                extra={"participant_id": participant_id, "item_count": len(items)},
            )
            items = []
        grant.items = items

        if not await self._ledger.try_claim(participant_id, encounter_id):
            hazard = ConcurrencyHazard(participant_id, encounter_id)
            settlement.conflicts.append(hazard)
            self.log.warning(
                "Lockout claimed by a concurrent completion; participant skipped",
                extra={"participant_id": participant_id, "error_code": hazard.error_code},
            )
            return

        fields = {
            "gold": Increment(grant.gold),
            "tokens": Increment(grant.tokens),
            "experience": Increment(grant.experience),
        }
        if grant.items:
            fields["inventory"] = Append([item.to_dict() for item in grant.items])

        report = await self._writer.queue_write(
            PARTICIPANT_PARTITION, participant_id, fields, immediate=True
        )
        if report is not None and not report.ok:
            self.log.warning(
                "Reward mutation flush reported failures",
                extra={
                    "participant_id": participant_id,
                    "dropped_entity_ids": report.dropped_entity_ids,
                },
            )

        settlement.grants.append(grant)

    def _roll_items(
        self,
        participant: Participant,
        definition: EncounterDefinition,
    ) -> List[Item]:
        items: List[Item] = []
        for slot in definition.rewards.guaranteed_loot:
            if not self._loot.has_template(participant.archetype, slot):
                self.log.debug(
                    "No template for slot; skipped",
                    extra={
                        "participant_id": participant.participant_id,
                        "archetype": participant.archetype.value,
                        "slot": slot,
                    },
                )
                continue
            items.append(
                self._loot.generate(
                    definition.encounter_id,
                    definition.difficulty,
                    participant.archetype,
                    slot,
                    definition.boss.level,
                )
            )
        items.extend(self._loot.consumables(definition.encounter_id, definition.rewards.consumables))
        return items
