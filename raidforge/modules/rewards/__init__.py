"""
Reward settlement for completed encounters.
"""

from __future__ import annotations

from .models import (
    AcceptAllInventory,
    InventoryGateway,
    ParticipantGrant,
    RewardSettlement,
)
from .service import PARTICIPANT_PARTITION, RewardDistributor, compute_shares

__all__ = [
    "PARTICIPANT_PARTITION",
    "AcceptAllInventory",
    "InventoryGateway",
    "ParticipantGrant",
    "RewardDistributor",
    "RewardSettlement",
    "compute_shares",
]
