"""
Encounter lifecycle: instance state machine from recruitment to completion.
"""

from __future__ import annotations

from .models import (
    TERMINAL_STATES,
    EncounterInstance,
    LifecycleState,
    Participant,
    WaveOutcome,
)
from .service import INSTANCE_PARTITION, EncounterLifecycleManager

__all__ = [
    "INSTANCE_PARTITION",
    "TERMINAL_STATES",
    "EncounterInstance",
    "EncounterLifecycleManager",
    "LifecycleState",
    "Participant",
    "WaveOutcome",
]
