"""
Lockout ledger: once-per-window completion gate per (participant, encounter).
"""

from __future__ import annotations

from .model import LockoutRecord
from .service import ActiveLockout, LockoutLedger, LockoutStatus

__all__ = ["ActiveLockout", "LockoutLedger", "LockoutRecord", "LockoutStatus"]
