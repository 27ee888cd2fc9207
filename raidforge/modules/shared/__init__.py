"""
raidforge shared domain module

Provides domain-level foundations for the game modules:
- Domain exceptions and error handling
- BaseService: logging, config access and validation helpers

Usage
-----
    from raidforge.modules.shared import BaseService, NotFoundError
"""

from __future__ import annotations

from .base_service import BaseService
from .exceptions import (
    CapacityError,
    ConcurrencyHazard,
    EncounterClosedError,
    ErrorSeverity,
    InvalidOperationError,
    LockoutActiveError,
    NotFoundError,
    RaidforgeDomainException,
    RequirementNotMetError,
    ValidationError,
)

__all__ = [
    "BaseService",
    "ErrorSeverity",
    "RaidforgeDomainException",
    "ValidationError",
    "NotFoundError",
    "CapacityError",
    "InvalidOperationError",
    "EncounterClosedError",
    "RequirementNotMetError",
    "LockoutActiveError",
    "ConcurrencyHazard",
]
