"""
Domain exceptions for raidforge.

Purpose
-------
Define the structured, domain-specific exception hierarchy for encounter,
loot and reward logic. Services raise these for rule violations; callers
at the command layer translate them into player-facing messages.

Design Notes
------------
- All domain exceptions inherit from `RaidforgeDomainException`.
- Each exception carries `message`, `details`, `severity`, `is_retryable`
  and `error_code`, and serializes with `to_dict()` for structured logs.
- Validation errors are raised before any state change.
- `CapacityError` and `ConcurrencyHazard` are usually recorded on a
  settlement rather than raised, since one participant's problem must not
  abort rewards for the rest of the party.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from raidforge.core.exceptions import ErrorSeverity

__all__ = [
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


class RaidforgeDomainException(Exception):
    """
    Base exception for all raidforge domain-level errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error
        severity: Error severity level for logging handlers
        is_retryable: Whether the operation can be retried
        error_code: Optional code for programmatic handling

    Example:
        >>> raise RaidforgeDomainException(
        ...     "Settlement failed",
        ...     {"reason": "roster empty"}
        ... )
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        self.message: str = message
        self.details: Dict[str, Any] = details or {}
        self.severity: ErrorSeverity = severity or self.DEFAULT_SEVERITY
        self.is_retryable: bool = (
            is_retryable if is_retryable is not None else self.DEFAULT_RETRYABLE
        )
        self.error_code: str = error_code or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        details_str = f" | Details: {self.details}" if self.details else ""
        return f"[{self.error_code}] {self.message}{details_str}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"details={self.details!r}, "
            f"severity={self.severity.value!r}, "
            f"is_retryable={self.is_retryable!r}"
            ")"
        )


class ValidationError(RaidforgeDomainException):
    """
    Raised when an input fails domain validation.

    Args:
        field: Name of the field that failed validation
        message: Explanation of why validation failed
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Validation error for {field}: {message}",
            details={"field": field, "validation_message": message},
            error_code=f"VALIDATION_{field.upper()}",
        )


class NotFoundError(RaidforgeDomainException):
    """
    Raised when a requested resource cannot be found.

    Args:
        resource_type: Type of resource (e.g., "Encounter", "EncounterInstance")
        identifier: Optional identifier for the missing resource
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier

        if identifier is not None:
            message = f"{resource_type} not found: {identifier}"
        else:
            message = f"{resource_type} not found"

        super().__init__(
            message,
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper()}_NOT_FOUND",
        )


class CapacityError(RaidforgeDomainException):
    """
    Raised when a participant's inventory cannot accept granted items.

    Args:
        participant_id: The participant whose inventory is full
        item_count: Number of items that were refused
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, participant_id: str, item_count: int) -> None:
        self.participant_id = participant_id
        self.item_count = item_count
        super().__init__(
            f"Inventory of {participant_id} cannot accept {item_count} items",
            details={"participant_id": participant_id, "item_count": item_count},
            error_code="INVENTORY_FULL",
        )


class InvalidOperationError(RaidforgeDomainException):
    """
    Raised when an action violates encounter rules in the current context.

    Args:
        action: Description of the invalid action
        reason: Explanation of why it's not allowed

    Example:
        >>> raise InvalidOperationError("begin", "instance is not recruiting")
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Invalid operation '{action}': {reason}",
            details={"action": action, "reason": reason},
            error_code=f"INVALID_{action.upper()}",
        )


class EncounterClosedError(InvalidOperationError):
    """
    Raised when an event targets an instance that already reached a terminal
    state (completed, failed or expired).

    Args:
        instance_id: The closed instance
        state: Its terminal state
    """

    DEFAULT_SEVERITY = ErrorSeverity.DEBUG

    def __init__(self, instance_id: str, state: str) -> None:
        self.instance_id = instance_id
        self.state = state
        RaidforgeDomainException.__init__(
            self,
            f"Encounter instance {instance_id} is closed ({state})",
            details={"instance_id": instance_id, "state": state},
            error_code="ENCOUNTER_CLOSED",
        )
        self.action = "advance"
        self.reason = f"instance is {state}"


class RequirementNotMetError(RaidforgeDomainException):
    """
    Raised when a participant or party does not meet an encounter requirement.

    Args:
        requirement: Name of the requirement (e.g., "min_level", "min_party_size")
        required: The threshold the encounter demands
        actual: What the participant or party has
    """

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, requirement: str, required: Any, actual: Any) -> None:
        self.requirement = requirement
        self.required = required
        self.actual = actual
        super().__init__(
            f"Requirement {requirement} not met: need {required}, have {actual}",
            details={"requirement": requirement, "required": required, "actual": actual},
            error_code=f"REQUIREMENT_{requirement.upper()}",
        )


class LockoutActiveError(RaidforgeDomainException):
    """
    Raised when a locked-out participant tries to enter an encounter.

    Args:
        participant_id: The locked participant
        encounter_id: The encounter they are locked from
        reset_at: When the lockout ends
    """

    DEFAULT_SEVERITY = ErrorSeverity.DEBUG
    DEFAULT_RETRYABLE = True

    def __init__(
        self,
        participant_id: str,
        encounter_id: str,
        reset_at: Optional[datetime],
    ) -> None:
        self.participant_id = participant_id
        self.encounter_id = encounter_id
        self.reset_at = reset_at
        super().__init__(
            f"{participant_id} is locked out of {encounter_id}",
            details={
                "participant_id": participant_id,
                "encounter_id": encounter_id,
                "reset_at": reset_at.isoformat() if reset_at else None,
            },
            error_code="LOCKOUT_ACTIVE",
        )


class ConcurrencyHazard(RaidforgeDomainException):
    """
    Recorded when a participant's lockout was claimed by a concurrent
    completion between the status check and the claim.

    Args:
        participant_id: The participant whose claim lost
        encounter_id: The contested encounter
    """

    DEFAULT_SEVERITY = ErrorSeverity.WARNING

    def __init__(self, participant_id: str, encounter_id: str) -> None:
        self.participant_id = participant_id
        self.encounter_id = encounter_id
        super().__init__(
            f"Lockout for {participant_id}:{encounter_id} was claimed concurrently",
            details={"participant_id": participant_id, "encounter_id": encounter_id},
            error_code="LOCKOUT_RACE",
        )
