"""
Infrastructure exceptions for raidforge.

Purpose
-------
Define the structured exception hierarchy for infrastructure-level concerns:
store failures, configuration errors, and reference data that cannot be
loaded. Game-rule violations live in `raidforge.modules.shared.exceptions`.

Design Notes
------------
- All infrastructure exceptions inherit from `RaidforgeInfrastructureException`.
- Each exception carries:
  - `message`: human-readable description
  - `details`: additional structured context (dict)
  - `severity`: `ErrorSeverity` value for logging/alerting
  - `is_retryable`: whether the operation can be retried
  - `error_code`: short, stable identifier for programmatic use
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorSeverity(Enum):
    """Error severity levels for logging and alerting."""

    DEBUG = "debug"  # Expected, not concerning
    INFO = "info"  # Normal operation (e.g., validation failures)
    WARNING = "warning"  # Concerning but handled (e.g., retryable errors)
    ERROR = "error"  # Unexpected errors requiring attention
    CRITICAL = "critical"  # System-level failures requiring immediate action


class RaidforgeInfrastructureException(Exception):
    """
    Base exception for all raidforge infrastructure-level errors.

    Args:
        message: Human-readable error message
        details: Additional structured data about the error
        severity: Error severity level for logging handlers
        is_retryable: Whether the operation can be retried
        error_code: Optional code for programmatic handling
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


class ConfigurationError(RaidforgeInfrastructureException):
    """
    Raised when a configuration key is invalid or missing.

    Args:
        config_key: The configuration key that has issues
        message: Description of the configuration problem
    """

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details={"config_key": config_key, "message": message},
            error_code="CONFIG_ERROR",
        )


class CatalogValidationError(RaidforgeInfrastructureException):
    """
    Raised when encounter or loot reference data fails load-time validation.

    Collects every problem found so one failed boot reports all of them.

    Args:
        problems: Human-readable description of each violation
    """

    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, problems: List[str]) -> None:
        self.problems = list(problems)
        summary = "; ".join(self.problems[:5])
        if len(self.problems) > 5:
            summary += f" (+{len(self.problems) - 5} more)"
        super().__init__(
            f"Catalog validation failed: {summary}",
            details={"problems": self.problems, "problem_count": len(self.problems)},
            error_code="CATALOG_INVALID",
        )


class DatabaseError(RaidforgeInfrastructureException):
    """
    Raised when database operations fail.

    Args:
        operation: Description of the database operation that failed
        original_error: The underlying database exception
    """

    DEFAULT_RETRYABLE = True

    def __init__(self, operation: str, original_error: Exception) -> None:
        self.operation = operation
        self.original_error = original_error
        super().__init__(
            f"Database error during {operation}: {original_error}",
            details={
                "operation": operation,
                "error": str(original_error),
                "error_type": type(original_error).__name__,
            },
            error_code="DATABASE_ERROR",
        )


class TransientStoreError(RaidforgeInfrastructureException):
    """
    Raised (or recorded) when a grouped write to the entity store fails.

    The write coalescer never re-queues the affected data; this exception
    describes what was lost so it can be logged and alerted on.

    Args:
        partition: Logical entity collection of the failed chunk
        entity_ids: Entities whose pending fields were dropped
        original_error: The underlying store exception
    """

    DEFAULT_SEVERITY = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE = True

    def __init__(
        self,
        partition: str,
        entity_ids: List[str],
        original_error: Exception,
    ) -> None:
        self.partition = partition
        self.entity_ids = list(entity_ids)
        self.original_error = original_error
        super().__init__(
            f"Store write failed for {len(self.entity_ids)} entities "
            f"in '{partition}': {original_error}",
            details={
                "partition": partition,
                "entity_ids": self.entity_ids,
                "error": str(original_error),
                "error_type": type(original_error).__name__,
            },
            error_code="STORE_WRITE_FAILED",
        )


def is_transient_error(exc: Exception) -> bool:
    """Check if an exception represents a transient error that can be retried."""
    if isinstance(exc, RaidforgeInfrastructureException):
        return exc.is_retryable
    return False


def should_alert(exc: Exception) -> bool:
    """True if severity is ERROR or CRITICAL."""
    if isinstance(exc, RaidforgeInfrastructureException):
        return exc.severity in (ErrorSeverity.ERROR, ErrorSeverity.CRITICAL)
    return True
