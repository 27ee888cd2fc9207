"""
Base Service Foundation

Purpose
-------
Provides the foundational class for the raidforge domain services (loot,
lockout, encounter lifecycle, rewards). Services implement the game rules,
read their tunables from ConfigManager and raise domain exceptions.

Design Notes
------------
This base class provides:
- Structured logging with operation context
- Safe config access patterns
- Validation error wrapping

What this class does NOT do:
- Manage database transactions (that's DatabaseService's job)
- Talk to the entity store (that's the WriteCoalescer's job)

Usage
-----
    class LockoutLedger(BaseService):
        def __init__(self, database, clock, config_manager, logger):
            super().__init__(config_manager, logger)
            self._db = database
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from raidforge.core.exceptions import ConfigurationError
from raidforge.modules.shared.exceptions import ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from raidforge.core.config.manager import ConfigManager


class BaseService:
    """
    Base class for all domain services.

    Args:
        config_manager: Configuration manager (class or compatible object)
        logger: Structured logger instance
    """

    def __init__(
        self,
        config_manager: "type[ConfigManager]",
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self.log = logger

    def get_config(
        self, key: str, default: Optional[Any] = None, required: bool = False
    ) -> Any:
        """
        Safely retrieve configuration value.

        Raises:
            ConfigurationError: If required=True and key is missing
        """
        value = self._config.get(key, default)
        if required and value is None:
            raise ConfigurationError(
                key, f"Required configuration key '{key}' is missing"
            )
        return value

    def log_operation(self, operation: str, **context: Any) -> None:
        """Log a service operation with structured context."""
        self.log.info(
            f"Service operation: {operation}",
            extra={"operation": operation, **context},
        )

    def log_error(self, operation: str, error: Exception, **context: Any) -> None:
        """Log a service error with full context."""
        self.log.error(
            f"Service error during {operation}: {error}",
            extra={
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": str(error),
                **context,
            },
        )

    def validate_positive_int(self, value: int, name: str) -> None:
        """
        Validate that a value is a positive integer.

        Raises:
            ValidationError: If value is not positive
        """
        if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
            raise ValidationError(
                name, f"{name} must be a positive integer, got {value}"
            )

    def validate_non_negative_int(self, value: int, name: str) -> None:
        """
        Validate that a value is a non-negative integer.

        Raises:
            ValidationError: If value is negative
        """
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValidationError(
                name, f"{name} must be a non-negative integer, got {value}"
            )

    def validate_non_empty(self, value: Optional[str], name: str) -> None:
        if not value or not str(value).strip():
            raise ValidationError(name, f"{name} must not be empty")
