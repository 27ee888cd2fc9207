"""
Database subsystem: declarative base and the async DatabaseService.
"""

from raidforge.core.database.base import Base
from raidforge.core.database.service import (
    DatabaseInitializationError,
    DatabaseNotInitializedError,
    DatabaseService,
)

__all__ = [
    "Base",
    "DatabaseService",
    "DatabaseInitializationError",
    "DatabaseNotInitializedError",
]
