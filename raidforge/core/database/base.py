"""
Declarative base shared by every raidforge table.

Models register against `Base.metadata`; `DatabaseService.create_schema()`
creates whatever has been imported by then.
"""

from __future__ import annotations

from sqlalchemy.orm import declarative_base

Base = declarative_base()
