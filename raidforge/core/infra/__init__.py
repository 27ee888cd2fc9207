"""
Infrastructure orchestration for raidforge.

Module Contents
---------------
**Wiring**:
    - ApplicationContext: builds every component once and owns its lifecycle

**Background work**:
    - PeriodicTask: fixed-interval async loop used for the sweeps
"""

from raidforge.core.infra.application_context import ApplicationContext
from raidforge.core.infra.periodic import PeriodicTask

__all__ = ["ApplicationContext", "PeriodicTask"]
