"""
Periodic background task.

Runs an async callable on a fixed interval until stopped. Used for the
encounter TTL sweep and the lockout sweep. An exception in one run is logged
and the loop keeps going; a sweep must never take the process down.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from raidforge.core.logging.logger import get_logger

logger = get_logger(__name__)


class PeriodicTask:
    """
    Usage:
        task = PeriodicTask("lockout-sweep", ledger.sweep_expired, interval=3600)
        task.start()
        ...
        await task.stop()
    """

    def __init__(
        self,
        name: str,
        func: Callable[[], Awaitable[Any]],
        interval: float,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.name = name
        self._func = func
        self._interval = float(interval)
        self._task: Optional[asyncio.Task[None]] = None
        self._is_running = False
        self.runs = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self._is_running

    def start(self) -> None:
        if self._is_running:
            logger.warning("Periodic task already running", extra={"task": self.name})
            return

        self._is_running = True
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info(
            "Periodic task started",
            extra={"task": self.name, "interval_seconds": self._interval},
        )

    async def stop(self) -> None:
        if not self._is_running:
            return

        self._is_running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info(
            "Periodic task stopped",
            extra={"task": self.name, "runs": self.runs, "failures": self.failures},
        )

    async def run_once(self) -> Any:
        start_time = time.monotonic()
        try:
            result = await self._func()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.failures += 1
            logger.error(
                "Error in periodic task",
                extra={
                    "task": self.name,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
                exc_info=True,
            )
            return None
        finally:
            self.runs += 1

        logger.debug(
            "Periodic task run finished",
            extra={
                "task": self.name,
                "duration_ms": round((time.monotonic() - start_time) * 1000, 2),
            },
        )
        return result

    async def _loop(self) -> None:
        while self._is_running:
            await asyncio.sleep(self._interval)
            await self.run_once()
