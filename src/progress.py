"""Simulated progress for remote calls that report none.

The percentage is driven purely by wall-clock ticks against an estimated
duration. It never reaches 100 on its own; the caller finalizes it once
the work has settled.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, Callable

logger = logging.getLogger(__name__)

MAX_SIMULATED_PERCENT = 99


@dataclass(frozen=True)
class ProgressReadout:
    """What the UI shows for an in-flight operation."""
    percent: int = 0
    message: str = ""
    estimated_seconds: float = 0.0

    @property
    def seconds_remaining(self) -> int:
        if self.percent >= 100:
            return 0
        return round(self.estimated_seconds * (1 - self.percent / 100))


class ProgressEstimator:
    """Periodic ticker producing a capped, non-decreasing percentage."""

    def __init__(
        self,
        estimated_total_seconds: float,
        interval_ms: int = 100,
        on_tick: Callable[[int], None] | None = None,
    ):
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")
        self.estimated_total_seconds = estimated_total_seconds
        self.interval_ms = interval_ms
        self.total_steps = max(1.0, estimated_total_seconds * (1000 / interval_ms))
        self.elapsed_steps = 0
        self.percent = 0
        self._on_tick = on_tick
        self._task: asyncio.Task | None = None

    def tick(self) -> int:
        """Advance one interval and return the new percentage."""
        self.elapsed_steps += 1
        percent = min(MAX_SIMULATED_PERCENT, round(self.elapsed_steps / self.total_steps * 100))
        # never move backwards
        self.percent = max(self.percent, percent)
        if self._on_tick:
            try:
                self._on_tick(self.percent)
            except Exception as e:
                logger.exception(f"Error in progress tick callback: {e}")
        return self.percent

    async def _run(self) -> None:
        interval = self.interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            self.tick()

    def start(self) -> "ProgressEstimator":
        """Start ticking on the running event loop."""
        if self._task is None:
            self._task = asyncio.get_running_loop().create_task(self._run())
        return self

    def stop(self) -> None:
        """Cancel the periodic task. Safe to call more than once."""
        if self._task is not None:
            self._task.cancel()
            self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()


@asynccontextmanager
async def track_progress(
    estimated_total_seconds: float,
    interval_ms: int = 100,
    on_tick: Callable[[int], None] | None = None,
) -> AsyncIterator[ProgressEstimator]:
    """Run a progress estimator for the duration of the block.

    The ticker is cancelled on every exit path, including errors and
    cancellation of the enclosing task.
    """
    estimator = ProgressEstimator(estimated_total_seconds, interval_ms, on_tick)
    estimator.start()
    try:
        yield estimator
    finally:
        estimator.stop()
