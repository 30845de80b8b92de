"""
Question countdown.
The remaining time is recomputed from a fixed deadline on every tick, so a
slow or late tick never makes the countdown drift.
"""
import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from typing import Callable

from quiz_client.constants import TICK_SECONDS, WARNING_WINDOW_SECONDS

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_remaining(total_seconds: float, start_time: datetime | None, now: datetime | None = None) -> int:
    """Whole seconds left of a question that started at start_time.

    Args:
        total_seconds: Declared time limit of the question
        start_time: Server-declared start, or None to use the full duration
        now: Current time (defaults to the wall clock, UTC)

    Returns:
        Remaining seconds, rounded and floored at 0
    """
    if start_time is None or total_seconds <= 0:
        return max(0, _round_half_up(total_seconds))
    now = now or datetime.now(timezone.utc)
    if start_time.tzinfo is None:
        start_time = start_time.replace(tzinfo=timezone.utc)
    elapsed = (now - start_time).total_seconds()
    return max(0, _round_half_up(total_seconds - elapsed))


class Countdown:
    """1-second countdown towards a deadline, run as an asyncio task.

    Cancelling and starting again resumes towards the same deadline.
    """

    def __init__(
        self,
        remaining_seconds: float,
        on_tick: Callable[[int], None] | None = None,
        on_expire: Callable[[], None] | None = None,
        on_warning: Callable[[int], None] | None = None,
        tick_seconds: float = TICK_SECONDS,
        warning_window: int = WARNING_WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._clock = clock
        self._deadline: float = clock() + max(0.0, remaining_seconds)
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._on_warning = on_warning
        self._tick_seconds = tick_seconds
        self._warning_window = warning_window
        self._task: asyncio.Task[None] | None = None
        self.expired: bool = False

    @property
    def remaining(self) -> int:
        return max(0, _round_half_up(self._deadline - self._clock()))

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running or self.expired:
            return
        self._task = asyncio.create_task(self._run())

    def cancel(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        remaining = self.remaining
        while remaining > 0:
            await asyncio.sleep(self._tick_seconds)
            remaining = self.remaining
            self._emit(self._on_tick, remaining)
            if 0 < remaining <= self._warning_window:
                self._emit(self._on_warning, remaining)
        self.expired = True
        self._emit(self._on_expire)

    @staticmethod
    def _emit(callback: Callable | None, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Countdown callback failed")
