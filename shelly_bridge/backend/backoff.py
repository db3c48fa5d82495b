"""Reconnect backoff policy and the scheduler it runs on."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Protocol

from ..const import RECONNECT_BASE_DELAY, RECONNECT_MAX_DELAY


def reconnect_delay(
    attempt: int,
    *,
    base: float = RECONNECT_BASE_DELAY,
    cap: float = RECONNECT_MAX_DELAY,
) -> float:
    """Return the delay in seconds before reconnect ``attempt`` (1-based)."""

    if attempt < 1:
        return base
    return min(base * 2 ** (attempt - 1), cap)


class TimerHandle(Protocol):
    """Cancellable handle returned by :meth:`Scheduler.call_later`."""

    def cancel(self) -> None:
        """Cancel the pending callback."""


class Scheduler(Protocol):
    """Delayed-callback primitive used for backoff and request timeouts."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` after ``delay`` seconds."""


class LoopScheduler:
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        loop = self._loop or asyncio.get_running_loop()
        return loop.call_later(delay, callback)


__all__ = ["LoopScheduler", "Scheduler", "TimerHandle", "reconnect_delay"]
