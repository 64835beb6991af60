from __future__ import annotations

import asyncio
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def asyncio_timer_factory(delay: float, callback: Callable[[], None]) -> TimerHandle:
    # Requires a running loop: debounced saves only exist inside the service's event loop.
    loop = asyncio.get_running_loop()
    return loop.call_later(delay, callback)


class DebounceScheduler:
    """Run ``callback`` once after ``delay`` seconds without a new ``schedule()`` call."""

    def __init__(
        self,
        delay: float,
        callback: Callable[[], None],
        *,
        timer_factory: TimerFactory = asyncio_timer_factory,
    ) -> None:
        if delay < 0:
            raise ValueError("Debounce delay must be non-negative.")
        self._delay = delay
        self._callback = callback
        self._timer_factory = timer_factory
        self._handle: TimerHandle | None = None

    @property
    def delay(self) -> float:
        return self._delay

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule(self) -> None:
        self.cancel()
        self._handle = self._timer_factory(self._delay, self._fire)

    def cancel(self) -> bool:
        handle = self._handle
        if handle is None:
            return False
        self._handle = None
        handle.cancel()
        return True

    def flush(self) -> bool:
        """Run a pending callback immediately instead of waiting for the timer."""
        if not self.cancel():
            return False
        self._callback()
        return True

    def _fire(self) -> None:
        if self._handle is None:
            return
        self._handle = None
        self._callback()
