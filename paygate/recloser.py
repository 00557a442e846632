"""A failure-rate circuit breaker for async calls."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any, Literal

CircuitState = Literal["closed", "open", "half_open"]


class RejectedError(Exception):
    """Raised when the breaker is open and refuses to run a call."""


class _Window:
    """Fixed-size record of recent outcomes."""

    def __init__(self, size: int) -> None:
        self._results: deque[bool] = deque(maxlen=size)

    def record(self, ok: bool) -> float | None:
        """Store an outcome; return the failure rate once the window is full."""
        self._results.append(ok)
        if len(self._results) < (self._results.maxlen or 0):
            return None
        return self._results.count(False) / len(self._results)


class Recloser:
    """Circuit breaker that opens when the failure rate of recent calls is too high.

    While closed, outcomes fill a window of ``closed_len`` calls; once full, a
    failure rate above ``threshold`` opens the breaker. After ``open_wait``
    seconds calls are let through again in a half-open state, whose window of
    ``half_open_len`` calls decides whether to close or open again.
    """

    def __init__(
        self,
        *,
        threshold: float = 0.5,
        closed_len: int = 100,
        half_open_len: int = 10,
        open_wait: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if not 0.0 <= threshold <= 1.0:
            raise ValueError("threshold must be between 0 and 1")
        if closed_len < 1 or half_open_len < 1:
            raise ValueError("window lengths must be positive")
        if open_wait < 0:
            raise ValueError("open_wait must not be negative")
        self._threshold = threshold
        self._closed_len = closed_len
        self._half_open_len = half_open_len
        self._open_wait = open_wait
        self._clock = clock
        self._state: CircuitState = "closed"
        self._window = _Window(closed_len)
        self._open_until = 0.0

    def state(self) -> CircuitState:
        """Current state: ``"closed"``, ``"open"`` or ``"half_open"``."""
        return self._state

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Await ``func(*args)`` if permitted, recording whether it succeeded."""
        if not self._permitted():
            raise RejectedError("circuit breaker is open")
        try:
            result = await func(*args)
        except Exception:
            self._record(False)
            raise
        self._record(True)
        return result

    def _permitted(self) -> bool:
        if self._state != "open":
            return True
        if self._clock() > self._open_until:
            self._state = "half_open"
            self._window = _Window(self._half_open_len)
            return True
        return False

    def _record(self, ok: bool) -> None:
        if self._state == "open":
            return
        rate = self._window.record(ok)
        if rate is None:
            return
        if self._state == "closed":
            if not ok and rate > self._threshold:
                self._trip()
        elif rate > self._threshold:
            self._trip()
        else:
            self._state = "closed"
            self._window = _Window(self._closed_len)

    def _trip(self) -> None:
        self._state = "open"
        self._open_until = self._clock() + self._open_wait