"""Monotonic stopwatch and millisecond timeout budgets.

A :class:`Timeout` is either *indefinite* or a millisecond count. Blocking
loops sample a :class:`TimeoutClock` after every interrupted wait and shrink
the budget by the elapsed time, so retrying never extends the deadline.
"""

from __future__ import annotations

import math
import time

import msgspec

from ..const import POLL_TIMEOUT_INDEFINITE, POLL_TIMEOUT_MAX_MS


class TimeoutClock:
    """Split timer reporting whole milliseconds elapsed since the previous sample.

    Sub-millisecond remainders carry over into the next split, so many short
    samples still add up to the time that really passed.
    """

    __slots__ = ("_last_ns",)

    def __init__(self) -> None:
        self._last_ns = time.monotonic_ns()

    def elapsed(self) -> int:
        """Return whole milliseconds since the last split and advance it by as much."""
        elapsed = (time.monotonic_ns() - self._last_ns) // 1_000_000
        self._last_ns += elapsed * 1_000_000
        return elapsed


class Timeout(msgspec.Struct, frozen=True):
    """Poll budget in milliseconds; ``-1`` waits indefinitely, ``0`` never waits."""

    milliseconds: int = POLL_TIMEOUT_INDEFINITE

    @classmethod
    def indefinite(cls) -> Timeout:
        return _INDEFINITE

    @classmethod
    def zero(cls) -> Timeout:
        return _ZERO

    @classmethod
    def wait(cls, milliseconds: int) -> Timeout:
        if milliseconds < 0:
            return _INDEFINITE
        return cls(milliseconds=min(milliseconds, POLL_TIMEOUT_MAX_MS))

    @classmethod
    def seconds(cls, interval: float) -> Timeout:
        """Convert seconds, rounding up so a short wait never becomes a poll."""
        if math.isinf(interval) and interval > 0:
            return _INDEFINITE
        if math.isnan(interval):
            raise ValueError("timeout must be a number")
        if interval <= 0:
            return _ZERO
        return cls(milliseconds=min(math.ceil(interval * 1000), POLL_TIMEOUT_MAX_MS))

    @classmethod
    def coerce(cls, value: Timeout | float | None) -> Timeout:
        if value is None:
            return _INDEFINITE
        if isinstance(value, Timeout):
            return value
        return cls.seconds(float(value))

    @property
    def is_indefinite(self) -> bool:
        return self.milliseconds < 0

    @property
    def is_zero(self) -> bool:
        return self.milliseconds == 0

    def decrement(self, elapsed: int) -> Timeout:
        """Return the budget left after ``elapsed`` milliseconds, floored at zero."""
        if self.is_indefinite or elapsed <= 0:
            return self
        return Timeout(milliseconds=max(self.milliseconds - elapsed, 0))

    def as_seconds(self) -> float | None:
        if self.is_indefinite:
            return None
        return self.milliseconds / 1000


_INDEFINITE = Timeout(milliseconds=POLL_TIMEOUT_INDEFINITE)
_ZERO = Timeout(milliseconds=0)


__all__ = ["Timeout", "TimeoutClock"]
