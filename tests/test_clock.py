"""Tests for ttyio.transport.clock."""

from __future__ import annotations

import math
from types import SimpleNamespace

import pytest

from ttyio.const import POLL_TIMEOUT_MAX_MS
from ttyio.transport import clock as clock_mod
from ttyio.transport.clock import Timeout, TimeoutClock


def test_indefinite_never_decrements() -> None:
    budget = Timeout.indefinite()
    assert budget.is_indefinite
    assert budget.milliseconds == -1
    assert budget.decrement(10_000) == budget
    assert budget.as_seconds() is None


def test_decrement_floors_at_zero() -> None:
    budget = Timeout.wait(100)
    assert budget.decrement(30) == Timeout.wait(70)
    assert budget.decrement(30).decrement(30).decrement(30) == Timeout.wait(10)
    assert budget.decrement(250) == Timeout.zero()
    assert budget.decrement(250).is_zero


def test_decrement_ignores_non_positive_elapsed() -> None:
    budget = Timeout.wait(5)
    assert budget.decrement(0) is budget
    assert budget.decrement(-3) is budget


@pytest.mark.parametrize(
    ("interval", "expected"),
    [
        (0.0, 0),
        (-1.0, 0),
        (0.0001, 1),
        (0.05, 50),
        (1.5, 1500),
        (10**9, POLL_TIMEOUT_MAX_MS),
    ],
)
def test_seconds_rounds_up_and_clamps(interval: float, expected: int) -> None:
    assert Timeout.seconds(interval).milliseconds == expected


def test_seconds_infinity_is_indefinite() -> None:
    assert Timeout.seconds(math.inf).is_indefinite
    assert Timeout.seconds(-math.inf).is_zero
    with pytest.raises(ValueError):
        Timeout.seconds(math.nan)


def test_coerce_accepts_all_forms() -> None:
    budget = Timeout.wait(42)
    assert Timeout.coerce(None).is_indefinite
    assert Timeout.coerce(budget) is budget
    assert Timeout.coerce(0.25) == Timeout.wait(250)
    assert Timeout.coerce(2) == Timeout.wait(2000)


def test_wait_negative_means_indefinite() -> None:
    assert Timeout.wait(-5).is_indefinite
    assert Timeout.wait(POLL_TIMEOUT_MAX_MS + 10).milliseconds == POLL_TIMEOUT_MAX_MS


def test_clock_reports_split_milliseconds(monkeypatch: pytest.MonkeyPatch) -> None:
    samples = iter([1_000_000_000, 1_050_000_000, 1_050_900_000, 1_200_000_000])
    monkeypatch.setattr(clock_mod, "time", SimpleNamespace(monotonic_ns=lambda: next(samples)))

    clock = TimeoutClock()
    assert clock.elapsed() == 50
    assert clock.elapsed() == 0
    assert clock.elapsed() == 150


def test_clock_carries_sub_millisecond_remainder(monkeypatch: pytest.MonkeyPatch) -> None:
    ticks = iter(range(0, 10_000_000, 400_000))
    monkeypatch.setattr(clock_mod, "time", SimpleNamespace(monotonic_ns=lambda: next(ticks)))

    clock = TimeoutClock()
    samples = [clock.elapsed() for _ in range(10)]
    assert samples == [0, 0, 1, 0, 1, 0, 0, 1, 0, 1]
    assert sum(samples) == 4
