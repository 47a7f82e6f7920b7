"""Tests for ttyio.transport.polling."""

from __future__ import annotations

import errno
import os
import select
from types import SimpleNamespace

import pytest

from ttyio.metrics import TransferStats
from ttyio.transport import clock as clock_mod
from ttyio.transport import polling
from ttyio.transport.clock import Timeout
from ttyio.transport.polling import Diagnostic, Event, Poller, PollStatus


class _StepClock:
    """Clock that reports a fixed 30 ms on every sample."""

    def elapsed(self) -> int:
        return 30


class _ScriptedPoll:
    def __init__(self, outcomes: list, seen: list[int]) -> None:
        self._outcomes = outcomes
        self._seen = seen

    def register(self, fd: int, mask: int) -> None:
        self.registered = (fd, mask)

    def poll(self, timeout: int):
        self._seen.append(timeout)
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _script(monkeypatch: pytest.MonkeyPatch, outcomes: list) -> list[int]:
    seen: list[int] = []
    fake_select = SimpleNamespace(
        poll=lambda: _ScriptedPoll(outcomes, seen),
        POLLNVAL=select.POLLNVAL,
    )
    monkeypatch.setattr(polling, "select", fake_select)
    return seen


def test_interrupts_shrink_budget_and_never_reset(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _script(monkeypatch, [InterruptedError(), BlockingIOError(), [(5, select.POLLIN)]])
    stats = TransferStats()
    poller = Poller(5, clock_factory=_StepClock, stats=stats)

    assert poller.wait_for(Event.READ, Timeout.wait(100)) is PollStatus.READY
    assert seen == [100, 70, 40]
    assert stats.poll_retries == 2


def test_interrupts_can_exhaust_budget(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _script(
        monkeypatch,
        [OSError(errno.EINTR, "eintr"), OSError(errno.EAGAIN, "again"), InterruptedError(), []],
    )
    poller = Poller(5, clock_factory=_StepClock)

    assert poller.wait_for(Event.READ, Timeout.wait(50)) is PollStatus.TIMEOUT
    assert seen == [50, 20, 0, 0]


def test_indefinite_budget_is_never_decremented(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _script(monkeypatch, [InterruptedError(), InterruptedError(), [(5, select.POLLOUT)]])
    poller = Poller(5, clock_factory=_StepClock)

    assert poller.wait_for(Event.WRITE, None) is PollStatus.READY
    assert seen == [-1, -1, -1]


def test_seconds_timeout_is_converted(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _script(monkeypatch, [[]])
    poller = Poller(5)

    assert poller.wait_for(Event.READ, 0.25) is PollStatus.TIMEOUT
    assert seen == [250]


@pytest.mark.parametrize("code", [errno.EBADF, errno.EPIPE])
def test_broken_descriptor_classifies_as_closed(monkeypatch: pytest.MonkeyPatch, code: int) -> None:
    _script(monkeypatch, [OSError(code, os.strerror(code))])
    assert Poller(5).wait_for(Event.READ, Timeout.wait(10)) is PollStatus.CLOSED


def test_other_failure_is_tagged_diagnostic(monkeypatch: pytest.MonkeyPatch) -> None:
    _script(monkeypatch, [OSError(errno.EINVAL, "invalid")])
    result = Poller(5).wait_for(Event.WRITE, Timeout.wait(10))
    assert result == Diagnostic("write", errno.EINVAL)


def test_pollnval_classifies_as_closed(monkeypatch: pytest.MonkeyPatch) -> None:
    _script(monkeypatch, [[(5, select.POLLNVAL)]])
    assert Poller(5).wait_for(Event.READ, Timeout.wait(10)) is PollStatus.CLOSED


def test_immediate_reports_idle_instead_of_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = _script(monkeypatch, [[]])
    assert Poller(5).immediate(Event.READ) is PollStatus.IDLE
    assert seen == [0]


def test_real_pipe_readiness(pipe_pair: tuple[int, int]) -> None:
    read_fd, write_fd = pipe_pair
    reader = Poller(read_fd)

    assert reader.wait_for(Event.READ, Timeout.wait(20)) is PollStatus.TIMEOUT
    assert reader.immediate(Event.READ) is PollStatus.IDLE
    assert Poller(write_fd).immediate(Event.WRITE) is PollStatus.READY

    os.write(write_fd, b"x")
    assert reader.wait_for(Event.READ, Timeout.wait(20)) is PollStatus.READY


def test_real_pipe_hangup_counts_as_ready(pipe_pair: tuple[int, int]) -> None:
    read_fd, write_fd = pipe_pair
    os.close(write_fd)
    # The subsequent read reports end of stream.
    assert Poller(read_fd).wait_for(Event.READ, Timeout.wait(20)) is PollStatus.READY


def test_closed_descriptor_reports_closed() -> None:
    read_fd, write_fd = os.pipe()
    os.close(read_fd)
    os.close(write_fd)
    assert Poller(read_fd).wait_for(Event.READ, Timeout.wait(20)) is PollStatus.CLOSED


def test_sub_millisecond_interrupts_still_exhaust_budget(monkeypatch: pytest.MonkeyPatch) -> None:
    ticks = iter(range(0, 100_000_000, 400_000))
    monkeypatch.setattr(clock_mod, "time", SimpleNamespace(monotonic_ns=lambda: next(ticks)))
    seen = _script(monkeypatch, [InterruptedError()] * 5 + [[]])

    assert Poller(5).wait_for(Event.READ, Timeout.wait(2)) is PollStatus.TIMEOUT
    assert seen == [2, 2, 2, 1, 1, 0]
