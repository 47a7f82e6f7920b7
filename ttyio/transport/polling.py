"""Single-descriptor readiness polling with deadline-preserving retries."""

from __future__ import annotations

import enum
import errno
import logging
import select
from collections.abc import Callable
from typing import TYPE_CHECKING

import msgspec
import tenacity

from ..const import TAG_READ, TAG_WRITE
from ..errors import CLOSED_ERRNOS
from .clock import Timeout, TimeoutClock

if TYPE_CHECKING:
    from ..metrics import TransferStats

logger = logging.getLogger("ttyio")

# Outcomes of a wait that are retried with whatever budget is left.
TRANSIENT_ERRORS: tuple[type[OSError], ...] = (InterruptedError, BlockingIOError)


class Event(enum.Enum):
    """Readiness condition to wait for."""

    READ = (select.POLLIN, TAG_READ)
    WRITE = (select.POLLOUT, TAG_WRITE)

    def __init__(self, mask: int, tag: str) -> None:
        self.mask = mask
        self.tag = tag


class PollStatus(enum.Enum):
    READY = "ready"
    TIMEOUT = "timeout"
    CLOSED = "closed"
    IDLE = "idle"


class Diagnostic(msgspec.Struct, frozen=True):
    """Unclassified poll failure."""

    tag: str
    code: int


PollResult = PollStatus | Diagnostic


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, TRANSIENT_ERRORS):
        return True
    return isinstance(exc, OSError) and exc.errno in (errno.EINTR, errno.EAGAIN, errno.EWOULDBLOCK)


class Poller:
    """Wait for one descriptor to become readable or writable.

    Signal interruption and would-block failures never reach the caller: the
    wait is re-issued with the budget reduced by the time already spent, so an
    arbitrary number of interruptions cannot stretch the overall deadline.
    """

    def __init__(
        self,
        descriptor: int,
        *,
        clock_factory: Callable[[], TimeoutClock] = TimeoutClock,
        stats: TransferStats | None = None,
    ) -> None:
        self.descriptor = descriptor
        self._clock_factory = clock_factory
        self._stats = stats

    def wait_for(self, event: Event, timeout: Timeout | float | None = None) -> PollResult:
        """Block until ``event`` is ready, the budget runs out, or the descriptor fails."""
        remaining = Timeout.coerce(timeout)
        clock = self._clock_factory()

        retryer = tenacity.Retrying(
            retry=tenacity.retry_if_exception(is_transient),
            wait=tenacity.wait_none(),
            before_sleep=self._log_poll_retry,
            reraise=True,
        )

        try:
            for attempt in retryer:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        remaining = remaining.decrement(clock.elapsed())
                    return self._poll_once(event, remaining)
        except OSError as exc:
            return self._classify(event, exc)
        raise AssertionError("unreachable")  # pragma: no cover

    def immediate(self, event: Event) -> PollResult:
        """Non-blocking readiness check; a quiet descriptor reports ``IDLE``."""
        result = self.wait_for(event, Timeout.zero())
        if result is PollStatus.TIMEOUT:
            return PollStatus.IDLE
        return result

    def _poll_once(self, event: Event, remaining: Timeout) -> PollStatus:
        poller = select.poll()
        poller.register(self.descriptor, event.mask)
        ready = poller.poll(remaining.milliseconds)
        if not ready:
            return PollStatus.TIMEOUT
        _, revents = ready[0]
        if revents & select.POLLNVAL:
            return PollStatus.CLOSED
        # POLLHUP/POLLERR also count as ready: the following read or write
        # reports the concrete failure.
        return PollStatus.READY

    def _classify(self, event: Event, exc: OSError) -> PollResult:
        if exc.errno in CLOSED_ERRNOS or isinstance(exc, BrokenPipeError):
            logger.debug("Poll on fd %d reports closed descriptor: %s", self.descriptor, exc)
            return PollStatus.CLOSED
        logger.warning("Poll for %s on fd %d failed: %s", event.tag, self.descriptor, exc)
        return Diagnostic(event.tag, exc.errno or 0)

    def _log_poll_retry(self, retry_state: tenacity.RetryCallState) -> None:
        if self._stats is not None:
            self._stats.record_poll_retry()
        outcome = retry_state.outcome
        exc = outcome.exception() if outcome is not None else None
        logger.debug(
            "Poll on fd %d interrupted (attempt %d): %s; retrying with remaining budget",
            self.descriptor,
            retry_state.attempt_number,
            exc,
        )


__all__ = [
    "Diagnostic",
    "Event",
    "PollResult",
    "PollStatus",
    "Poller",
    "TRANSIENT_ERRORS",
    "is_transient",
]
