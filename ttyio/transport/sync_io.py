"""Blocking, deadline-bounded reads and writes on the calling thread.

Every operation shares a single budget across its internal iterations: the
budget is shrunk by the time spent so far before each readiness wait, so a
call never overruns its deadline by more than one syscall.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from typing import TYPE_CHECKING

from ..const import DEFAULT_READ_CHUNK_SIZE, TAG_READ, TAG_WRITE
from ..errors import (
    SerialClosed,
    SerialDiagnostic,
    SerialException,
    SerialTimeout,
    classify_os_error,
)
from ..util import coerce_delimiter, log_hexdump
from .clock import Timeout, TimeoutClock
from .polling import Diagnostic, Event, Poller, PollResult, PollStatus, is_transient

if TYPE_CHECKING:
    from ..metrics import TransferStats

logger = logging.getLogger("ttyio")

BytesLike = bytes | bytearray | memoryview


class SyncIO:
    """Synchronous transfer engine for one already-open descriptor.

    Not internally synchronized: callers sharing a descriptor across threads
    must serialize their own access.
    """

    def __init__(
        self,
        descriptor: int,
        *,
        poller: Poller | None = None,
        read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE,
        stats: TransferStats | None = None,
        hexdump: bool = False,
        clock_factory: Callable[[], TimeoutClock] = TimeoutClock,
    ) -> None:
        if read_chunk_size <= 0:
            raise ValueError("read_chunk_size must be positive")
        self.descriptor = descriptor
        self.read_chunk_size = read_chunk_size
        self._stats = stats
        self._hexdump = hexdump
        self._clock_factory = clock_factory
        self._poller = poller or Poller(descriptor, clock_factory=clock_factory, stats=stats)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read_exact(self, count: int, timeout: Timeout | float | None = None) -> bytes:
        """Return exactly ``count`` bytes or raise once the deadline passes."""
        if count < 0:
            raise ValueError("count must not be negative")
        if count == 0:
            return b""

        budget = Timeout.coerce(timeout)
        clock = self._clock_factory()
        collected = bytearray()
        while len(collected) < count:
            budget = budget.decrement(clock.elapsed())
            self._wait(Event.READ, budget, collected)
            chunk = self._read_once(count - len(collected), collected)
            if chunk is None:
                budget = self._charge_retry(budget, clock, collected)
                continue
            collected += chunk
        return self._delivered(collected)

    def read_available(
        self,
        timeout: Timeout | float | None = None,
        chunk_size: int | None = None,
    ) -> bytes:
        """Wait for the first byte, then drain whatever else is immediately readable."""
        size = self.read_chunk_size if chunk_size is None else chunk_size
        if size <= 0:
            raise ValueError("chunk_size must be positive")

        budget = Timeout.coerce(timeout)
        clock = self._clock_factory()
        collected = bytearray()
        should_wait = True
        while True:
            if should_wait:
                budget = budget.decrement(clock.elapsed())
                self._wait(Event.READ, budget, collected)
            else:
                status = self._poller.immediate(Event.READ)
                if status is PollStatus.IDLE:
                    break
                self._check(status, collected)

            chunk = self._read_once(size, collected)
            if chunk is None:
                if not collected:
                    budget = self._charge_retry(budget, clock, collected)
                    continue
                budget = budget.decrement(clock.elapsed())
                if budget.is_zero:
                    break
                continue
            collected += chunk
            should_wait = False
        return self._delivered(collected)

    def read_until(
        self,
        delimiter: int | bytes,
        include_delimiter: bool = False,
        timeout: Timeout | float | None = None,
    ) -> bytes:
        """Read one byte at a time until ``delimiter`` is seen."""
        marker = coerce_delimiter(delimiter)
        budget = Timeout.coerce(timeout)
        clock = self._clock_factory()
        collected = bytearray()
        while True:
            budget = budget.decrement(clock.elapsed())
            self._wait(Event.READ, budget, collected)
            chunk = self._read_once(1, collected)
            if chunk is None:
                budget = self._charge_retry(budget, clock, collected)
                continue
            if chunk[0] == marker:
                if include_delimiter:
                    collected += chunk
                return self._delivered(collected)
            collected += chunk

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def write(self, data: BytesLike, timeout: Timeout | float | None = None) -> int:
        """Write all of ``data``, tolerating partial writes. Returns the byte count."""
        payload = bytes(data)
        if not payload:
            return 0

        budget = Timeout.coerce(timeout)
        clock = self._clock_factory()
        offset = 0
        while offset < len(payload):
            budget = budget.decrement(clock.elapsed())
            self._wait(Event.WRITE, budget, payload[:offset])
            try:
                written = os.write(self.descriptor, payload[offset:])
            except OSError as exc:
                if is_transient(exc):
                    budget = self._charge_retry(budget, clock, payload[:offset])
                    continue
                raise self._fail(classify_os_error(exc, TAG_WRITE), payload[:offset]) from exc
            if written == 0:
                raise self._fail(SerialClosed("Serial write accepted no bytes"), payload[:offset])
            offset += written

        if self._stats is not None:
            self._stats.record_tx(offset)
        if self._hexdump:
            log_hexdump(logger, logging.DEBUG, "TX", payload)
        return offset

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _wait(self, event: Event, budget: Timeout, partial: BytesLike) -> None:
        self._check(self._poller.wait_for(event, budget), partial)

    def _check(self, result: PollResult, partial: BytesLike) -> None:
        if result is PollStatus.READY:
            return
        if result is PollStatus.TIMEOUT:
            raise self._fail(SerialTimeout(partial=bytes(partial)), partial)
        if isinstance(result, Diagnostic):
            raise self._fail(SerialDiagnostic(result.tag, result.code), partial)
        raise self._fail(SerialClosed(), partial)

    def _charge_retry(self, budget: Timeout, clock: TimeoutClock, partial: BytesLike) -> Timeout:
        """Charge a retried syscall to the budget; an exhausted budget times out."""
        budget = budget.decrement(clock.elapsed())
        if budget.is_zero:
            raise self._fail(SerialTimeout(partial=bytes(partial)), partial)
        return budget

    def _read_once(self, size: int, partial: BytesLike) -> bytes | None:
        """One raw read; ``None`` means a transient failure worth retrying."""
        try:
            chunk = os.read(self.descriptor, size)
        except OSError as exc:
            if is_transient(exc):
                return None
            raise self._fail(classify_os_error(exc, TAG_READ), partial) from exc
        if not chunk:
            raise self._fail(SerialClosed("Serial read reached end of stream"), partial)
        return chunk

    def _delivered(self, collected: bytearray) -> bytes:
        data = bytes(collected)
        if self._stats is not None:
            self._stats.record_rx(len(data))
        if self._hexdump:
            log_hexdump(logger, logging.DEBUG, "RX", data)
        return data

    def _fail(self, exc: SerialException, partial: BytesLike) -> SerialException:
        exc.partial = bytes(partial)
        if isinstance(exc, SerialTimeout):
            if self._stats is not None:
                self._stats.record_timeout()
            logger.debug("Serial operation on fd %d timed out", self.descriptor)
        elif isinstance(exc, SerialClosed):
            if self._stats is not None:
                self._stats.record_closed()
            logger.info("Serial descriptor %d closed: %s", self.descriptor, exc)
        else:
            if self._stats is not None:
                self._stats.record_diagnostic()
            logger.warning("Serial I/O on fd %d failed: %s", self.descriptor, exc)
        return exc


__all__ = ["SyncIO"]
