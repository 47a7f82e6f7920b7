"""Buffered asyncio transfer engine.

Bytes pushed by a stream watcher accumulate in an internal buffer; read
requests are satisfied strictly in submission order as the buffer grows.
Every mutation (request submission, byte arrival, timer expiry, stream
failure, invalidation) runs on the engine's event loop, which is the single
serialization point. Completion handlers never run inside that step: they
are dispatched to a caller supplied executor or, by default, as a separate
loop callback.

Ordering rules:

* A request at the head of the queue that cannot be satisfied blocks every
  request behind it (head-of-line blocking), drains included.
* A request's own timer may remove it from anywhere in the queue.
* The first stream failure (or :meth:`AsyncIO.invalidate`) is terminal: all
  queued requests fail in order with that reason and so does every later one.
"""

from __future__ import annotations

import asyncio
import functools
import itertools
import logging
from collections.abc import Callable
from concurrent.futures import Executor
from typing import TYPE_CHECKING, Any, cast

import msgspec

from ..const import TAG_READ, TAG_WRITE
from ..errors import SerialClosed, SerialDiagnostic, SerialException, SerialTimeout, classify_os_error
from ..util import coerce_delimiter, log_hexdump
from .clock import Timeout
from .stream import WriteChannel

if TYPE_CHECKING:
    from ..metrics import TransferStats

logger = logging.getLogger("ttyio")

BytesLike = bytes | bytearray | memoryview
TimeoutLike = Timeout | float | None


class Outcome(msgspec.Struct, frozen=True):
    """Result handed to a completion: either ``value`` or ``error``."""

    value: Any = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> Any:
        """Return ``value`` or raise ``error``.

        One error instance is shared by every request a terminal failure
        drains, so each raise starts from an empty traceback.
        """
        if self.error is not None:
            raise self.error.with_traceback(None)
        return self.value


Completion = Callable[[Outcome], None]


class Count(msgspec.Struct, frozen=True):
    count: int


class Delimiter(msgspec.Struct, frozen=True):
    byte: int
    include_delimiter: bool = False


class Drain(msgspec.Struct, frozen=True):
    pass


RequestKind = Count | Delimiter | Drain


class PendingRequest(msgspec.Struct):
    """Book-keeping for a queued read."""

    ident: int
    kind: RequestKind
    completion: Completion
    timer: asyncio.TimerHandle | None = None


class PendingWrite(msgspec.Struct):
    """Book-keeping for a write handed to the channel but not yet flushed."""

    ident: int
    size: int
    end: int
    completion: Completion
    timer: asyncio.TimerHandle | None = None


class _FutureCompletion:
    """Completion that settles an asyncio future on the caller's loop."""

    def __init__(self, future: asyncio.Future[Any]) -> None:
        self.future = future

    def __call__(self, outcome: Outcome) -> None:
        loop = self.future.get_loop()
        if loop.is_closed():
            return
        loop.call_soon_threadsafe(self._settle, outcome)

    def _settle(self, outcome: Outcome) -> None:
        if self.future.done():
            return
        if outcome.error is not None:
            self.future.set_exception(outcome.error)
        else:
            self.future.set_result(outcome.value)


class _ForwardingProtocol(asyncio.Protocol):
    """Delivers every stream event to the prior observer, then to the engine."""

    def __init__(self, previous: asyncio.BaseProtocol, engine: AsyncIO) -> None:
        self.previous = previous
        self.engine: AsyncIO | None = engine

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.previous.connection_made(transport)

    def data_received(self, data: bytes) -> None:
        try:
            cast(asyncio.Protocol, self.previous).data_received(data)
        finally:
            if self.engine is not None:
                self.engine.feed_data(data)

    def eof_received(self) -> bool | None:
        try:
            return cast(asyncio.Protocol, self.previous).eof_received()
        finally:
            if self.engine is not None:
                self.engine.feed_failure(None)

    def connection_lost(self, exc: Exception | None) -> None:
        try:
            self.previous.connection_lost(exc)
        finally:
            if self.engine is not None:
                self.engine.feed_failure(exc)

    def pause_writing(self) -> None:
        self.previous.pause_writing()

    def resume_writing(self) -> None:
        self.previous.resume_writing()


def _timer_delay(timeout: TimeoutLike) -> float | None:
    return Timeout.coerce(timeout).as_seconds()


class AsyncIO:
    """Asynchronous buffered engine bound to one event loop.

    Every public method is safe to call from any thread. Called with a
    ``completion`` the methods return ``None`` and the completion later
    receives an :class:`Outcome`; called without one they must run inside
    an event loop and return a future on that loop. Cancelling the future
    withdraws the request.

    With a multi-worker ``callback_executor`` completions may run
    concurrently; batches produced by a terminal failure still run in queue
    order inside a single task.
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop | None = None,
        *,
        writer: WriteChannel | None = None,
        callback_executor: Executor | None = None,
        stats: TransferStats | None = None,
        hexdump: bool = False,
    ) -> None:
        self._loop = loop or asyncio.get_running_loop()
        self._executor = callback_executor
        self._stats = stats
        self._hexdump = hexdump
        self._ids = itertools.count(1)

        self._buffer = bytearray()
        self._pending: dict[int, PendingRequest] = {}
        self._order: list[int] = []
        self._terminal: SerialException | None = None

        self._feed: asyncio.ReadTransport | None = None
        self._forwarder: _ForwardingProtocol | None = None

        self._writer = writer
        self._writes: dict[int, PendingWrite] = {}
        self._submitted = 0
        if writer is not None:
            writer.protocol.subscribe(self)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._loop

    @property
    def terminal(self) -> SerialException | None:
        return self._terminal

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    @property
    def pending_count(self) -> int:
        return len(self._order)

    @property
    def pending_writes(self) -> int:
        return len(self._writes)

    # ------------------------------------------------------------------
    # Feed
    # ------------------------------------------------------------------

    def attach(self, transport: asyncio.ReadTransport) -> None:
        """Wrap the transport's current protocol so this engine sees its events too."""
        if self._feed is not None:
            raise RuntimeError("AsyncIO is already attached to a stream")
        previous = transport.get_protocol()
        forwarder = _ForwardingProtocol(previous, self)
        transport.set_protocol(forwarder)
        self._feed = transport
        self._forwarder = forwarder
        logger.debug("AsyncIO attached to stream, forwarding to %s", type(previous).__name__)
        if transport.is_closing():
            self.feed_failure(None)

    def feed_data(self, data: BytesLike) -> None:
        """Push newly arrived bytes."""
        chunk = bytes(data)
        self._serialized(self._on_data, chunk)

    def feed_failure(self, exc: BaseException | None) -> None:
        """Push a stream failure; ``None`` means end of stream."""
        self._serialized(self._terminate, classify_os_error(exc, TAG_READ))

    def invalidate(self) -> None:
        """Fail everything outstanding with :class:`SerialClosed` and stop accepting requests."""
        self._serialized(self._terminate, SerialClosed("Serial reader invalidated"))

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def read_exact(
        self,
        count: int,
        timeout: TimeoutLike = None,
        completion: Completion | None = None,
    ) -> asyncio.Future[bytes] | None:
        if count < 0:
            raise ValueError("count must not be negative")
        return self._submit(Count(count=count), timeout, completion)

    def read_until(
        self,
        delimiter: int | bytes,
        include_delimiter: bool = False,
        timeout: TimeoutLike = None,
        completion: Completion | None = None,
    ) -> asyncio.Future[bytes] | None:
        kind = Delimiter(byte=coerce_delimiter(delimiter), include_delimiter=include_delimiter)
        return self._submit(kind, timeout, completion)

    def read_available(
        self,
        timeout: TimeoutLike = None,
        completion: Completion | None = None,
    ) -> asyncio.Future[bytes] | None:
        return self._submit(Drain(), timeout, completion)

    def write(
        self,
        data: BytesLike,
        timeout: TimeoutLike = None,
        completion: Completion | None = None,
    ) -> asyncio.Future[int] | None:
        """Queue ``data`` on the write channel; completes with the byte count once flushed."""
        if self._writer is None:
            raise RuntimeError("AsyncIO has no write channel")
        payload = bytes(data)
        ident = next(self._ids)
        future = None
        if completion is None:
            future, completion = self._awaitable(ident)
        self._serialized(self._submit_write, ident, payload, _timer_delay(timeout), completion)
        return future

    def _submit(
        self,
        kind: RequestKind,
        timeout: TimeoutLike,
        completion: Completion | None,
    ) -> asyncio.Future[Any] | None:
        ident = next(self._ids)
        future = None
        if completion is None:
            future, completion = self._awaitable(ident)
        self._serialized(self._submit_read, ident, kind, _timer_delay(timeout), completion)
        return future

    def _awaitable(self, ident: int) -> tuple[asyncio.Future[Any], Completion]:
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        future.add_done_callback(functools.partial(self._future_done, ident))
        return future, _FutureCompletion(future)

    def _future_done(self, ident: int, future: asyncio.Future[Any]) -> None:
        if future.cancelled():
            self._serialized(self._withdraw, ident)

    # ------------------------------------------------------------------
    # Serialization point (event loop thread only)
    # ------------------------------------------------------------------

    def _serialized(self, func: Callable[..., None], *args: Any) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is self._loop:
            func(*args)
        else:
            self._loop.call_soon_threadsafe(func, *args)

    def _submit_read(
        self,
        ident: int,
        kind: RequestKind,
        delay: float | None,
        completion: Completion,
    ) -> None:
        if isinstance(completion, _FutureCompletion) and completion.future.cancelled():
            return
        if self._terminal is not None:
            self._dispatch(completion, Outcome(error=self._terminal))
            return
        if isinstance(kind, Count) and kind.count == 0:
            self._dispatch(completion, Outcome(value=b""))
            return

        # The fast path may only run when nothing is queued ahead.
        if not self._order:
            data = self._take(kind)
            if data is not None:
                self._deliver(completion, data)
                return

        request = PendingRequest(ident=ident, kind=kind, completion=completion)
        if delay is not None:
            request.timer = self._loop.call_later(delay, self._expire, ident)
        self._pending[ident] = request
        self._order.append(ident)

        if isinstance(kind, Drain):
            self._satisfy()

    def _on_data(self, data: bytes) -> None:
        if self._terminal is not None or not data:
            return
        if self._hexdump:
            log_hexdump(logger, logging.DEBUG, "RX", data)
        self._buffer += data
        self._satisfy()

    def _satisfy(self) -> None:
        """Complete requests from the front of the queue until one cannot be met."""
        while self._order:
            request = self._pending[self._order[0]]
            data = self._take(request.kind)
            if data is None:
                break
            self._remove(request.ident)
            self._deliver(request.completion, data)

    def _take(self, kind: RequestKind) -> bytes | None:
        buffer = self._buffer
        match kind:
            case Count(count=count):
                if len(buffer) < count:
                    return None
                data = bytes(buffer[:count])
                del buffer[:count]
                return data
            case Delimiter(byte=byte, include_delimiter=include):
                index = buffer.find(byte)
                if index < 0:
                    return None
                data = bytes(buffer[: index + 1 if include else index])
                del buffer[: index + 1]
                return data
            case _:
                data = bytes(buffer)
                buffer.clear()
                return data

    def _remove(self, ident: int) -> PendingRequest | None:
        request = self._pending.pop(ident, None)
        if request is None:
            return None
        self._order.remove(ident)
        if request.timer is not None:
            request.timer.cancel()
        return request

    def _expire(self, ident: int) -> None:
        request = self._remove(ident)
        if request is None:
            return
        if self._stats is not None:
            self._stats.record_timeout()
        logger.debug("Read request %d timed out", ident)
        self._dispatch(request.completion, Outcome(error=SerialTimeout()))
        # Requests behind it may already be satisfiable from the buffer.
        self._satisfy()

    def _withdraw(self, ident: int) -> None:
        if self._remove(ident) is not None:
            self._satisfy()
            return
        write = self._writes.pop(ident, None)
        if write is not None and write.timer is not None:
            write.timer.cancel()

    def _terminate(self, reason: SerialException) -> None:
        if self._terminal is not None:
            return
        self._terminal = reason
        if self._stats is not None:
            if isinstance(reason, SerialDiagnostic):
                self._stats.record_diagnostic()
            else:
                self._stats.record_closed()
        logger.info("AsyncIO entering terminal state: %s", reason)

        requests = [self._pending[ident] for ident in self._order]
        writes = list(self._writes.values())
        # No timer may fire once the failure has been reported.
        for pending in (*requests, *writes):
            if pending.timer is not None:
                pending.timer.cancel()
        self._pending.clear()
        self._order.clear()
        self._writes.clear()

        self._restore_observer()
        if self._writer is not None:
            self._writer.protocol.unsubscribe(self)

        failed = Outcome(error=reason)
        batch = [(pending.completion, failed) for pending in (*requests, *writes)]
        if batch:
            self._dispatch_batch(batch)

    def _restore_observer(self) -> None:
        transport, forwarder = self._feed, self._forwarder
        if transport is None or forwarder is None:
            return
        forwarder.engine = None
        if transport.get_protocol() is forwarder:
            transport.set_protocol(forwarder.previous)

    # ------------------------------------------------------------------
    # Writes (event loop thread only)
    # ------------------------------------------------------------------

    def _submit_write(
        self,
        ident: int,
        payload: bytes,
        delay: float | None,
        completion: Completion,
    ) -> None:
        if isinstance(completion, _FutureCompletion) and completion.future.cancelled():
            return
        if self._terminal is not None:
            self._dispatch(completion, Outcome(error=self._terminal))
            return
        if not payload:
            self._dispatch(completion, Outcome(value=0))
            return

        writer = cast(WriteChannel, self._writer)
        try:
            writer.write(payload)
        except SerialException as exc:
            logger.warning("Serial write rejected: %s", exc)
            self._dispatch(completion, Outcome(error=exc))
            return
        if self._hexdump:
            log_hexdump(logger, logging.DEBUG, "TX", payload)

        self._submitted += len(payload)
        pending = PendingWrite(ident=ident, size=len(payload), end=self._submitted, completion=completion)
        if delay is not None:
            pending.timer = self._loop.call_later(delay, self._expire_write, ident)
        self._writes[ident] = pending
        self._settle_writes()

    def _settle_writes(self) -> None:
        writer = self._writer
        if writer is None or writer.is_closing():
            # write_lost() reports the failure.
            return
        flushed = self._submitted - writer.buffered()
        for ident, pending in list(self._writes.items()):
            if pending.end > flushed:
                break
            del self._writes[ident]
            if pending.timer is not None:
                pending.timer.cancel()
            if self._stats is not None:
                self._stats.record_tx(pending.size)
            self._dispatch(pending.completion, Outcome(value=pending.size))

    def _expire_write(self, ident: int) -> None:
        pending = self._writes.pop(ident, None)
        if pending is None:
            return
        if self._stats is not None:
            self._stats.record_timeout()
        logger.debug("Write request %d timed out", ident)
        self._dispatch(pending.completion, Outcome(error=SerialTimeout("Serial write timed out")))

    def write_flushed(self) -> None:
        self._settle_writes()

    def write_lost(self, exc: Exception | None) -> None:
        failure = classify_os_error(exc, TAG_WRITE)
        writes = list(self._writes.values())
        self._writes.clear()
        for pending in writes:
            if pending.timer is not None:
                pending.timer.cancel()
        if writes:
            self._dispatch_batch([(pending.completion, Outcome(error=failure)) for pending in writes])

    # ------------------------------------------------------------------
    # Completion dispatch
    # ------------------------------------------------------------------

    def _deliver(self, completion: Completion, data: bytes) -> None:
        if self._stats is not None:
            self._stats.record_rx(len(data))
        self._dispatch(completion, Outcome(value=data))

    def _dispatch(self, completion: Completion, outcome: Outcome) -> None:
        if self._executor is not None:
            self._executor.submit(_run_completion, completion, outcome)
        else:
            self._loop.call_soon(_run_completion, completion, outcome)

    def _dispatch_batch(self, batch: list[tuple[Completion, Outcome]]) -> None:
        if self._executor is not None:
            self._executor.submit(_run_batch, batch)
        else:
            self._loop.call_soon(_run_batch, batch)


def _run_completion(completion: Completion, outcome: Outcome) -> None:
    try:
        completion(outcome)
    except Exception:
        logger.exception("Serial completion handler raised")


def _run_batch(batch: list[tuple[Completion, Outcome]]) -> None:
    for completion, outcome in batch:
        _run_completion(completion, outcome)


__all__ = [
    "AsyncIO",
    "Completion",
    "Count",
    "Delimiter",
    "Drain",
    "Outcome",
    "PendingRequest",
    "PendingWrite",
]
