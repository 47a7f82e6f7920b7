"""asyncio stream watchers for an already-open serial descriptor.

The read side is a plain ``connect_read_pipe`` transport whose protocol
receives byte-arrival and failure events. The write side is a
``connect_write_pipe`` transport with zero buffer limits, so the protocol
is told exactly when everything handed to it has reached the descriptor.
Neither side ever closes the descriptor itself.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol, cast

from ..errors import SerialClosed, SerialException

logger = logging.getLogger("ttyio")


class DescriptorFile:
    """Minimal non-owning file-like wrapper for a serial file descriptor."""

    def __init__(self, fd: int) -> None:
        self._fd: int | None = fd

    def fileno(self) -> int:
        if self._fd is None:
            raise SerialException("File detached")
        return self._fd

    def close(self) -> None:
        # The descriptor belongs to the caller; only forget it.
        self._fd = None


class WriteListener(Protocol):
    def write_flushed(self) -> None: ...

    def write_lost(self, exc: Exception | None) -> None: ...


class WriteChannelProtocol(asyncio.Protocol):
    """Write protocol that reports every full flush to its listeners."""

    def __init__(self) -> None:
        self.transport: asyncio.WriteTransport | None = None
        self._connection_lost = False
        self._listeners: list[WriteListener] = []

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = cast(asyncio.WriteTransport, transport)
        # resume_writing then means "buffer empty".
        self.transport.set_write_buffer_limits(high=0, low=0)

    def connection_lost(self, exc: Exception | None) -> None:
        self._connection_lost = True
        if exc is not None:
            logger.warning("Serial write channel lost: %s", exc)
        for listener in list(self._listeners):
            listener.write_lost(exc)

    def resume_writing(self) -> None:
        for listener in list(self._listeners):
            listener.write_flushed()

    @property
    def lost(self) -> bool:
        return self._connection_lost

    def subscribe(self, listener: WriteListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: WriteListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)


class WriteChannel:
    """Ordered byte sink on top of a write pipe transport."""

    def __init__(self, transport: asyncio.WriteTransport, protocol: WriteChannelProtocol) -> None:
        self.transport = transport
        self.protocol = protocol

    def is_closing(self) -> bool:
        return self.protocol.lost or self.transport.is_closing()

    def write(self, data: bytes) -> None:
        """Queue ``data``; raises :class:`SerialClosed` once the channel is closing."""
        if self.is_closing():
            raise SerialClosed("Write channel is closing")
        self.transport.write(data)

    def buffered(self) -> int:
        return self.transport.get_write_buffer_size()

    def close(self) -> None:
        if not self.transport.is_closing():
            self.transport.close()


class _ProtocolFactory:
    """Factory returning a prepared protocol instance."""

    def __init__(self, proto: asyncio.BaseProtocol) -> None:
        self._proto = proto

    def __call__(self) -> asyncio.BaseProtocol:
        return self._proto


async def open_read_stream(
    descriptor: int,
    protocol_factory: Callable[[], asyncio.BaseProtocol] | None = None,
    *,
    loop: asyncio.AbstractEventLoop | None = None,
) -> tuple[asyncio.ReadTransport, asyncio.BaseProtocol]:
    """Start watching ``descriptor`` for incoming bytes.

    Without a factory the transport starts with a bare :class:`asyncio.Protocol`
    observer; an :class:`~ttyio.transport.async_io.AsyncIO` attached later wraps it.
    """
    loop = loop or asyncio.get_running_loop()
    proto = protocol_factory() if protocol_factory is not None else asyncio.Protocol()
    transport, protocol = await loop.connect_read_pipe(
        _ProtocolFactory(proto), DescriptorFile(descriptor)
    )
    logger.debug("Read stream attached to fd %d", descriptor)
    return cast(asyncio.ReadTransport, transport), protocol


async def open_write_channel(
    descriptor: int,
    *,
    loop: asyncio.AbstractEventLoop | None = None,
) -> WriteChannel:
    """Wrap ``descriptor`` in an ordered, flush-reporting write channel."""
    loop = loop or asyncio.get_running_loop()
    protocol = WriteChannelProtocol()
    transport, _ = await loop.connect_write_pipe(
        _ProtocolFactory(protocol), DescriptorFile(descriptor)
    )
    logger.debug("Write channel attached to fd %d", descriptor)
    return WriteChannel(cast(asyncio.WriteTransport, transport), protocol)


__all__ = [
    "DescriptorFile",
    "WriteChannel",
    "WriteChannelProtocol",
    "WriteListener",
    "open_read_stream",
    "open_write_channel",
]
