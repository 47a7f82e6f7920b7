"""Facade tying both transfer engines to one already-open descriptor."""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import Executor, ThreadPoolExecutor

from prometheus_client import CollectorRegistry

from .config.settings import TransferConfig
from .metrics import TransferStats, register_stats
from .transport.async_io import AsyncIO
from .transport.stream import WriteChannel, open_read_stream, open_write_channel
from .transport.sync_io import SyncIO

logger = logging.getLogger(__name__)


class SerialPort:
    """Hand out transfer engines for a configured descriptor.

    Opening, closing and line configuration of the descriptor stay with the
    caller; :meth:`close_streams` only detaches the asyncio watchers.
    """

    def __init__(
        self,
        descriptor: int,
        config: TransferConfig | None = None,
        stats: TransferStats | None = None,
    ) -> None:
        self.descriptor = descriptor
        self.config = config or TransferConfig()
        self.stats = stats or TransferStats()
        self._sync_io: SyncIO | None = None
        self._read_transport: asyncio.ReadTransport | None = None
        self._writer: WriteChannel | None = None
        self._async_io: AsyncIO | None = None
        self._owned_executor: ThreadPoolExecutor | None = None
        self.metrics_registry: CollectorRegistry | None = None
        if self.config.metrics_enabled:
            self.metrics_registry = register_stats(self.stats)

    @property
    def sync_io(self) -> SyncIO:
        if self._sync_io is None:
            self._sync_io = SyncIO(
                self.descriptor,
                read_chunk_size=self.config.read_chunk_size,
                stats=self.stats,
                hexdump=self.config.hexdump_io,
            )
        return self._sync_io

    @property
    def async_io(self) -> AsyncIO | None:
        return self._async_io

    async def open_async_io(self, callback_executor: Executor | None = None) -> AsyncIO:
        """Start the stream watchers (once) and return an engine attached to them."""
        if self._async_io is not None and self._async_io.terminal is None:
            return self._async_io

        loop = asyncio.get_running_loop()
        if self._read_transport is None or self._read_transport.is_closing():
            self._read_transport, _ = await open_read_stream(self.descriptor, loop=loop)
        if self._writer is None or self._writer.is_closing():
            self._writer = await open_write_channel(self.descriptor, loop=loop)

        executor = callback_executor or self._default_executor()
        engine = AsyncIO(
            loop,
            writer=self._writer,
            callback_executor=executor,
            stats=self.stats,
            hexdump=self.config.hexdump_io,
        )
        engine.attach(self._read_transport)
        self._async_io = engine
        logger.info("Async transfer engine ready on fd %d", self.descriptor)
        return engine

    def close_streams(self) -> None:
        """Invalidate the async engine and stop watching the descriptor."""
        if self._async_io is not None:
            self._async_io.invalidate()
            self._async_io = None
        if self._read_transport is not None:
            self._read_transport.close()
            self._read_transport = None
        if self._writer is not None:
            self._writer.close()
            self._writer = None
        if self._owned_executor is not None:
            self._owned_executor.shutdown(wait=False)
            self._owned_executor = None

    def _default_executor(self) -> Executor | None:
        workers = self.config.callback_workers
        if workers <= 0:
            return None
        if self._owned_executor is None:
            self._owned_executor = ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="ttyio-completion"
            )
        return self._owned_executor
