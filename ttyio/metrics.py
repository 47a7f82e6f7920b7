"""Transfer counters and their Prometheus projection."""

from __future__ import annotations

import re
import time
from collections.abc import Iterator
from typing import Any

import msgspec
from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector

_GAUGE_DOC = "ttyio transfer counter"
_SANITIZE_RE = re.compile(r"[^a-zA-Z0-9_]")


class TransferStats(msgspec.Struct):
    """Byte and outcome counters shared by the transfer engines.

    Simple counters with monotonic increments only.
    """

    bytes_sent: int = 0
    bytes_received: int = 0
    reads_completed: int = 0
    writes_completed: int = 0
    timeouts: int = 0
    closed: int = 0
    diagnostics: int = 0
    poll_retries: int = 0
    last_tx_unix: float = 0.0
    last_rx_unix: float = 0.0

    def record_tx(self, nbytes: int) -> None:
        self.bytes_sent += nbytes
        self.writes_completed += 1
        self.last_tx_unix = time.time()

    def record_rx(self, nbytes: int) -> None:
        self.bytes_received += nbytes
        self.reads_completed += 1
        self.last_rx_unix = time.time()

    def record_timeout(self) -> None:
        self.timeouts += 1

    def record_closed(self) -> None:
        self.closed += 1

    def record_diagnostic(self) -> None:
        self.diagnostics += 1

    def record_poll_retry(self) -> None:
        self.poll_retries += 1

    def as_dict(self) -> dict[str, Any]:
        return msgspec.structs.asdict(self)


class TransferStatsCollector(Collector):
    """Prometheus collector that projects a TransferStats snapshot as gauges."""

    def __init__(self, stats: TransferStats, prefix: str = "ttyio") -> None:
        self._stats = stats
        self._prefix = prefix

    def collect(self) -> Iterator[Any]:
        for key, value in self._stats.as_dict().items():
            if isinstance(value, bool):
                value = 1.0 if value else 0.0
            if not isinstance(value, (int, float)):
                continue
            metric = GaugeMetricFamily(
                _sanitize_metric_name(f"{self._prefix}_{key}"),
                _GAUGE_DOC,
            )
            metric.add_metric((), float(value))
            yield metric


def register_stats(
    stats: TransferStats,
    registry: CollectorRegistry | None = None,
) -> CollectorRegistry:
    """Attach a collector for ``stats`` to ``registry`` (a fresh one by default)."""
    target = registry if registry is not None else CollectorRegistry()
    target.register(TransferStatsCollector(stats))
    return target


def render_metrics(registry: CollectorRegistry) -> bytes:
    return generate_latest(registry)


def _sanitize_metric_name(name: str) -> str:
    cleaned = _SANITIZE_RE.sub("_", name.lower())
    cleaned = cleaned.strip("_") or "ttyio_metric"
    if cleaned[0].isdigit():
        cleaned = f"_{cleaned}"
    return cleaned


__all__ = [
    "TransferStats",
    "TransferStatsCollector",
    "register_stats",
    "render_metrics",
]
