"""Shared constants for ttyio."""

from __future__ import annotations

from typing import Final

DEFAULT_READ_CHUNK_SIZE: Final[int] = 1024
MAX_READ_CHUNK_SIZE: Final[int] = 65536
DEFAULT_CALLBACK_WORKERS: Final[int] = 0
DEFAULT_DEBUG_LOGGING: Final[bool] = False
DEFAULT_HEXDUMP_IO: Final[bool] = False
DEFAULT_METRICS_ENABLED: Final[bool] = False

# poll(2) takes a signed 32-bit millisecond timeout.
POLL_TIMEOUT_MAX_MS: Final[int] = 2**31 - 1
POLL_TIMEOUT_INDEFINITE: Final[int] = -1

TAG_READ: Final[str] = "read"
TAG_WRITE: Final[str] = "write"

LOG_STREAM_ENV: Final[str] = "TTYIO_LOG_STREAM"

__all__ = [
    "DEFAULT_READ_CHUNK_SIZE",
    "MAX_READ_CHUNK_SIZE",
    "DEFAULT_CALLBACK_WORKERS",
    "DEFAULT_DEBUG_LOGGING",
    "DEFAULT_HEXDUMP_IO",
    "DEFAULT_METRICS_ENABLED",
    "POLL_TIMEOUT_MAX_MS",
    "POLL_TIMEOUT_INDEFINITE",
    "TAG_READ",
    "TAG_WRITE",
    "LOG_STREAM_ENV",
]
