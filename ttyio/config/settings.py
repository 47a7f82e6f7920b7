"""Settings for the transfer engines.

Configuration comes either from a plain mapping (for embedding callers) or
from a TOML file with a ``[ttyio]`` table. Unknown keys are ignored.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import msgspec
import msgspec.toml

from ..const import (
    DEFAULT_CALLBACK_WORKERS,
    DEFAULT_DEBUG_LOGGING,
    DEFAULT_HEXDUMP_IO,
    DEFAULT_METRICS_ENABLED,
    DEFAULT_READ_CHUNK_SIZE,
    MAX_READ_CHUNK_SIZE,
)

logger = logging.getLogger(__name__)

CONFIG_SECTION = "ttyio"


class TransferConfig(msgspec.Struct, kw_only=True):
    """Strongly typed configuration for the transfer engines."""

    read_chunk_size: int = DEFAULT_READ_CHUNK_SIZE
    debug_logging: bool = DEFAULT_DEBUG_LOGGING
    hexdump_io: bool = DEFAULT_HEXDUMP_IO
    callback_workers: int = DEFAULT_CALLBACK_WORKERS
    metrics_enabled: bool = DEFAULT_METRICS_ENABLED

    def __post_init__(self) -> None:
        if not 1 <= self.read_chunk_size <= MAX_READ_CHUNK_SIZE:
            raise ValueError(f"read_chunk_size must be between 1 and {MAX_READ_CHUNK_SIZE}")
        if self.callback_workers < 0:
            raise ValueError("callback_workers must be zero or positive")

    def as_dict(self) -> dict[str, Any]:
        return msgspec.structs.asdict(self)


def load_config(raw: Mapping[str, Any] | None = None) -> TransferConfig:
    """Build a config from a mapping, coercing string values ("1", "true", ...)."""
    if not raw:
        return TransferConfig()
    config = msgspec.convert(dict(raw), type=TransferConfig, strict=False)
    logger.debug("Transfer configuration loaded: %s", config.as_dict())
    return config


def load_config_file(path: str | Path) -> TransferConfig:
    """Load the ``[ttyio]`` table from a TOML file; a missing table gives defaults."""
    document = msgspec.toml.decode(Path(path).read_bytes())
    if not isinstance(document, dict):
        raise ValueError(f"{path}: expected a TOML table")
    section = document.get(CONFIG_SECTION, {})
    if not isinstance(section, dict):
        raise ValueError(f"{path}: [{CONFIG_SECTION}] must be a table")
    return load_config(section)


__all__ = ["CONFIG_SECTION", "TransferConfig", "load_config", "load_config_file"]
