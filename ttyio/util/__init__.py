"""General-purpose utilities for ttyio."""

from __future__ import annotations

import logging

__all__ = [
    "coerce_delimiter",
    "log_hexdump",
]


def log_hexdump(logger_instance: logging.Logger, level: int, label: str, data: bytes) -> None:
    """Log binary data in hexadecimal format using syslog-friendly output.

    Format: [HEXDUMP] %s: %s
    """
    if not logger_instance.isEnabledFor(level):
        return

    hex_str = bytes(data).hex(" ").upper()
    logger_instance.log(level, "[HEXDUMP] %s: %s", label, hex_str)


def coerce_delimiter(delimiter: int | bytes | bytearray) -> int:
    """Return the delimiter as a single byte value."""
    if isinstance(delimiter, (bytes, bytearray)):
        if len(delimiter) != 1:
            raise ValueError("delimiter must be exactly one byte")
        return delimiter[0]
    if isinstance(delimiter, bool) or not isinstance(delimiter, int):
        raise TypeError(f"delimiter must be int or bytes, not {type(delimiter).__name__}")
    if not 0 <= delimiter <= 0xFF:
        raise ValueError("delimiter must be in range 0-255")
    return delimiter
