"""Logging helpers for ttyio.

Records are emitted as one JSON object per line. Traffic hexdumps are logged
at DEBUG on the ``ttyio`` logger, so enabling ``hexdump_io`` lowers that
logger (and its handler) to DEBUG even when the rest of the process stays at
INFO.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from logging import Handler
from logging.config import dictConfig
from logging.handlers import SysLogHandler
from pathlib import Path
from typing import Any

import msgspec

from ..const import LOG_STREAM_ENV
from .settings import TransferConfig

SYSLOG_SOCKET = Path("/dev/log")
SYSLOG_SOCKET_FALLBACK = Path("/var/run/log")
SYSLOG_IDENT = "ttyio "

# Attributes every LogRecord carries; anything else was passed via ``extra``.
_RESERVED_LOG_KEYS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def _serialise_value(value: Any) -> Any:
    """Serialise values for JSON logs with strict type handling."""
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        # Never decode serial traffic as text: [DE AD BE EF].
        return f"[{bytes(value).hex(' ').upper()}]"
    if isinstance(value, OSError) and value.errno is not None:
        return f"{type(value).__name__}(errno={value.errno}): {value.strerror or value}"
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Emit JSON per log line while trimming the package prefix."""

    PREFIX = "ttyio."

    def format(self, record: logging.LogRecord) -> str:
        logger_name = record.name.removeprefix(self.PREFIX)

        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": logger_name,
            "message": record.getMessage(),
        }

        extras = {
            key: _serialise_value(value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_LOG_KEYS and not key.startswith("_")
        }
        if extras:
            payload["extra"] = extras

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return msgspec.json.encode(payload).decode("utf-8")


def _syslog_socket() -> Path | None:
    candidates = [SYSLOG_SOCKET]
    if SYSLOG_SOCKET != SYSLOG_SOCKET_FALLBACK:
        candidates.append(SYSLOG_SOCKET_FALLBACK)
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _build_handler() -> Handler:
    """Stream handler when forced by the environment or without syslog."""
    if os.environ.get(LOG_STREAM_ENV):
        return logging.StreamHandler()

    socket_path = _syslog_socket()
    if socket_path is None:
        return logging.StreamHandler()

    syslog_handler = SysLogHandler(
        address=str(socket_path),
        facility=SysLogHandler.LOG_DAEMON,
    )
    syslog_handler.ident = SYSLOG_IDENT
    return syslog_handler


def build_logging_config(config: TransferConfig) -> dict[str, Any]:
    """Return the dictConfig schema for ``config``."""
    root_level = "DEBUG" if config.debug_logging else "INFO"
    package_level = "DEBUG" if (config.debug_logging or config.hexdump_io) else root_level

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": "ttyio.config.logging.StructuredLogFormatter",
            }
        },
        "handlers": {
            "ttyio": {
                "()": _build_handler,
                "level": package_level,
                "formatter": "structured",
            }
        },
        "loggers": {
            "ttyio": {"level": package_level},
        },
        "root": {
            "level": root_level,
            "handlers": ["ttyio"],
        },
    }


def configure_logging(config: TransferConfig) -> None:
    """Configure root logging based on transfer settings."""
    schema = build_logging_config(config)
    dictConfig(schema)
    logging.getLogger("ttyio").info(
        "Logging configured at level %s (hexdump=%s)",
        schema["root"]["level"],
        config.hexdump_io,
    )


__all__ = [
    "StructuredLogFormatter",
    "build_logging_config",
    "configure_logging",
]
