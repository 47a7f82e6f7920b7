"""Timeout-bounded byte transfer over raw serial descriptors."""

from __future__ import annotations

from .errors import SerialClosed, SerialDiagnostic, SerialException, SerialTimeout
from .port import SerialPort
from .transport.async_io import AsyncIO, Outcome
from .transport.clock import Timeout, TimeoutClock
from .transport.polling import Diagnostic, Event, Poller, PollStatus
from .transport.sync_io import SyncIO

__version__ = "1.0.0"

__all__ = [
    "AsyncIO",
    "Diagnostic",
    "Event",
    "Outcome",
    "PollStatus",
    "Poller",
    "SerialClosed",
    "SerialDiagnostic",
    "SerialException",
    "SerialPort",
    "SerialTimeout",
    "SyncIO",
    "Timeout",
    "TimeoutClock",
    "__version__",
]
