"""Transfer engines and the primitives they share."""

from .async_io import AsyncIO, Outcome
from .clock import Timeout, TimeoutClock
from .polling import Diagnostic, Event, Poller, PollStatus
from .stream import WriteChannel, open_read_stream, open_write_channel
from .sync_io import SyncIO

__all__ = [
    "AsyncIO",
    "Diagnostic",
    "Event",
    "Outcome",
    "PollStatus",
    "Poller",
    "SyncIO",
    "Timeout",
    "TimeoutClock",
    "WriteChannel",
    "open_read_stream",
    "open_write_channel",
]
