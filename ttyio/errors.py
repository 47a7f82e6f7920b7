"""Error taxonomy surfaced by the transfer engines.

Every failure a caller can observe is one of three kinds:

* :class:`SerialTimeout` - the deadline elapsed before the request was met.
  Scoped to a single operation; the engine stays usable.
* :class:`SerialClosed` - end of stream, broken pipe, invalid descriptor or
  explicit invalidation.
* :class:`SerialDiagnostic` - any other OS failure, tagged with the
  operation that triggered it.
"""

from __future__ import annotations

import errno

# EIO is what a tty reports once its other end has hung up.
CLOSED_ERRNOS = frozenset({errno.EBADF, errno.EPIPE, errno.EIO})


class SerialException(OSError):
    """Exception raised on serial port errors."""

    # Bytes already consumed (or sent) before the failure was detected.
    partial: bytes = b""


class SerialTimeout(SerialException, TimeoutError):
    """Deadline elapsed before the request could be satisfied."""

    def __init__(self, message: str = "Serial operation timed out", partial: bytes = b"") -> None:
        super().__init__(errno.ETIMEDOUT, message)
        self.partial = partial


class SerialClosed(SerialException, ConnectionError):
    """The descriptor reached end of stream or can no longer be used."""

    def __init__(self, message: str = "Serial descriptor closed") -> None:
        super().__init__(message)


class SerialDiagnostic(SerialException):
    """Unclassified OS failure tagged with the operation that raised it."""

    def __init__(self, tag: str, code: int) -> None:
        super().__init__(code, f"Serial {tag} failed: {_describe(code)}")
        self.tag = tag
        self.code = code


def _describe(code: int) -> str:
    name = errno.errorcode.get(code)
    return f"{name} ({code})" if name else f"errno {code}"


def classify_os_error(exc: BaseException | None, tag: str) -> SerialException:
    """Map a raw failure onto :class:`SerialClosed` or :class:`SerialDiagnostic`."""
    if exc is None:
        return SerialClosed()
    if isinstance(exc, SerialException):
        return exc
    if isinstance(exc, (BrokenPipeError, ConnectionError)):
        return SerialClosed(str(exc) or "Serial descriptor closed")
    if isinstance(exc, OSError):
        if exc.errno in CLOSED_ERRNOS:
            return SerialClosed(str(exc))
        if exc.errno is not None:
            return SerialDiagnostic(tag, exc.errno)
    # Not an OS failure at all; keep the original as the cause.
    diagnostic = SerialDiagnostic(tag, 0)
    diagnostic.__cause__ = exc
    return diagnostic


__all__ = [
    "CLOSED_ERRNOS",
    "SerialException",
    "SerialTimeout",
    "SerialClosed",
    "SerialDiagnostic",
    "classify_os_error",
]
