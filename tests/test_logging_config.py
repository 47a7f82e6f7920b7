"""Tests for the logging configuration."""

from __future__ import annotations

import errno
import json
import logging
from unittest.mock import patch

from ttyio.config import logging as log_mod
from ttyio.config.settings import TransferConfig
from ttyio.errors import SerialDiagnostic


def _record(name: str = "ttyio.transport", msg: str = "hello") -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=(),
        exc_info=None,
    )


def test_formatter_trims_prefix_and_hexes_bytes() -> None:
    record = _record()
    record.payload = b"\x7e\x00\xff"  # type: ignore[attr-defined]
    record.buffer = bytearray(b"AT")  # type: ignore[attr-defined]
    record.custom_obj = object()  # type: ignore[attr-defined]

    payload = json.loads(log_mod.StructuredLogFormatter().format(record))

    assert payload["logger"] == "transport"
    assert payload["level"] == "INFO"
    assert payload["message"] == "hello"
    assert payload["ts"].endswith("Z")
    assert payload["extra"]["payload"] == "[7E 00 FF]"
    assert payload["extra"]["buffer"] == "[41 54]"
    assert str(record.custom_obj) in payload["extra"]["custom_obj"]


def test_formatter_renders_serial_errors_with_errno() -> None:
    record = _record(name="other")
    record.reason = SerialDiagnostic("read", errno.EINVAL)  # type: ignore[attr-defined]

    payload = json.loads(log_mod.StructuredLogFormatter().format(record))

    assert payload["logger"] == "other"
    assert payload["extra"]["reason"].startswith(f"SerialDiagnostic(errno={errno.EINVAL})")


def test_formatter_includes_exception() -> None:
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        import sys

        record = _record()
        record.exc_info = sys.exc_info()

    payload = json.loads(log_mod.StructuredLogFormatter().format(record))
    assert "RuntimeError: boom" in payload["exception"]
    assert "extra" not in payload


def test_hexdump_lowers_package_level_only() -> None:
    schema = log_mod.build_logging_config(TransferConfig(hexdump_io=True))
    assert schema["root"]["level"] == "INFO"
    assert schema["loggers"]["ttyio"]["level"] == "DEBUG"
    assert schema["handlers"]["ttyio"]["level"] == "DEBUG"

    schema = log_mod.build_logging_config(TransferConfig(debug_logging=True))
    assert schema["root"]["level"] == "DEBUG"

    schema = log_mod.build_logging_config(TransferConfig())
    assert schema["loggers"]["ttyio"]["level"] == "INFO"


def test_configure_logging_syslog(tmp_path, monkeypatch) -> None:
    fake_socket = tmp_path / "log"
    fake_socket.touch()
    monkeypatch.delenv("TTYIO_LOG_STREAM", raising=False)

    with patch("ttyio.config.logging.SYSLOG_SOCKET", fake_socket):
        assert log_mod._syslog_socket() == fake_socket
        with patch("ttyio.config.logging.dictConfig") as mock_dict_config:
            log_mod.configure_logging(TransferConfig())
            mock_dict_config.assert_called_once()
            config_arg = mock_dict_config.call_args[0][0]
            assert "ttyio" in config_arg["handlers"]


def test_stream_handler_forced_by_environment(monkeypatch) -> None:
    monkeypatch.setenv("TTYIO_LOG_STREAM", "1")
    handler = log_mod._build_handler()
    try:
        assert type(handler) is logging.StreamHandler
    finally:
        handler.close()


def test_configure_logging_installs_structured_handler(monkeypatch) -> None:
    monkeypatch.setenv("TTYIO_LOG_STREAM", "1")
    log_mod.configure_logging(TransferConfig(debug_logging=True))

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(isinstance(h.formatter, log_mod.StructuredLogFormatter) for h in root.handlers)
