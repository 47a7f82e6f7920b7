"""Pytest configuration for ttyio tests."""

from __future__ import annotations

import asyncio
import importlib.util
import inspect
import logging
import os
import pty
import tty
from collections.abc import Iterator

import pytest

from ttyio.config.settings import TransferConfig

_HAS_PYTEST_ASYNCIO = importlib.util.find_spec("pytest_asyncio") is not None


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "asyncio: mark test to run on asyncio loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Fallback asyncio runner when pytest-asyncio is unavailable."""
    if _HAS_PYTEST_ASYNCIO:
        return None
    if "asyncio" not in pyfuncitem.keywords:
        return None
    test_function = pyfuncitem.obj
    if not inspect.iscoroutinefunction(test_function):
        return None

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        kwargs = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
        loop.run_until_complete(test_function(**kwargs))
    finally:
        try:
            loop.run_until_complete(loop.shutdown_asyncgens())
        except (RuntimeError, ValueError):
            pass
        loop.close()
        asyncio.set_event_loop(None)
    return True


@pytest.fixture(autouse=True)
def reset_logging_handlers():
    """Close and remove all logging handlers after each test to prevent ResourceWarnings."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        try:
            handler.close()
        except (OSError, RuntimeError):
            pass
        root.removeHandler(handler)
    logging.getLogger("ttyio").setLevel(logging.NOTSET)


def _identity(fd: int) -> tuple[int, int]:
    st = os.fstat(fd)
    return st.st_dev, st.st_ino


def _close_quietly(fds: dict[int, tuple[int, int]]) -> None:
    """Close descriptors the test left open, skipping numbers reused by another file."""
    for fd, identity in fds.items():
        try:
            if _identity(fd) == identity:
                os.close(fd)
        except OSError:
            pass


@pytest.fixture()
def pipe_pair() -> Iterator[tuple[int, int]]:
    """(read_fd, write_fd); tests may close either end early."""
    read_fd, write_fd = os.pipe()
    owned = {read_fd: _identity(read_fd), write_fd: _identity(write_fd)}
    yield read_fd, write_fd
    _close_quietly(owned)


@pytest.fixture()
def pty_pair() -> Iterator[tuple[int, int]]:
    """(master_fd, slave_fd) with the line discipline in raw mode."""
    master_fd, slave_fd = pty.openpty()
    tty.setraw(slave_fd)
    owned = {master_fd: _identity(master_fd), slave_fd: _identity(slave_fd)}
    yield master_fd, slave_fd
    _close_quietly(owned)


@pytest.fixture()
def transfer_config() -> TransferConfig:
    return TransferConfig(read_chunk_size=64)
