"""Tests for listen-socket binding with port fallback."""

from __future__ import annotations

import errno
import socket
from typing import Iterator

import pytest

import entrypoint
from entrypoint import bind_with_fallback


@pytest.fixture()
def busy_port() -> Iterator[int]:
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", 0))
    blocker.listen(1)
    yield blocker.getsockname()[1]
    blocker.close()


def test_free_port_is_used_directly() -> None:
    sock = bind_with_fallback("127.0.0.1", 0, attempts=1)
    try:
        assert sock.getsockname()[1] > 0
    finally:
        sock.close()


def test_busy_port_falls_back_to_a_later_one(busy_port: int) -> None:
    sock = bind_with_fallback("127.0.0.1", busy_port, attempts=10, retry_delay=0)
    try:
        port = sock.getsockname()[1]
        assert busy_port < port <= busy_port + 9
    finally:
        sock.close()


def test_exhausted_attempts_raise(busy_port: int) -> None:
    with pytest.raises(OSError) as excinfo:
        bind_with_fallback("127.0.0.1", busy_port, attempts=1, retry_delay=0)
    assert excinfo.value.errno == errno.EADDRINUSE


def test_main_exits_non_zero_when_no_port_is_free(busy_port: int, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HOST", "127.0.0.1")
    monkeypatch.setenv("PORT", str(busy_port))

    def refuse(host, port, attempts=1, retry_delay=0):
        return bind_with_fallback(host, port, attempts=1, retry_delay=0)

    monkeypatch.setattr(entrypoint, "bind_with_fallback", refuse)
    with pytest.raises(SystemExit) as excinfo:
        entrypoint.main()
    assert excinfo.value.code == 1
