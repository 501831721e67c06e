from __future__ import annotations

import errno
import socket

import pytest
from structlog.testing import capture_logs

from apiserver.config import Settings
from apiserver.listener import ListenerState, ResilientListener, serve


def _occupy_port() -> socket.socket:
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", 0))
    blocker.listen(1)
    return blocker


@pytest.fixture
def lines() -> list[str]:
    return []


async def test_binds_free_port_first_time(lines) -> None:
    listener = ResilientListener("127.0.0.1", 0, sink=lines.append)
    assert listener.state is ListenerState.UNBOUND

    sock = await listener.bind()
    try:
        assert sock is not None
        assert listener.state is ListenerState.BOUND
        assert lines == [f"serving on port {listener.bound_port}"]
    finally:
        listener.close()


async def test_retries_once_and_recovers_when_port_frees(lines) -> None:
    blocker = _occupy_port()
    port = blocker.getsockname()[1]
    delays: list[float] = []

    async def release_during_wait(delay: float) -> None:
        delays.append(delay)
        blocker.close()

    listener = ResilientListener("127.0.0.1", port, sink=lines.append, sleep=release_during_wait)
    sock = await listener.bind()
    try:
        assert sock is not None
        assert listener.state is ListenerState.BOUND
        assert delays == [1.0]
        assert lines == [
            f"Port {port} is busy, retrying in 1 second...",
            f"serving on port {port}",
        ]
    finally:
        listener.close()


async def test_gives_up_after_single_retry(lines, monkeypatch) -> None:
    blocker = _occupy_port()
    port = blocker.getsockname()[1]
    delays: list[float] = []

    async def no_wait(delay: float) -> None:
        delays.append(delay)

    listener = ResilientListener("127.0.0.1", port, sink=lines.append, sleep=no_wait)
    attempts = 0
    open_socket = listener._open_socket

    def counting_open() -> socket.socket:
        nonlocal attempts
        attempts += 1
        return open_socket()

    monkeypatch.setattr(listener, "_open_socket", counting_open)

    try:
        with capture_logs() as logs:
            sock = await listener.bind()
    finally:
        blocker.close()

    assert sock is None
    assert attempts == 2
    assert delays == [1.0]
    assert listener.state is ListenerState.FAILED
    assert lines == [f"Port {port} is busy, retrying in 1 second..."]
    failures = [entry for entry in logs if entry["event"] == "server_error"]
    assert failures[0]["errno"] == errno.EADDRINUSE


async def test_other_bind_errors_are_not_retried(lines, monkeypatch) -> None:
    delays: list[float] = []

    async def no_wait(delay: float) -> None:
        delays.append(delay)

    listener = ResilientListener("127.0.0.1", 80, sink=lines.append, sleep=no_wait)

    def denied() -> socket.socket:
        raise PermissionError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(listener, "_open_socket", denied)

    with capture_logs() as logs:
        sock = await listener.bind()

    assert sock is None
    assert delays == []
    assert lines == []
    assert listener.state is ListenerState.FAILED
    assert logs[0]["event"] == "server_error"
    assert logs[0]["errno"] == errno.EACCES


async def test_serve_returns_without_crashing_when_unbound(monkeypatch) -> None:
    settings = Settings(PORT=80)
    listener = ResilientListener(settings.host, settings.port, sink=lambda line: None)

    def denied() -> socket.socket:
        raise PermissionError(errno.EACCES, "Permission denied")

    monkeypatch.setattr(listener, "_open_socket", denied)

    with capture_logs() as logs:
        state = await serve(app=None, settings=settings, listener=listener)

    assert state is ListenerState.FAILED
    assert any(entry["event"] == "server_not_listening" for entry in logs)
