"""Bind/listen lifecycle for the HTTP server.

A port still held by a slowly exiting previous instance is the one failure
worth waiting for: the listener retries exactly once after a fixed one second
pause. Every other bind error is logged and the process is left unbound.
"""

from __future__ import annotations

import asyncio
import errno
import socket
from enum import Enum
from typing import Any, Awaitable, Callable

import structlog
import uvicorn

from apiserver.config import Settings
from apiserver.observability.logging import LogSink, log_line


class ListenerState(str, Enum):
    UNBOUND = "unbound"
    BINDING = "binding"
    RETRYING = "retrying"
    BOUND = "bound"
    FAILED = "failed"


def _listener_log(message: str) -> None:
    log_line(message, source="listener")


class ResilientListener:
    def __init__(
        self,
        host: str,
        port: int,
        *,
        retry_delay: float = 1.0,
        backlog: int = 2048,
        sink: LogSink | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.host = host
        self.port = port
        self.retry_delay = retry_delay
        self.backlog = backlog
        self.sink = sink or _listener_log
        self.sleep = sleep
        self._state = ListenerState.UNBOUND
        self._socket: socket.socket | None = None

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def bound_port(self) -> int | None:
        if self._socket is None:
            return None
        return self._socket.getsockname()[1]

    def _open_socket(self) -> socket.socket:
        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((self.host, self.port))
            sock.listen(self.backlog)
        except OSError:
            sock.close()
            raise
        sock.set_inheritable(True)
        return sock

    def _fail(self, exc: OSError) -> None:
        self._state = ListenerState.FAILED
        structlog.get_logger("server").error(
            "server_error",
            host=self.host,
            port=self.port,
            errno=exc.errno,
            error=str(exc),
        )

    async def bind(self) -> socket.socket | None:
        """Return a listening socket, or ``None`` once binding has failed for good."""

        if self._state is ListenerState.BOUND:
            return self._socket

        self._state = ListenerState.BINDING
        try:
            self._socket = self._open_socket()
        except OSError as exc:
            if exc.errno != errno.EADDRINUSE:
                self._fail(exc)
                return None

            self._state = ListenerState.RETRYING
            unit = "second" if self.retry_delay == 1 else "seconds"
            self.sink(f"Port {self.port} is busy, retrying in {self.retry_delay:g} {unit}...")
            await self.sleep(self.retry_delay)
            self.close()
            try:
                self._socket = self._open_socket()
            except OSError as retry_exc:
                self._fail(retry_exc)
                return None

        self._state = ListenerState.BOUND
        self.sink(f"serving on port {self.bound_port}")
        return self._socket

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None


async def serve(app: Any, settings: Settings, *, listener: ResilientListener | None = None) -> ListenerState:
    """Bind, then hand the socket to uvicorn. Returns the final listener state."""

    listener = listener or ResilientListener(settings.host, settings.port, retry_delay=settings.bind_retry_delay)
    sock = await listener.bind()
    if sock is None:
        structlog.get_logger("server").warning("server_not_listening", host=settings.host, port=settings.port)
        return listener.state

    config = uvicorn.Config(
        app,
        log_config=None,  # Use our structlog handler.
        proxy_headers=settings.trust_proxy,
        forwarded_allow_ips=settings.forwarded_allow_ips,
    )
    server = uvicorn.Server(config)
    try:
        await server.serve(sockets=[sock])
    finally:
        listener.close()
    return listener.state
