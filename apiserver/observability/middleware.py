from __future__ import annotations

import json
from time import perf_counter
from typing import Any, Callable

import structlog
from starlette.datastructures import Headers, MutableHeaders

from apiserver.observability.capture import RequestTrace, ResponseCapture
from apiserver.observability.logging import LogSink, log_line


MAX_LINE_LENGTH = 100
ELLIPSIS = "…"


def in_namespace(path: str, prefix: str) -> bool:
    prefix = prefix.rstrip("/")
    if not prefix:
        return True
    return path == prefix or path.startswith(prefix + "/")


def _has_content(body: Any) -> bool:
    # Empty containers still count; scalars that read as "nothing" do not.
    if body is None or body is False or body == "":
        return False
    if isinstance(body, (int, float)) and body == 0:
        return False
    return True


def format_access_line(trace: RequestTrace, duration_ms: int) -> str:
    """Render ``<METHOD> <PATH> <STATUS> in <N>ms[ :: <json>][ [<id>]]``, capped at 100 chars."""

    line = f"{trace.method} {trace.path} {trace.status_code} in {duration_ms}ms"
    if trace.has_body and _has_content(trace.captured_body):
        try:
            line += " :: " + json.dumps(trace.captured_body, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError):
            # Not serializable: keep the line without its body segment.
            pass
    if trace.correlation_id:
        line += f" [{trace.correlation_id}]"

    if len(line) > MAX_LINE_LENGTH:
        line = line[: MAX_LINE_LENGTH - 1] + ELLIPSIS
    return line


class RequestObserverMiddleware:
    """Times API requests and writes one access line per finished response."""

    def __init__(
        self,
        app: Callable[..., Any],
        api_prefix: str = "/api",
        request_id_header: str = "x-request-id",
        sink: LogSink | None = None,
        clock: Callable[[], float] = perf_counter,
    ) -> None:
        self.app = app
        self.api_prefix = api_prefix
        self.request_id_header = request_id_header.lower()
        self.sink = sink or log_line
        self.clock = clock

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        correlation_id = Headers(scope=scope).get(self.request_id_header) or None
        trace = RequestTrace(
            start_time=self.clock(),
            method=scope.get("method", ""),
            path=scope.get("path", ""),
            correlation_id=correlation_id,
        )

        context: dict[str, Any] = {"method": trace.method, "path": trace.path}
        if correlation_id:
            context["correlation_id"] = correlation_id
        structlog.contextvars.bind_contextvars(**context)

        async def echo_request_id(message: dict[str, Any]) -> None:
            if correlation_id and message.get("type") == "http.response.start":
                headers = MutableHeaders(scope=message)
                headers[self.request_id_header] = correlation_id
            await send(message)

        capture = ResponseCapture(trace=trace, send=echo_request_id, on_finish=self._finished)
        try:
            await self.app(scope, receive, capture)
        finally:
            structlog.contextvars.unbind_contextvars(*context)

    def _finished(self, trace: RequestTrace) -> None:
        if not in_namespace(trace.path, self.api_prefix):
            return

        try:
            duration_ms = int((self.clock() - trace.start_time) * 1000)
            self.sink(format_access_line(trace, duration_ms))
        except Exception:  # noqa: BLE001
            # Never let the access log break a response that has already gone out.
            structlog.get_logger("server").warning("access_log_failed", path=trace.path, exc_info=True)
