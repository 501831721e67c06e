from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from starlette.datastructures import Headers


Message = dict[str, Any]
Send = Callable[[Message], Awaitable[None]]


@dataclass
class RequestTrace:
    """Lifetime of one request as seen by the access logger."""

    start_time: float
    method: str
    path: str
    correlation_id: str | None = None
    status_code: int | None = None
    captured_body: Any = None
    has_body: bool = False
    finished: bool = False

    def capture(self, body: Any) -> None:
        # A second capture overwrites the first.
        self.captured_body = body
        self.has_body = True


def _is_json(content_type: str | None) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


@dataclass
class ResponseCapture:
    """Wraps the ASGI ``send`` callable for one request.

    Messages are forwarded exactly as the application produced them. When the
    response is JSON, the body chunks are also buffered and decoded onto the
    trace once the last chunk has been handed to the server. ``on_finish`` runs
    right after that last chunk.
    """

    trace: RequestTrace
    send: Send
    on_finish: Callable[[RequestTrace], None] | None = None
    _buffer: bytearray = field(default_factory=bytearray, init=False)
    _capturing: bool = field(default=False, init=False)

    async def __call__(self, message: Message) -> None:
        message_type = message.get("type")

        if message_type == "http.response.start":
            self.trace.status_code = int(message.get("status", 500))
            headers = Headers(raw=message.get("headers") or [])
            self._capturing = _is_json(headers.get("content-type"))

        elif message_type == "http.response.body" and self._capturing:
            self._buffer.extend(message.get("body", b""))

        await self.send(message)

        if message_type == "http.response.body" and not message.get("more_body", False):
            self._finish()

    def _finish(self) -> None:
        if self.trace.finished:
            return

        if self._capturing:
            try:
                self.trace.capture(json.loads(bytes(self._buffer)))
            except ValueError:
                # Labelled JSON but not decodable; leave the trace without a body.
                pass
            self._buffer.clear()

        self.trace.finished = True
        if self.on_finish is not None:
            self.on_finish(self.trace)
