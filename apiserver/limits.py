from __future__ import annotations

from typing import Any, Callable

from starlette.datastructures import Headers
from starlette.exceptions import HTTPException


LIMITED_MEDIA_TYPES = {"application/json", "application/x-www-form-urlencoded"}


class PayloadTooLarge(HTTPException):
    def __init__(self, limit: int) -> None:
        super().__init__(status_code=413, detail=f"Request body exceeds {limit} bytes")


class BodySizeLimitMiddleware:
    """Rejects JSON and form-encoded bodies larger than ``max_body_bytes``."""

    def __init__(self, app: Callable[..., Any], max_body_bytes: int = 50 * 1024 * 1024) -> None:
        self.app = app
        self.max_body_bytes = max_body_bytes

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        headers = Headers(scope=scope)
        media_type = headers.get("content-type", "").split(";", 1)[0].strip().lower()
        if media_type not in LIMITED_MEDIA_TYPES:
            await self.app(scope, receive, send)
            return

        declared = headers.get("content-length")
        if declared is not None and declared.isdigit():
            if int(declared) > self.max_body_bytes:
                raise PayloadTooLarge(self.max_body_bytes)
        else:
            # No usable length: read the whole body before any handler runs.
            await self.app(scope, await self._buffer_body(receive), send)
            return

        received = 0

        async def limited_receive() -> dict[str, Any]:
            nonlocal received
            message = await receive()
            if message.get("type") == "http.request":
                received += len(message.get("body", b""))
                if received > self.max_body_bytes:
                    raise PayloadTooLarge(self.max_body_bytes)
            return message

        await self.app(scope, limited_receive, send)

    async def _buffer_body(self, receive: Callable[..., Any]) -> Callable[..., Any]:
        body = bytearray()
        while True:
            message = await receive()
            if message.get("type") != "http.request":
                # Disconnected mid-body; let the app see that instead of a body.
                pending: list[dict[str, Any]] = [message]
                break
            body.extend(message.get("body", b""))
            if len(body) > self.max_body_bytes:
                raise PayloadTooLarge(self.max_body_bytes)
            if not message.get("more_body", False):
                pending = [{"type": "http.request", "body": bytes(body), "more_body": False}]
                break

        async def replay() -> dict[str, Any]:
            if pending:
                return pending.pop(0)
            return await receive()

        return replay
