"""Turns any failure surfacing from a request into one ``{"message": ...}`` response.

The shape of the incoming error is never trusted: it is decoded into an
``ErrorInfo`` with optional status and message, and everything else about it
(type, repr, traceback) only ever reaches the logs.
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Callable

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.datastructures import URL
from starlette.exceptions import HTTPException as StarletteHTTPException


GENERIC_MESSAGE = "Internal Server Error"


@dataclass(frozen=True)
class ErrorInfo:
    status: int | None = None
    message: str | None = None


@dataclass(frozen=True)
class NormalizedError:
    status: int
    message: str
    diagnostics: dict[str, Any] = field(default_factory=dict, compare=False)

    def to_response(self, headers: dict[str, str] | None = None) -> JSONResponse:
        return JSONResponse(status_code=self.status, content={"message": self.message}, headers=headers)


def _decode_status(exc: BaseException) -> int | None:
    for attr in ("status_code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool) and 400 <= value <= 599:
            return value
    return None


def _decode_message(exc: BaseException) -> str | None:
    for attr in ("message", "detail"):
        value = getattr(exc, attr, None)
        if isinstance(value, str) and value.strip():
            return value
    return None


def decode_error(exc: BaseException) -> ErrorInfo:
    if isinstance(exc, RequestValidationError):
        return ErrorInfo(status=422, message=_validation_message(exc))
    status = _decode_status(exc)
    message = _decode_message(exc)
    if message is None and status is not None and status < 500:
        # Client errors raised as ``SomeError("text")`` carry their message as the argument.
        text = str(exc)
        message = text if text.strip() else None
    return ErrorInfo(status=status, message=message)


def _validation_message(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    loc = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid request: {loc}: {first.get('msg', 'invalid value')}"


def _fallback_message(status: int) -> str:
    if status >= 500:
        return GENERIC_MESSAGE
    try:
        return HTTPStatus(status).phrase
    except ValueError:
        return GENERIC_MESSAGE


def normalize_error(exc: BaseException, method: str = "", url: str = "") -> NormalizedError:
    info = decode_error(exc)
    status = info.status or 500
    message = info.message or _fallback_message(status)
    diagnostics = {
        "method": method,
        "url": url,
        "error_type": type(exc).__name__,
        "error": repr(exc),
        "stack": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
    }
    return NormalizedError(status=status, message=message, diagnostics=diagnostics)


def _response_headers(exc: BaseException) -> dict[str, str] | None:
    if isinstance(exc, StarletteHTTPException):
        return exc.headers
    return None


def log_error(normalized: NormalizedError, exc: BaseException) -> None:
    logger = structlog.get_logger("server")
    log = logger.error if normalized.status >= 500 else logger.warning
    log(
        "server_error",
        status=normalized.status,
        message=normalized.message,
        method=normalized.diagnostics.get("method"),
        url=normalized.diagnostics.get("url"),
        error_type=normalized.diagnostics.get("error_type"),
        exc_info=exc,
    )


class ErrorNormalizerMiddleware:
    """Last line of defence for anything the exception handlers did not answer.

    Sends exactly one JSON error response and never re-raises. If the response
    has already started there is nothing left to send; the error is logged and
    handling of the request ends.
    """

    def __init__(self, app: Callable[..., Any]) -> None:
        self.app = app

    async def __call__(self, scope: dict[str, Any], receive: Callable[..., Any], send: Callable[..., Any]) -> None:
        if scope.get("type") != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: dict[str, Any]) -> None:
            nonlocal response_started
            if message.get("type") == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:  # noqa: BLE001
            normalized = normalize_error(exc, method=scope.get("method", ""), url=str(URL(scope=scope)))
            log_error(normalized, exc)
            if response_started:
                structlog.get_logger("server").warning("error_after_response_started", status=normalized.status)
                return

            try:
                await normalized.to_response(headers=_response_headers(exc))(scope, receive, send)
            except Exception:  # noqa: BLE001
                structlog.get_logger("server").warning("error_response_not_sent", exc_info=True)


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    normalized = normalize_error(exc, method=request.method, url=str(request.url))
    log_error(normalized, exc)
    return normalized.to_response(headers=_response_headers(exc))


def install_error_handlers(app: FastAPI) -> None:
    """Route framework-raised client errors through the same normalization."""

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, http_exception_handler)
    app.add_middleware(ErrorNormalizerMiddleware)
