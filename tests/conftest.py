from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
from fastapi import APIRouter, Request
from fastapi.responses import PlainTextResponse, RedirectResponse
from httpx import ASGITransport, AsyncClient

from apiserver.config import Settings, get_settings
from apiserver.main import create_app


class WidgetNameTaken(Exception):
    status_code = 409


class WidgetMissing(Exception):
    def __init__(self) -> None:
        super().__init__("widget lookup failed in table widgets_v2")
        self.status = 404
        self.message = "not found"


def build_router(handled: list[str] | None = None) -> APIRouter:
    router = APIRouter()
    handled = handled if handled is not None else []

    @router.post("/api/widgets", status_code=201)
    async def create_widget() -> dict[str, int]:
        return {"id": 7}

    @router.get("/api/widgets/{widget_id}")
    async def get_widget(widget_id: int) -> dict[str, int]:
        if widget_id == 404:
            raise WidgetMissing()
        return {"id": widget_id}

    @router.get("/api/widgets/{widget_id}/rename")
    async def rename_widget(widget_id: int) -> dict[str, int]:
        raise WidgetNameTaken("widget name already taken")

    @router.get("/api/big")
    async def big_payload() -> dict[str, str]:
        return {"blob": "y" * (2 * 1024 * 1024)}

    @router.post("/api/touch")
    async def touch() -> dict[str, bool]:
        handled.append("touch")
        return {"ok": True}

    @router.get("/api/boom")
    async def boom() -> dict[str, str]:
        raise RuntimeError("db password is hunter2")

    @router.get("/api/long")
    async def long_payload() -> dict[str, str]:
        return {"text": "x" * 500}

    @router.get("/api/text")
    async def text() -> PlainTextResponse:
        return PlainTextResponse("plain")

    @router.get("/api/redirect")
    async def redirect() -> RedirectResponse:
        return RedirectResponse(url="/api/text", status_code=302)

    @router.post("/api/echo")
    async def echo(request: Request) -> dict[str, int]:
        body = await request.body()
        return {"size": len(body)}

    @router.get("/ping")
    async def ping() -> dict[str, str]:
        return {"pong": "yes"}

    @router.get("/apiary")
    async def apiary() -> dict[str, str]:
        return {"bees": "many"}

    return router


@pytest.fixture(autouse=True)
def test_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("PORT", "HOST", "APP_ENV", "DATABASE_URL", "AUTH0_DOMAIN", "AUTH0_CLIENT_ID", "AUTH0_CLIENT_SECRET"):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def access_lines() -> list[str]:
    return []


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
async def api_client(settings: Settings, access_lines: list[str]) -> AsyncIterator[AsyncClient]:
    app = create_app(settings, routers=[build_router()], log_sink=access_lines.append, serve_client_app=False)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
