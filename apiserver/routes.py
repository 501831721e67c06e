from __future__ import annotations

from collections.abc import Iterable

from fastapi import APIRouter, FastAPI

from apiserver.api.health import router as health_router


DEFAULT_ROUTERS: tuple[APIRouter, ...] = (health_router,)


def register_routes(app: FastAPI, routers: Iterable[APIRouter] | None = None) -> FastAPI:
    """Attach application routers and return the app the listener will serve."""

    for router in DEFAULT_ROUTERS if routers is None else routers:
        app.include_router(router)
    return app
