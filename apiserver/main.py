from __future__ import annotations

from collections.abc import Iterable

from fastapi import APIRouter, FastAPI

from apiserver import __version__
from apiserver.config import Settings, get_settings
from apiserver.errors import install_error_handlers
from apiserver.limits import BodySizeLimitMiddleware
from apiserver.observability.logging import LogSink
from apiserver.observability.middleware import RequestObserverMiddleware
from apiserver.routes import register_routes
from apiserver.static import serve_client


def create_app(
    settings: Settings | None = None,
    *,
    routers: Iterable[APIRouter] | None = None,
    log_sink: LogSink | None = None,
    serve_client_app: bool = True,
) -> FastAPI:
    """Assemble the ASGI app.

    Requests pass through the access logger first, then the error normalizer,
    then the body-size limit, before reaching the routers. The client catch-all
    is installed last so it never shadows an API route.
    """

    settings = settings or get_settings()
    app = FastAPI(title="API Server", version=__version__)

    app.add_middleware(BodySizeLimitMiddleware, max_body_bytes=settings.body_limit_bytes)

    register_routes(app, routers)
    install_error_handlers(app)

    # Added last so it wraps everything, including the error responses.
    app.add_middleware(
        RequestObserverMiddleware,
        api_prefix=settings.api_prefix,
        request_id_header=settings.request_id_header,
        sink=log_sink,
    )

    if serve_client_app:
        serve_client(app, settings)
    return app
