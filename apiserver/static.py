from __future__ import annotations

import uuid
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import FileResponse, HTMLResponse
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates

from apiserver.config import Settings
from apiserver.observability.middleware import in_namespace


def _reject_api_paths(path: str, api_prefix: str) -> None:
    # Unknown API routes must 404 instead of receiving the client shell.
    if in_namespace(path, api_prefix):
        raise HTTPException(status_code=404, detail="Not Found")


def serve_client(app: FastAPI, settings: Settings) -> None:
    """Install the client catch-all. Must run after every API router is registered."""

    if settings.app_env == "development":
        _serve_dev_shell(app, settings)
    else:
        _serve_build(app, settings)


def _serve_dev_shell(app: FastAPI, settings: Settings) -> None:
    templates = Jinja2Templates(directory=str(settings.client_path))

    @app.get("/{full_path:path}", include_in_schema=False, response_class=HTMLResponse)
    async def client_shell(request: Request, full_path: str) -> HTMLResponse:
        _reject_api_paths(request.url.path, settings.api_prefix)
        response = templates.TemplateResponse(
            request,
            "index.html",
            {"asset_version": uuid.uuid4().hex[:12]},
        )
        response.headers["Cache-Control"] = "no-cache"
        return response


def _serve_build(app: FastAPI, settings: Settings) -> None:
    dist = settings.dist_path.resolve()
    if not dist.is_dir():
        raise RuntimeError(f"Could not find the build directory: {dist}, make sure to build the client first")

    assets = dist / "assets"
    if assets.is_dir():
        app.mount("/assets", StaticFiles(directory=str(assets)), name="assets")

    index = dist / "index.html"

    @app.get("/{full_path:path}", include_in_schema=False)
    async def client_app(request: Request, full_path: str) -> FileResponse:
        _reject_api_paths(request.url.path, settings.api_prefix)
        if full_path:
            candidate = (dist / full_path).resolve()
            if candidate.is_file() and _inside(candidate, dist):
                return FileResponse(candidate)
        return FileResponse(index)


def _inside(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return True
