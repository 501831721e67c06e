from __future__ import annotations

import argparse
import asyncio

from apiserver.config import get_settings, log_startup_banner
from apiserver.listener import serve
from apiserver.main import create_app
from apiserver.observability.logging import configure_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="API server")
    parser.add_argument("--host", default=None, help="Bind address (overrides HOST)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (overrides PORT)")
    parser.add_argument("--env", choices=["development", "production"], default=None, help="Overrides APP_ENV")
    args = parser.parse_args()

    overrides = {
        "host": args.host,
        "port": args.port,
        "app_env": args.env,
    }
    settings = get_settings().model_copy(update={k: v for k, v in overrides.items() if v is not None})

    configure_logging(settings.log_level)
    log_startup_banner(settings)

    app = create_app(settings)
    asyncio.run(serve(app, settings))


if __name__ == "__main__":
    main()
