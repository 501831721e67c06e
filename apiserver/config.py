from __future__ import annotations

from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import Literal

import structlog
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    port: int = Field(default=5000, alias="PORT")
    host: str = Field(default="0.0.0.0", alias="HOST")
    app_env: Literal["development", "production"] = Field(default="development", alias="APP_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    api_prefix: str = Field(default="/api", alias="API_PREFIX")
    request_id_header: str = Field(default="x-request-id", alias="REQUEST_ID_HEADER")
    body_limit_mb: int = Field(default=50, alias="BODY_LIMIT_MB")
    bind_retry_delay: float = Field(default=1.0, alias="BIND_RETRY_DELAY")
    trust_proxy: bool = Field(default=True, alias="TRUST_PROXY")
    forwarded_allow_ips: str = Field(default="*", alias="FORWARDED_ALLOW_IPS")

    client_dir: str = Field(default="client", alias="CLIENT_DIR")
    dist_dir: str = Field(default="dist/public", alias="DIST_DIR")

    # Only their presence is reported at startup.
    database_url: str = Field(default="", alias="DATABASE_URL")
    auth0_domain: str = Field(default="", alias="AUTH0_DOMAIN")
    auth0_client_id: str = Field(default="", alias="AUTH0_CLIENT_ID")
    auth0_client_secret: str = Field(default="", alias="AUTH0_CLIENT_SECRET")

    @property
    def body_limit_bytes(self) -> int:
        return self.body_limit_mb * 1024 * 1024

    @property
    def client_path(self) -> Path:
        return Path(self.client_dir)

    @property
    def dist_path(self) -> Path:
        return Path(self.dist_dir)

    @property
    def auth0_configured(self) -> bool:
        return bool(self.auth0_domain and self.auth0_client_id and self.auth0_client_secret)

    def credential_flags(self) -> dict[str, bool]:
        return {
            "database_url": bool(self.database_url),
            "auth0_domain": bool(self.auth0_domain),
            "auth0_client_id": bool(self.auth0_client_id),
            "auth0_client_secret": bool(self.auth0_client_secret),
        }


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def log_startup_banner(settings: Settings) -> None:
    """Emit the environment diagnostic shown once when the process starts."""

    logger = structlog.get_logger("startup")
    logger.info(
        "server_starting",
        started_at=datetime.now(timezone.utc).isoformat(),
        environment=settings.app_env,
        port=settings.port,
        **{
            name: "[CONFIGURED]" if present else "[MISSING]"
            for name, present in settings.credential_flags().items()
        },
    )

    if settings.auth0_configured:
        logger.info("Auth0 configured for simplified Google OAuth authentication.")
    else:
        logger.info("Auth0 environment variables not configured. Using fallback authentication.")
