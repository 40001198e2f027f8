"""Application settings for the Ilyzlist service."""
from __future__ import annotations

import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralised configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="ILYZLIST_", case_sensitive=False)

    app_name: str = "Ilyzlist"
    environment: Literal["development", "staging", "production"] = "development"

    # Database
    data_dir: Path = Field(default_factory=lambda: Path.cwd() / "instance")
    database_url: str | None = None

    # Auth tokens issued by the hosted auth provider
    jwt_secret: str = Field(default_factory=lambda: secrets.token_urlsafe(48))
    jwt_audience: str = "authenticated"
    jwt_algorithms: list[str] = Field(default_factory=lambda: ["HS256"])

    # Stripe / billing
    stripe_api_key: str | None = None
    stripe_price_basic: str | None = None
    stripe_price_premium: str | None = None
    stripe_webhook_secret: str | None = None
    stripe_webhook_secret_live: str | None = None
    stripe_webhook_secret_test: str | None = None
    stripe_webhook_tolerance_seconds: int = 300
    stripe_timeout_seconds: float = 15.0
    stripe_max_network_retries: int = 0
    site_url: str = "http://localhost:3000"

    # Quotas
    quota_cycle_days: int = 30
    quota_reset_due_only: bool = False
    cron_secret: str | None = None

    # Vision model
    openai_api_key: str | None = None
    openai_model: str = "gpt-4o-mini"
    openai_timeout_seconds: float = 60.0

    # Rate limiting / monitoring
    rate_limit_requests: int = 100
    rate_limit_window_seconds: int = 60
    rate_limit_storage_url: str | None = None
    redis_url: str | None = None
    sentry_dsn: str | None = None
    enable_prometheus: bool = True
    metrics_namespace: str = "ilyzlist"

    @property
    def resolved_database_url(self) -> str:
        """Return the configured database URL defaulting to a local SQLite file."""
        if self.database_url:
            return self.database_url

        self.data_dir.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{(self.data_dir / 'ilyzlist.db').as_posix()}"

    @property
    def resolved_rate_limit_storage(self) -> str:
        if self.rate_limit_storage_url:
            return self.rate_limit_storage_url
        if self.redis_url:
            return f"redis://{self.redis_url.split('://')[-1]}"
        return "memory://"

    @property
    def webhook_secrets(self) -> list[tuple[str, str]]:
        """Configured webhook secrets in verification order, labelled for logs."""
        candidates = (
            ("live", self.stripe_webhook_secret_live),
            ("test", self.stripe_webhook_secret_test),
            ("single", self.stripe_webhook_secret),
        )
        return [(label, value.strip()) for label, value in candidates if value and value.strip()]


@lru_cache()
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()


__all__ = ["Settings", "get_settings"]
