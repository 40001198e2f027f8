"""FastAPI application factory."""
from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from ilyzlist import __version__
from ilyzlist.api.routers import admin, analysis, billing, webhooks
from ilyzlist.core.database import init_database
from ilyzlist.core.logging import setup_logging
from ilyzlist.core.observability import configure_observability
from ilyzlist.core.rate_limiter import setup_rate_limiting
from ilyzlist.core.settings import get_settings


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging()
    init_database()

    app = FastAPI(title=settings.app_name, version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.site_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Provider webhooks and the scheduler come from a few fixed addresses.
    setup_rate_limiting(app, exempt=(webhooks.stripe_webhook, admin.reset_quotas))
    configure_observability(app)

    app.include_router(billing.router)
    app.include_router(analysis.router)
    app.include_router(webhooks.router)
    app.include_router(admin.router)

    @app.get("/healthz", tags=["monitoring"])
    def healthcheck() -> dict[str, str]:  # pragma: no cover - simple endpoint
        return {"status": "ok"}

    return app


__all__ = ["create_app"]
