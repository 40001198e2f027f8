"""Observability helpers for monitoring and error reporting."""
from __future__ import annotations

import sentry_sdk
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from ilyzlist.core.logging import get_logger
from ilyzlist.core.settings import get_settings

logger = get_logger(__name__)


def configure_observability(app: FastAPI) -> None:
    settings = get_settings()

    if settings.enable_prometheus:
        Instrumentator().instrument(app, metric_namespace=settings.metrics_namespace).expose(
            app, include_in_schema=False
        )

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            traces_sample_rate=0.2,
            environment=settings.environment,
        )
        logger.info("sentry_initialised", environment=settings.environment)


__all__ = ["configure_observability"]
