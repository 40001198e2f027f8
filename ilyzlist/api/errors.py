"""Translate service faults and outcomes into HTTP responses."""
from __future__ import annotations

from fastapi import HTTPException, status
from fastapi.responses import JSONResponse

from ilyzlist.api import schemas
from ilyzlist.core.errors import (
    GENERIC_FAILURE,
    BillingError,
    InvalidSignature,
    MalformedEvent,
    PaymentProviderError,
    ProfileNotFound,
)
from ilyzlist.core.logging import get_logger
from ilyzlist.core.plans import get_plan_catalog
from ilyzlist.core.settings import get_settings

logger = get_logger(__name__)


def http_error_for(exc: BillingError) -> HTTPException:
    if isinstance(exc, PaymentProviderError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.user_message)
    if isinstance(exc, (InvalidSignature, MalformedEvent)):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.user_message)
    if isinstance(exc, ProfileNotFound):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.user_message)
    logger.error("billing_failure", error_type=type(exc).__name__, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=GENERIC_FAILURE)


def quota_exhausted_response(plan: str) -> JSONResponse:
    display_name = get_plan_catalog().display_name_for(plan)
    body = schemas.QuotaExhaustedResponse(
        detail=f"Your {display_name} plan has no analyses left this cycle. Upgrade to continue.",
        plan=plan,
        upgrade_url=f"{get_settings().site_url.rstrip('/')}/plans",
    )
    return JSONResponse(status_code=status.HTTP_402_PAYMENT_REQUIRED, content=body.model_dump())


__all__ = ["http_error_for", "quota_exhausted_response"]
