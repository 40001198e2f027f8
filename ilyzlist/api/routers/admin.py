"""Operator endpoints invoked by the external scheduler."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy.orm import Session

from ilyzlist.api import schemas
from ilyzlist.api.dependencies.database import get_db
from ilyzlist.core.logging import get_logger
from ilyzlist.core.security import secrets_match
from ilyzlist.core.settings import get_settings
from ilyzlist.services.quota import QuotaService

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])
quota_service = QuotaService()
logger = get_logger(__name__)


def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    expected = get_settings().cron_secret
    if not expected:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Scheduler secret not configured")
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets_match(token.strip(), expected):
        logger.warning("cron_secret_rejected")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")


@router.post("/reset-quotas", response_model=schemas.QuotaResetResponse)
def reset_quotas(
    due_only: bool | None = Query(default=None),
    _: None = Depends(require_cron_secret),
    db: Session = Depends(get_db),
) -> schemas.QuotaResetResponse:
    effective = get_settings().quota_reset_due_only if due_only is None else due_only
    updated = quota_service.reset_all_quotas(db, due_only=effective)
    return schemas.QuotaResetResponse(updated=updated, due_only=effective)
