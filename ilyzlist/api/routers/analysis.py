"""Drawing analysis endpoint, metered by the analysis quota."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from ilyzlist.api import schemas
from ilyzlist.api.dependencies.auth import AuthenticatedUser, get_current_user
from ilyzlist.api.dependencies.database import get_db
from ilyzlist.api.errors import http_error_for, quota_exhausted_response
from ilyzlist.core.errors import AnalysisEngineError, BillingError
from ilyzlist.services.analysis import DrawingAnalysisService
from ilyzlist.services.quota import QuotaExhausted

router = APIRouter(prefix="/api/v1", tags=["analysis"])
analysis_service = DrawingAnalysisService()


@router.post(
    "/analyses",
    response_model=schemas.AnalysisResponse,
    responses={status.HTTP_402_PAYMENT_REQUIRED: {"model": schemas.QuotaExhaustedResponse}},
)
def analyze_drawing(
    payload: schemas.AnalysisRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        outcome = analysis_service.analyze_drawing(
            db,
            current_user.user_id,
            payload.image_url,
            child_age=payload.child_age,
            child_name=payload.child_name,
            drawing_id=payload.drawing_id,
        )
    except AnalysisEngineError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.user_message) from exc
    except BillingError as exc:
        db.rollback()
        raise http_error_for(exc) from exc

    if isinstance(outcome, QuotaExhausted):
        return quota_exhausted_response(outcome.plan)

    return schemas.AnalysisResponse(
        drawing_id=outcome.drawing.id,
        analysis=outcome.analysis,
        from_cache=outcome.from_cache,
        quota_remaining=outcome.remaining,
        analyzed_at=outcome.drawing.analyzed_at,
    )
