"""Plan, usage, checkout and billing-portal endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ilyzlist.api import schemas
from ilyzlist.api.dependencies.auth import AuthenticatedUser, get_current_profile, get_current_user
from ilyzlist.api.dependencies.database import get_db
from ilyzlist.api.errors import http_error_for
from ilyzlist.core import models
from ilyzlist.core.errors import BillingError
from ilyzlist.core.plans import get_plan_catalog
from ilyzlist.services.checkout import CheckoutService
from ilyzlist.services.quota import can_consume

router = APIRouter(prefix="/api/v1", tags=["billing"])
checkout_service = CheckoutService()


@router.get("/plans", response_model=list[schemas.PlanResponse])
def list_plans() -> list[schemas.PlanResponse]:
    catalog = get_plan_catalog()
    return [
        schemas.PlanResponse(
            id=plan.name,
            display_name=plan.display_name,
            monthly_analyses=plan.monthly_analyses,
            price_label=plan.price_label,
            purchasable=catalog.is_purchasable(plan.name),
        )
        for plan in catalog.plans()
    ]


@router.get("/usage", response_model=schemas.UsageResponse)
def usage(profile: models.BillingProfile = Depends(get_current_profile)) -> schemas.UsageResponse:
    catalog = get_plan_catalog()
    try:
        display_name = catalog.display_name_for(profile.plan_id)
    except BillingError as exc:
        raise http_error_for(exc) from exc
    return schemas.UsageResponse(
        plan=profile.plan_id,
        plan_display_name=display_name,
        quota_remaining=profile.quota_remaining,
        quota_allowance=profile.quota_allowance,
        can_analyze=can_consume(profile),
        subscription_status=profile.subscription_status,
        cycle_renews_at=profile.cycle_renews_at,
    )


@router.post("/checkout", response_model=schemas.CheckoutResponse)
def start_checkout(
    payload: schemas.CheckoutRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> schemas.CheckoutResponse:
    try:
        session = checkout_service.start_checkout(
            db, current_user.user_id, current_user.email, payload.plan.strip().lower()
        )
    except BillingError as exc:
        raise http_error_for(exc) from exc
    return schemas.CheckoutResponse(checkout_url=session.redirect_url, session_id=session.session_ref)


@router.post("/billing-portal", response_model=schemas.BillingPortalResponse)
def billing_portal(
    payload: schemas.BillingPortalRequest | None = None,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> schemas.BillingPortalResponse:
    return_url = payload.return_url if payload else None
    try:
        url = checkout_service.open_billing_portal(db, current_user.user_id, return_url)
    except BillingError as exc:
        raise http_error_for(exc) from exc
    return schemas.BillingPortalResponse(url=url)
