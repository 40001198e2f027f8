"""Billing-provider webhook receiver."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from ilyzlist.api import schemas
from ilyzlist.api.dependencies.database import get_db
from ilyzlist.api.errors import http_error_for
from ilyzlist.core.errors import GENERIC_FAILURE, InvalidSignature, MalformedEvent
from ilyzlist.services.reconciler import SubscriptionReconciler

router = APIRouter(prefix="/api/v1", tags=["webhooks"])
reconciler = SubscriptionReconciler()


@router.post("/stripe/webhook", response_model=schemas.WebhookAck)
async def stripe_webhook(request: Request, db: Session = Depends(get_db)) -> schemas.WebhookAck:
    payload = await request.body()
    sig_header = request.headers.get("Stripe-Signature")
    try:
        # Database writes and provider lookups block; keep them off the event loop.
        result = await run_in_threadpool(reconciler.handle_webhook, db, payload, sig_header)
    except (InvalidSignature, MalformedEvent) as exc:
        raise http_error_for(exc) from exc
    except Exception as exc:
        # A non-2xx answer makes the provider redeliver the event.
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=GENERIC_FAILURE) from exc
    return schemas.WebhookAck(event_id=result.event_id, outcome=result.outcome, duplicate=result.duplicate)
