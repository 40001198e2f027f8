"""Pydantic schemas for API requests and responses."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class PlanResponse(BaseModel):
    id: str
    display_name: str
    monthly_analyses: int
    price_label: str
    purchasable: bool


class UsageResponse(BaseModel):
    plan: str
    plan_display_name: str
    quota_remaining: int
    quota_allowance: int
    can_analyze: bool
    subscription_status: str
    cycle_renews_at: datetime | None = None


class CheckoutRequest(BaseModel):
    plan: str = Field(min_length=1, max_length=32)


class CheckoutResponse(BaseModel):
    checkout_url: str
    session_id: str


class BillingPortalRequest(BaseModel):
    return_url: str | None = None


class BillingPortalResponse(BaseModel):
    url: str


class WebhookAck(BaseModel):
    received: bool = True
    event_id: str | None = None
    outcome: str
    duplicate: bool = False


class QuotaResetResponse(BaseModel):
    updated: int
    due_only: bool


class AnalysisRequest(BaseModel):
    image_url: str = Field(min_length=1, max_length=2048)
    child_age: int | None = Field(default=None, ge=0, le=18)
    child_name: str | None = Field(default=None, max_length=255)
    drawing_id: uuid.UUID | None = None


class AnalysisResponse(BaseModel):
    drawing_id: uuid.UUID
    analysis: dict[str, Any]
    from_cache: bool = False
    quota_remaining: int | None = None
    analyzed_at: datetime | None = None


class QuotaExhaustedResponse(BaseModel):
    detail: str
    code: str = "QUOTA_EXHAUSTED"
    plan: str
    upgrade_url: str


__all__ = [
    "AnalysisRequest",
    "AnalysisResponse",
    "BillingPortalRequest",
    "BillingPortalResponse",
    "CheckoutRequest",
    "CheckoutResponse",
    "PlanResponse",
    "QuotaExhaustedResponse",
    "QuotaResetResponse",
    "UsageResponse",
    "WebhookAck",
]
