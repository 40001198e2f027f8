"""SQLAlchemy ORM models for Ilyzlist."""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import JSON, CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


JSONType = JSONB().with_variant(JSON(), "sqlite")


class BillingProfile(Base):
    """Per-user plan, quota and billing-provider linkage."""

    __tablename__ = "billing_profiles"
    __table_args__ = (
        CheckConstraint("quota_remaining >= 0", name="ck_quota_remaining_non_negative"),
        CheckConstraint("quota_remaining <= quota_allowance", name="ck_quota_within_allowance"),
    )

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(255))
    billing_customer_ref: Mapped[str | None] = mapped_column(String(255), unique=True, index=True)
    plan_id: Mapped[str] = mapped_column(String(32), default="free", nullable=False)
    quota_remaining: Mapped[int] = mapped_column(Integer, nullable=False)
    quota_allowance: Mapped[int] = mapped_column(Integer, nullable=False)
    subscription_ref: Mapped[str | None] = mapped_column(String(255), index=True)
    subscription_status: Mapped[str] = mapped_column(String(32), default="none", nullable=False)
    cycle_renews_at: Mapped[datetime | None] = mapped_column(DateTime)
    subscription_synced_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    drawings: Mapped[list["Drawing"]] = relationship(back_populates="profile", cascade="all,delete")


class WebhookReceipt(Base):
    """Audit trail of billing-provider events, keyed by the provider's event id."""

    __tablename__ = "webhook_receipts"

    event_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str | None] = mapped_column(String(64), index=True)
    subscription_ref: Mapped[str | None] = mapped_column(String(255))
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)
    detail: Mapped[str | None] = mapped_column(Text)
    occurred_at: Mapped[datetime | None] = mapped_column(DateTime)
    received_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)


class Drawing(Base):
    __tablename__ = "drawings"

    id: Mapped[uuid.UUID] = mapped_column(default=uuid.uuid4, primary_key=True)
    user_id: Mapped[str] = mapped_column(
        ForeignKey("billing_profiles.user_id"), nullable=False, index=True
    )
    image_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    child_name: Mapped[str | None] = mapped_column(String(255))
    child_age: Mapped[int | None] = mapped_column(Integer)
    analysis_result: Mapped[dict[str, Any] | None] = mapped_column(JSONType)
    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)

    profile: Mapped["BillingProfile"] = relationship(back_populates="drawings")


__all__ = ["BillingProfile", "WebhookReceipt", "Drawing"]
