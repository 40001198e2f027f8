"""Profile store: atomic conditional updates on billing profiles."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ilyzlist.core import models
from ilyzlist.core.logging import get_logger
from ilyzlist.core.plans import FREE_PLAN, PlanCatalog, get_plan_catalog
from ilyzlist.core.settings import Settings, get_settings

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class SubscriptionState:
    """Target plan/quota/subscription fields produced by the reconciler."""

    plan_id: str
    quota_allowance: int
    subscription_ref: str | None
    subscription_status: str
    cycle_renews_at: datetime | None


class ProfileStore:
    """Data access for :class:`~ilyzlist.core.models.BillingProfile`.

    Every mutation of quota or subscription fields is a single guarded
    ``UPDATE`` so that concurrent request handlers never need a lock. Callers
    own the transaction unless a method says otherwise.
    """

    def __init__(self, catalog: PlanCatalog | None = None, settings: Settings | None = None) -> None:
        self.catalog = catalog or get_plan_catalog()
        self.settings = settings or get_settings()

    def get(self, db: Session, user_id: str) -> models.BillingProfile | None:
        return db.get(models.BillingProfile, user_id, populate_existing=True)

    def find_by_customer_ref(self, db: Session, customer_ref: str) -> models.BillingProfile | None:
        return db.scalars(
            select(models.BillingProfile).where(models.BillingProfile.billing_customer_ref == customer_ref)
        ).first()

    def get_or_create(self, db: Session, user_id: str, email: str | None = None) -> models.BillingProfile:
        profile = self.get(db, user_id)
        if profile is not None:
            if email and not profile.email:
                profile.email = email
                db.commit()
            return profile

        allowance = self.catalog.allowance_for(FREE_PLAN)
        profile = models.BillingProfile(
            user_id=user_id,
            email=email,
            plan_id=FREE_PLAN,
            quota_allowance=allowance,
            quota_remaining=allowance,
            subscription_status="none",
            cycle_renews_at=datetime.utcnow() + timedelta(days=self.settings.quota_cycle_days),
        )
        db.add(profile)
        try:
            db.commit()
        except IntegrityError:
            # Created concurrently by another request for the same user.
            db.rollback()
            profile = self.get(db, user_id)
            if profile is None:
                raise
            return profile
        logger.info("profile_created", user_id=user_id, plan=FREE_PLAN, quota=allowance)
        return profile

    def attach_customer_ref(
        self, db: Session, user_id: str, customer_ref: str, commit: bool = True
    ) -> str | None:
        """Set the billing customer once and return the persisted value.

        Commits by default so a retried checkout finds the customer; pass
        ``commit=False`` to keep the update inside the caller's transaction.
        """
        db.execute(
            update(models.BillingProfile)
            .where(models.BillingProfile.user_id == user_id)
            .where(models.BillingProfile.billing_customer_ref.is_(None))
            .values(billing_customer_ref=customer_ref, updated_at=datetime.utcnow())
        )
        if commit:
            db.commit()
        stored = db.scalar(
            select(models.BillingProfile.billing_customer_ref).where(models.BillingProfile.user_id == user_id)
        )
        if stored != customer_ref:
            logger.warning(
                "billing_customer_orphaned",
                user_id=user_id,
                orphaned_customer=customer_ref,
                kept_customer=stored,
            )
        return stored

    def decrement_if_positive(self, db: Session, user_id: str) -> bool:
        result = db.execute(
            update(models.BillingProfile)
            .where(models.BillingProfile.user_id == user_id)
            .where(models.BillingProfile.quota_remaining > 0)
            .values(
                quota_remaining=models.BillingProfile.quota_remaining - 1,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def remaining_quota(self, db: Session, user_id: str) -> int | None:
        return db.scalar(
            select(models.BillingProfile.quota_remaining).where(models.BillingProfile.user_id == user_id)
        )

    def apply_subscription_state(
        self,
        db: Session,
        user_id: str,
        state: SubscriptionState,
        occurred_at: datetime,
        event_subscription_ref: str | None = None,
    ) -> bool:
        """Overwrite plan, quota and subscription fields unless the profile holds newer state.

        An event about a subscription other than the profile's current one
        only applies when it grants a paid subscription; a late cancellation
        or downgrade of a replaced subscription leaves the profile untouched.
        """
        stmt = (
            update(models.BillingProfile)
            .where(models.BillingProfile.user_id == user_id)
            .where(
                or_(
                    models.BillingProfile.subscription_synced_at.is_(None),
                    models.BillingProfile.subscription_synced_at <= occurred_at,
                )
            )
        )
        if state.subscription_ref is None:
            current = models.BillingProfile.subscription_ref
            stmt = stmt.where(
                or_(current.is_(None), current == event_subscription_ref)
                if event_subscription_ref
                else current.is_(None)
            )
        result = db.execute(
            stmt.values(
                plan_id=state.plan_id,
                quota_allowance=state.quota_allowance,
                quota_remaining=state.quota_allowance,
                subscription_ref=state.subscription_ref,
                subscription_status=state.subscription_status,
                cycle_renews_at=state.cycle_renews_at,
                subscription_synced_at=occurred_at,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def reset_quotas(
        self,
        db: Session,
        plan_id: str,
        allowance: int,
        now: datetime,
        due_only: bool = False,
    ) -> int:
        values: dict[str, object] = {
            "quota_allowance": allowance,
            "quota_remaining": allowance,
            "updated_at": now,
        }
        stmt = update(models.BillingProfile).where(models.BillingProfile.plan_id == plan_id)
        if due_only:
            stmt = stmt.where(
                or_(
                    models.BillingProfile.cycle_renews_at.is_(None),
                    models.BillingProfile.cycle_renews_at <= now,
                )
            )
            values["cycle_renews_at"] = now + timedelta(days=self.settings.quota_cycle_days)
        result = db.execute(stmt.values(**values).execution_options(synchronize_session=False))
        return result.rowcount


__all__ = ["ProfileStore", "SubscriptionState"]
