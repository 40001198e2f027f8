"""Quota gate, metered consumption and the periodic quota reset."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.orm import Session

from ilyzlist.core import models
from ilyzlist.core.errors import ProfileNotFound
from ilyzlist.core.logging import get_logger
from ilyzlist.core.plans import FREE_PLAN, PlanCatalog, get_plan_catalog
from ilyzlist.services.profiles import ProfileStore

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class Consumed:
    remaining: int


@dataclass(frozen=True, slots=True)
class QuotaExhausted:
    plan: str


ConsumeResult = Consumed | QuotaExhausted


def can_consume(profile: models.BillingProfile) -> bool:
    """Return whether the profile may start another analysis."""
    return profile.quota_remaining > 0


class QuotaService:
    """Meter analyses against a profile's remaining quota."""

    def __init__(self, store: ProfileStore | None = None, catalog: PlanCatalog | None = None) -> None:
        self.catalog = catalog or get_plan_catalog()
        self.store = store or ProfileStore(self.catalog)

    def consume(self, db: Session, user_id: str) -> ConsumeResult:
        """Atomically take one unit of quota.

        The decrement is a single conditional ``UPDATE`` so concurrent callers
        can never drive the counter below zero. The caller commits.
        """
        if self.store.decrement_if_positive(db, user_id):
            remaining = self.store.remaining_quota(db, user_id) or 0
            logger.info("quota_consumed", user_id=user_id, remaining=remaining)
            return Consumed(remaining=remaining)

        profile = self.store.get(db, user_id)
        if profile is None:
            raise ProfileNotFound(f"No billing profile for user {user_id}")
        logger.warning("quota_exhausted", user_id=user_id, plan=profile.plan_id)
        return QuotaExhausted(plan=profile.plan_id)

    def reset_all_quotas(self, db: Session, due_only: bool = False, now: datetime | None = None) -> int:
        """Refill every profile to its plan's current catalog allowance.

        With ``due_only`` the refill is limited to free profiles whose cycle
        has ended, which makes a repeated scheduler run inside one cycle a
        no-op. Paid profiles are then left to the provider's paid renewal
        invoices, so an unpaid renewal never earns a refill.
        Commits and returns the number of profiles updated.
        """
        now = now or datetime.utcnow()
        total = 0
        for plan in self.catalog.plans():
            if due_only and plan.name != FREE_PLAN:
                continue
            updated = self.store.reset_quotas(db, plan.name, plan.monthly_analyses, now, due_only=due_only)
            total += updated
            logger.info(
                "quota_reset_plan",
                plan=plan.name,
                allowance=plan.monthly_analyses,
                updated=updated,
                due_only=due_only,
            )
        db.commit()
        logger.info("quota_reset_completed", updated=total, due_only=due_only)
        return total


__all__ = ["Consumed", "ConsumeResult", "QuotaExhausted", "QuotaService", "can_consume"]
