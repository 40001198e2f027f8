"""Subscription plan catalog and helpers."""
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, Literal, Mapping

from .errors import PlanNotConfigured, UnknownPlan
from .logging import get_logger
from .settings import Settings, get_settings

PlanName = Literal["free", "basic", "premium"]

FREE_PLAN: PlanName = "free"

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class PlanDetails:
    name: PlanName
    display_name: str
    monthly_analyses: int
    price_label: str


_PLAN_REGISTRY: dict[PlanName, PlanDetails] = {
    "free": PlanDetails(name="free", display_name="Free", monthly_analyses=1, price_label="0€"),
    "basic": PlanDetails(name="basic", display_name="Basic", monthly_analyses=15, price_label="4,99€/mois"),
    "premium": PlanDetails(
        name="premium", display_name="Premium", monthly_analyses=25, price_label="9,99€/mois"
    ),
}


class PlanCatalog:
    """Closed mapping from plan identifier to allowance, display name and price.

    Lookups by plan identifier are strict and raise :class:`UnknownPlan`. The
    only lenient translation is :meth:`plan_for_price`, used at the billing
    provider boundary, where an unrecognised price resolves to ``free``.
    """

    def __init__(
        self,
        plans: Mapping[PlanName, PlanDetails] | None = None,
        price_refs: Mapping[str, str | None] | None = None,
    ) -> None:
        self._plans = dict(plans or _PLAN_REGISTRY)
        self._price_refs = {
            name: ref.strip()
            for name, ref in (price_refs or {}).items()
            if name in self._plans and ref and ref.strip()
        }

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PlanCatalog":
        settings = settings or get_settings()
        return cls(
            price_refs={
                "basic": settings.stripe_price_basic,
                "premium": settings.stripe_price_premium,
            }
        )

    def get(self, plan_id: str) -> PlanDetails:
        try:
            return self._plans[plan_id]  # type: ignore[index]
        except (KeyError, TypeError):
            raise UnknownPlan(plan_id) from None

    def allowance_for(self, plan_id: str) -> int:
        return self.get(plan_id).monthly_analyses

    def display_name_for(self, plan_id: str) -> str:
        return self.get(plan_id).display_name

    def price_ref_for(self, plan_id: str) -> str:
        plan = self.get(plan_id)
        price_ref = self._price_refs.get(plan.name)
        if not price_ref:
            logger.error("plan_not_configured", plan=plan.name)
            raise PlanNotConfigured(f"No billing price configured for plan {plan.name!r}")
        return price_ref

    def is_purchasable(self, plan_id: str) -> bool:
        return self.get(plan_id).name in self._price_refs

    def plan_for_price(self, price_ref: str | None) -> PlanName:
        """Translate a billing-provider price into a plan, defaulting to free."""
        cleaned = (price_ref or "").strip()
        for name, ref in self._price_refs.items():
            if cleaned and cleaned == ref:
                return name  # type: ignore[return-value]
        if cleaned:
            logger.warning("unknown_price_reference", price_ref=cleaned)
        return FREE_PLAN

    def plans(self) -> Iterable[PlanDetails]:
        return list(self._plans.values())


@lru_cache()
def get_plan_catalog() -> PlanCatalog:
    """Return the catalog configured from the current settings."""
    return PlanCatalog.from_settings()


__all__ = ["FREE_PLAN", "PlanCatalog", "PlanDetails", "PlanName", "get_plan_catalog"]
