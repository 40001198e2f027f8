"""Subscription checkout and billing-portal sessions."""
from __future__ import annotations

from typing import Protocol

from sqlalchemy.orm import Session

from ilyzlist.core.errors import ProfileNotFound
from ilyzlist.core.logging import get_logger
from ilyzlist.core.plans import PlanCatalog, get_plan_catalog
from ilyzlist.core.settings import Settings, get_settings
from ilyzlist.services.gateway import CheckoutSession, StripeGateway
from ilyzlist.services.profiles import ProfileStore

logger = get_logger(__name__)


class CheckoutGateway(Protocol):
    def create_customer(self, email: str | None, metadata: dict[str, str]) -> str: ...

    def create_checkout_session(
        self,
        customer_ref: str,
        price_ref: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession: ...

    def create_portal_session(self, customer_ref: str, return_url: str) -> str: ...


class CheckoutService:
    """Start subscription purchases. Plan and quota only change once the
    provider confirms the subscription through a webhook."""

    def __init__(
        self,
        gateway: CheckoutGateway | None = None,
        store: ProfileStore | None = None,
        catalog: PlanCatalog | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.catalog = catalog or get_plan_catalog()
        self.store = store or ProfileStore(self.catalog, self.settings)
        self.gateway = gateway or StripeGateway(self.settings)

    def ensure_customer(self, db: Session, user_id: str, email: str | None) -> str:
        profile = self.store.get_or_create(db, user_id, email)
        if profile.billing_customer_ref:
            return profile.billing_customer_ref

        customer_ref = self.gateway.create_customer(email or profile.email, {"user_id": user_id})
        logger.info("billing_customer_created", user_id=user_id, customer=customer_ref)
        stored = self.store.attach_customer_ref(db, user_id, customer_ref)
        return stored or customer_ref

    def start_checkout(self, db: Session, user_id: str, email: str | None, plan_id: str) -> CheckoutSession:
        plan = self.catalog.get(plan_id)
        price_ref = self.catalog.price_ref_for(plan.name)
        customer_ref = self.ensure_customer(db, user_id, email)

        site_url = self.settings.site_url.rstrip("/")
        session = self.gateway.create_checkout_session(
            customer_ref=customer_ref,
            price_ref=price_ref,
            metadata={"user_id": user_id, "plan_id": plan.name},
            success_url=f"{site_url}/plans/payment-confirmation?success=true",
            cancel_url=f"{site_url}/plans/payment-confirmation?canceled=true",
        )
        logger.info(
            "checkout_started",
            user_id=user_id,
            plan=plan.name,
            customer=customer_ref,
            session=session.session_ref,
        )
        return session

    def open_billing_portal(self, db: Session, user_id: str, return_url: str | None = None) -> str:
        profile = self.store.get(db, user_id)
        if profile is None or not profile.billing_customer_ref:
            raise ProfileNotFound(f"User {user_id} has no billing customer")
        target = return_url or f"{self.settings.site_url.rstrip('/')}/account"
        url = self.gateway.create_portal_session(profile.billing_customer_ref, target)
        logger.info("billing_portal_opened", user_id=user_id)
        return url


__all__ = ["CheckoutGateway", "CheckoutService"]
