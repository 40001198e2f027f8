"""Apply billing-provider subscription events to billing profiles."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Mapping, Protocol

from sqlalchemy.orm import Session

from ilyzlist.core import models
from ilyzlist.core.errors import UnresolvedUser
from ilyzlist.core.logging import get_logger
from ilyzlist.core.plans import FREE_PLAN, PlanCatalog, get_plan_catalog
from ilyzlist.core.settings import Settings, get_settings
from ilyzlist.services.events import (
    BillingEvent,
    CheckoutCompleted,
    IgnoredEvent,
    InvoicePaid,
    SubscriptionChanged,
    SubscriptionSnapshot,
    map_subscription_status,
    parse_event,
    verify_webhook,
)
from ilyzlist.services.gateway import StripeGateway
from ilyzlist.services.profiles import ProfileStore, SubscriptionState

logger = get_logger(__name__)

METADATA_USER_KEYS = ("user_id", "userId")


class SubscriptionSource(Protocol):
    def retrieve_subscription(self, subscription_ref: str) -> SubscriptionSnapshot: ...


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    event_id: str
    event_type: str
    outcome: str
    user_id: str | None = None
    duplicate: bool = False


class SubscriptionReconciler:
    """Turn verified provider events into profile state.

    Events arrive at least once and in any order. Each event sets absolute
    target state, guarded by the profile's ``subscription_synced_at`` so an
    older event never overwrites newer state, and by subscription identity so
    a replaced subscription cannot cancel the current one. Every processed
    event leaves a :class:`~ilyzlist.core.models.WebhookReceipt`; a redelivered
    event whose receipt is final is acknowledged without touching the profile.
    """

    def __init__(
        self,
        gateway: SubscriptionSource | None = None,
        store: ProfileStore | None = None,
        catalog: PlanCatalog | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.catalog = catalog or get_plan_catalog()
        self.store = store or ProfileStore(self.catalog, self.settings)
        self.gateway = gateway or StripeGateway(self.settings)

    def handle_webhook(self, db: Session, payload: bytes, sig_header: str | None) -> ReconcileResult:
        document = verify_webhook(
            payload,
            sig_header,
            self.settings.webhook_secrets,
            tolerance=self.settings.stripe_webhook_tolerance_seconds,
        )
        return self.reconcile(db, parse_event(document))

    def reconcile(self, db: Session, event: BillingEvent) -> ReconcileResult:
        receipt = db.get(models.WebhookReceipt, event.event_id)
        if receipt is not None and receipt.outcome != "unresolved":
            logger.warning(
                "webhook_duplicate",
                event_id=event.event_id,
                event_type=event.event_type,
                outcome=receipt.outcome,
            )
            return ReconcileResult(
                event_id=event.event_id,
                event_type=event.event_type,
                outcome=receipt.outcome,
                user_id=receipt.user_id,
                duplicate=True,
            )

        try:
            result = self._dispatch(db, event)
        except UnresolvedUser as exc:
            db.rollback()
            logger.error(
                "webhook_user_unresolved",
                event_id=event.event_id,
                event_type=event.event_type,
                detail=str(exc),
            )
            self._record(db, event, "unresolved", detail=str(exc))
            db.commit()
            return ReconcileResult(event_id=event.event_id, event_type=event.event_type, outcome="unresolved")
        except Exception:
            db.rollback()
            logger.exception("webhook_apply_failed", event_id=event.event_id, event_type=event.event_type)
            raise

        db.commit()
        return result

    # ------------------------------------------------------------------
    def _dispatch(self, db: Session, event: BillingEvent) -> ReconcileResult:
        if isinstance(event, SubscriptionChanged):
            snapshot = event.subscription
            return self._apply(db, event, snapshot, snapshot.metadata, snapshot.customer_ref)

        if isinstance(event, CheckoutCompleted) and event.subscription_ref:
            snapshot = self.gateway.retrieve_subscription(event.subscription_ref)
            metadata = {**snapshot.metadata, **event.metadata}
            return self._apply(db, event, snapshot, metadata, event.customer_ref or snapshot.customer_ref)

        if isinstance(event, InvoicePaid) and event.subscription_ref:
            snapshot = self.gateway.retrieve_subscription(event.subscription_ref)
            return self._apply(db, event, snapshot, snapshot.metadata, event.customer_ref or snapshot.customer_ref)

        if not isinstance(event, IgnoredEvent):
            logger.info("webhook_without_subscription", event_id=event.event_id, event_type=event.event_type)
        self._record(db, event, "ignored")
        return ReconcileResult(event_id=event.event_id, event_type=event.event_type, outcome="ignored")

    def _apply(
        self,
        db: Session,
        event: BillingEvent,
        snapshot: SubscriptionSnapshot,
        metadata: Mapping[str, str],
        customer_ref: str | None,
    ) -> ReconcileResult:
        profile = self.resolve_profile(db, metadata, customer_ref)
        if customer_ref and profile.billing_customer_ref is None:
            self.store.attach_customer_ref(db, profile.user_id, customer_ref, commit=False)

        state = self.target_state(snapshot, event.occurred_at)
        applied = self.store.apply_subscription_state(
            db, profile.user_id, state, event.occurred_at, snapshot.subscription_ref
        )
        outcome = "applied" if applied else "stale"
        if applied:
            logger.info(
                "subscription_applied",
                event_id=event.event_id,
                event_type=event.event_type,
                user_id=profile.user_id,
                plan=state.plan_id,
                status=state.subscription_status,
                quota=state.quota_allowance,
            )
        else:
            logger.warning(
                "subscription_event_stale",
                event_id=event.event_id,
                event_type=event.event_type,
                user_id=profile.user_id,
                occurred_at=event.occurred_at.isoformat(),
            )
        self._record(db, event, outcome, user_id=profile.user_id, subscription_ref=snapshot.subscription_ref)
        return ReconcileResult(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=outcome,
            user_id=profile.user_id,
        )

    def resolve_profile(
        self,
        db: Session,
        metadata: Mapping[str, str],
        customer_ref: str | None,
    ) -> models.BillingProfile:
        """Find the one profile an event belongs to, or raise :class:`UnresolvedUser`."""
        metadata_user = next(
            (metadata[key].strip() for key in METADATA_USER_KEYS if (metadata.get(key) or "").strip()),
            None,
        )
        by_customer = self.store.find_by_customer_ref(db, customer_ref) if customer_ref else None

        if metadata_user is None:
            if by_customer is None:
                raise UnresolvedUser(f"No profile for customer {customer_ref!r} and no user metadata")
            return by_customer

        profile = self.store.get(db, metadata_user)
        if profile is None:
            raise UnresolvedUser(f"Metadata user {metadata_user!r} has no profile")
        if by_customer is not None and by_customer.user_id != profile.user_id:
            raise UnresolvedUser(
                f"Metadata user {metadata_user!r} disagrees with customer owner {by_customer.user_id!r}"
            )
        if customer_ref and profile.billing_customer_ref not in (None, customer_ref):
            raise UnresolvedUser(
                f"Metadata user {metadata_user!r} is linked to a different customer than {customer_ref!r}"
            )
        return profile

    def target_state(self, snapshot: SubscriptionSnapshot, occurred_at: datetime) -> SubscriptionState:
        status = map_subscription_status(snapshot.status)
        plan_id = FREE_PLAN if status == "canceled" else self.catalog.plan_for_price(snapshot.price_ref)
        if plan_id == FREE_PLAN:
            return SubscriptionState(
                plan_id=FREE_PLAN,
                quota_allowance=self.catalog.allowance_for(FREE_PLAN),
                subscription_ref=None,
                subscription_status="canceled" if status == "canceled" else "none",
                cycle_renews_at=occurred_at + timedelta(days=self.settings.quota_cycle_days),
            )
        return SubscriptionState(
            plan_id=plan_id,
            quota_allowance=self.catalog.allowance_for(plan_id),
            subscription_ref=snapshot.subscription_ref,
            subscription_status=status,
            cycle_renews_at=snapshot.current_period_end,
        )

    def _record(
        self,
        db: Session,
        event: BillingEvent,
        outcome: str,
        user_id: str | None = None,
        subscription_ref: str | None = None,
        detail: str | None = None,
    ) -> None:
        db.merge(
            models.WebhookReceipt(
                event_id=event.event_id,
                event_type=event.event_type,
                user_id=user_id,
                subscription_ref=subscription_ref,
                outcome=outcome,
                detail=detail,
                occurred_at=event.occurred_at,
                received_at=datetime.utcnow(),
            )
        )


__all__ = ["ReconcileResult", "SubscriptionReconciler", "SubscriptionSource"]
