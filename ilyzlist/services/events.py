"""Billing-provider webhook events, verified and parsed into tagged variants."""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

import stripe

from ilyzlist.core.errors import InvalidSignature, MalformedEvent
from ilyzlist.core.logging import get_logger

logger = get_logger(__name__)

SUBSCRIPTION_EVENT_TYPES = frozenset(
    {
        "customer.subscription.created",
        "customer.subscription.updated",
        "customer.subscription.resumed",
        "customer.subscription.paused",
        "customer.subscription.deleted",
    }
)
CHECKOUT_COMPLETED = "checkout.session.completed"
INVOICE_PAID = "invoice.payment_succeeded"

_STATUS_MAP = {
    "active": "active",
    "trialing": "active",
    "past_due": "past_due",
    "unpaid": "past_due",
    "incomplete": "past_due",
    "paused": "past_due",
    "canceled": "canceled",
    "incomplete_expired": "canceled",
}


@dataclass(frozen=True, slots=True)
class SubscriptionSnapshot:
    subscription_ref: str
    customer_ref: str | None
    price_ref: str | None
    status: str
    current_period_end: datetime | None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CheckoutCompleted:
    event_id: str
    event_type: str
    occurred_at: datetime
    session_ref: str
    customer_ref: str | None
    subscription_ref: str | None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class SubscriptionChanged:
    event_id: str
    event_type: str
    occurred_at: datetime
    subscription: SubscriptionSnapshot


@dataclass(frozen=True, slots=True)
class InvoicePaid:
    event_id: str
    event_type: str
    occurred_at: datetime
    invoice_ref: str
    customer_ref: str | None
    subscription_ref: str | None


@dataclass(frozen=True, slots=True)
class IgnoredEvent:
    event_id: str
    event_type: str
    occurred_at: datetime


BillingEvent = CheckoutCompleted | SubscriptionChanged | InvoicePaid | IgnoredEvent


def from_timestamp(value: Any) -> datetime | None:
    """Convert a provider epoch timestamp into a naive UTC datetime."""
    if value is None or isinstance(value, bool):
        return None
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return None
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)


def map_subscription_status(raw: str | None) -> str:
    """Collapse the provider's subscription lifecycle into none/active/past_due/canceled."""
    return _STATUS_MAP.get((raw or "").strip().lower(), "none")


def verify_webhook(
    payload: bytes,
    sig_header: str | None,
    secrets: Sequence[tuple[str, str]],
    tolerance: int = 300,
) -> dict[str, Any]:
    """Authenticate a raw webhook body against every configured secret.

    Returns the decoded JSON document once a secret verifies. Raises
    :class:`InvalidSignature` when no secret matches and
    :class:`MalformedEvent` when an authentic body is not a JSON object.
    """
    if not sig_header:
        logger.error("webhook_signature_missing")
        raise InvalidSignature("Missing Stripe-Signature header")
    if not secrets:
        logger.error("webhook_secret_not_configured")
        raise InvalidSignature("No webhook secret configured")
    try:
        body = payload.decode("utf-8")
    except UnicodeDecodeError:
        logger.error("webhook_payload_not_utf8")
        raise InvalidSignature("Webhook payload is not valid UTF-8") from None

    tried: list[str] = []
    for label, secret in secrets:
        try:
            stripe.WebhookSignature.verify_header(body, sig_header, secret, tolerance)
        except stripe.SignatureVerificationError as exc:
            tried.append(f"{label}({exc})")
            continue
        logger.info("webhook_signature_verified", secret=label)
        break
    else:
        logger.error("webhook_signature_invalid", tried=tried)
        raise InvalidSignature("No signatures matched")

    try:
        document = json.loads(body)
    except json.JSONDecodeError as exc:
        raise MalformedEvent("Webhook payload is not JSON") from exc
    if not isinstance(document, dict):
        raise MalformedEvent("Webhook payload is not an object")
    return document


def _ref(value: Any) -> str | None:
    """Return an object id whether the field is expanded or a bare string."""
    if isinstance(value, Mapping):
        value = value.get("id")
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _metadata(value: Any) -> dict[str, str]:
    if not isinstance(value, Mapping):
        return {}
    return {str(key): str(item) for key, item in value.items() if item is not None}


def _first_item(subscription: Mapping[str, Any]) -> Mapping[str, Any]:
    items = subscription.get("items")
    data = items.get("data") if isinstance(items, Mapping) else None
    if isinstance(data, list) and data and isinstance(data[0], Mapping):
        return data[0]
    return {}


def snapshot_from_subscription(subscription: Mapping[str, Any]) -> SubscriptionSnapshot:
    """Build a :class:`SubscriptionSnapshot` from a provider subscription object."""
    subscription_ref = _ref(subscription.get("id"))
    if not subscription_ref:
        raise MalformedEvent("Subscription object without id")
    item = _first_item(subscription)
    period_end = subscription.get("current_period_end")
    if period_end is None:
        # Newer API versions only report the period on subscription items.
        period_end = item.get("current_period_end")
    return SubscriptionSnapshot(
        subscription_ref=subscription_ref,
        customer_ref=_ref(subscription.get("customer")),
        price_ref=_ref(item.get("price")),
        status=str(subscription.get("status") or ""),
        current_period_end=from_timestamp(period_end),
        metadata=_metadata(subscription.get("metadata")),
    )


def _invoice_subscription(invoice: Mapping[str, Any]) -> str | None:
    ref = _ref(invoice.get("subscription"))
    if ref:
        return ref
    parent = invoice.get("parent")
    if isinstance(parent, Mapping):
        details = parent.get("subscription_details")
        if isinstance(details, Mapping):
            return _ref(details.get("subscription"))
    return None


def parse_event(document: Mapping[str, Any]) -> BillingEvent:
    """Validate a verified webhook document and return its tagged variant."""
    event_id = document.get("id")
    event_type = document.get("type")
    occurred_at = from_timestamp(document.get("created"))
    data = document.get("data")
    obj = data.get("object") if isinstance(data, Mapping) else None
    if not isinstance(event_id, str) or not event_id or not isinstance(event_type, str):
        raise MalformedEvent("Event without id or type")
    if occurred_at is None:
        raise MalformedEvent(f"Event {event_id} without creation time")
    if not isinstance(obj, Mapping):
        raise MalformedEvent(f"Event {event_id} without data object")

    if event_type == CHECKOUT_COMPLETED:
        session_ref = _ref(obj.get("id"))
        if not session_ref:
            raise MalformedEvent(f"Event {event_id}: checkout session without id")
        return CheckoutCompleted(
            event_id=event_id,
            event_type=event_type,
            occurred_at=occurred_at,
            session_ref=session_ref,
            customer_ref=_ref(obj.get("customer")),
            subscription_ref=_ref(obj.get("subscription")),
            metadata=_metadata(obj.get("metadata")),
        )

    if event_type in SUBSCRIPTION_EVENT_TYPES:
        snapshot = snapshot_from_subscription(obj)
        if event_type == "customer.subscription.deleted" and snapshot.status != "canceled":
            snapshot = SubscriptionSnapshot(
                subscription_ref=snapshot.subscription_ref,
                customer_ref=snapshot.customer_ref,
                price_ref=snapshot.price_ref,
                status="canceled",
                current_period_end=snapshot.current_period_end,
                metadata=snapshot.metadata,
            )
        return SubscriptionChanged(
            event_id=event_id,
            event_type=event_type,
            occurred_at=occurred_at,
            subscription=snapshot,
        )

    if event_type == INVOICE_PAID:
        invoice_ref = _ref(obj.get("id"))
        if not invoice_ref:
            raise MalformedEvent(f"Event {event_id}: invoice without id")
        return InvoicePaid(
            event_id=event_id,
            event_type=event_type,
            occurred_at=occurred_at,
            invoice_ref=invoice_ref,
            customer_ref=_ref(obj.get("customer")),
            subscription_ref=_invoice_subscription(obj),
        )

    return IgnoredEvent(event_id=event_id, event_type=event_type, occurred_at=occurred_at)


__all__ = [
    "BillingEvent",
    "CheckoutCompleted",
    "IgnoredEvent",
    "InvoicePaid",
    "SubscriptionChanged",
    "SubscriptionSnapshot",
    "from_timestamp",
    "map_subscription_status",
    "parse_event",
    "snapshot_from_subscription",
    "verify_webhook",
]
