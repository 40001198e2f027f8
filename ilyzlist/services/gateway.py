"""Stripe-backed billing gateway."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import stripe

from ilyzlist.core.errors import PaymentProviderError
from ilyzlist.core.logging import get_logger
from ilyzlist.core.settings import Settings, get_settings
from ilyzlist.services.events import SubscriptionSnapshot, snapshot_from_subscription

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class CheckoutSession:
    redirect_url: str
    session_ref: str


class StripeGateway:
    """Thin wrapper over the Stripe API returning plain values.

    Every call runs with the configured timeout; any Stripe failure is
    re-raised as :class:`PaymentProviderError` so callers can retry.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    def _client(self):
        if not self.settings.stripe_api_key:
            logger.error("stripe_not_configured")
            raise PaymentProviderError("Stripe API key is not configured")
        stripe.api_key = self.settings.stripe_api_key
        stripe.max_network_retries = self.settings.stripe_max_network_retries
        if not isinstance(stripe.default_http_client, stripe.RequestsClient):
            stripe.default_http_client = stripe.RequestsClient(timeout=self.settings.stripe_timeout_seconds)
        return stripe

    def _call(self, operation: str, func, **params: Any):
        try:
            return func(**params)
        except stripe.StripeError as exc:
            logger.warning("stripe_call_failed", operation=operation, error=str(exc))
            raise PaymentProviderError(f"Stripe {operation} failed: {exc}") from exc

    def create_customer(self, email: str | None, metadata: dict[str, str]) -> str:
        client = self._client()
        params: dict[str, Any] = {"metadata": metadata}
        if email:
            params["email"] = email
        customer = self._call("create_customer", client.Customer.create, **params)
        return customer["id"]

    def create_checkout_session(
        self,
        customer_ref: str,
        price_ref: str,
        metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
    ) -> CheckoutSession:
        client = self._client()
        session = self._call(
            "create_checkout_session",
            client.checkout.Session.create,
            mode="subscription",
            customer=customer_ref,
            line_items=[{"price": price_ref, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            subscription_data={"metadata": metadata},
        )
        return CheckoutSession(redirect_url=session["url"], session_ref=session["id"])

    def retrieve_subscription(self, subscription_ref: str) -> SubscriptionSnapshot:
        client = self._client()
        subscription = self._call("retrieve_subscription", client.Subscription.retrieve, id=subscription_ref)
        return snapshot_from_subscription(subscription)

    def create_portal_session(self, customer_ref: str, return_url: str) -> str:
        client = self._client()
        portal = self._call(
            "create_portal_session",
            client.billing_portal.Session.create,
            customer=customer_ref,
            return_url=return_url,
        )
        return portal["url"]


__all__ = ["CheckoutSession", "StripeGateway"]
