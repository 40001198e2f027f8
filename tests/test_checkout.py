"""Checkout initiation and billing-portal sessions."""

from __future__ import annotations

import pytest

from ilyzlist.core import models
from ilyzlist.core.errors import PaymentProviderError, PlanNotConfigured, ProfileNotFound, UnknownPlan
from ilyzlist.core.plans import PlanCatalog
from ilyzlist.services.checkout import CheckoutService

from factories import BASIC_PRICE, PREMIUM_PRICE


@pytest.fixture()
def checkout(gateway, store, catalog, settings) -> CheckoutService:
    return CheckoutService(gateway=gateway, store=store, catalog=catalog, settings=settings)


def test_start_checkout_creates_and_persists_customer(db, gateway, checkout: CheckoutService) -> None:
    session = checkout.start_checkout(db, "user-1", "parent@example.com", "basic")

    assert session.redirect_url.startswith("https://checkout.stripe.test/")
    assert gateway.customers == [{"id": "cus_0001", "email": "parent@example.com", "metadata": {"user_id": "user-1"}}]
    created = gateway.checkout_sessions[0]
    assert created["price"] == BASIC_PRICE
    assert created["customer"] == "cus_0001"
    assert created["metadata"] == {"user_id": "user-1", "plan_id": "basic"}
    assert created["success_url"] == "https://app.ilyzlist.test/plans/payment-confirmation?success=true"
    assert created["cancel_url"] == "https://app.ilyzlist.test/plans/payment-confirmation?canceled=true"

    profile = db.get(models.BillingProfile, "user-1", populate_existing=True)
    assert profile.billing_customer_ref == "cus_0001"
    # Initiation never changes plan or quota.
    assert profile.plan_id == "free"
    assert profile.quota_remaining == 1


def test_retry_reuses_existing_customer(db, gateway, checkout: CheckoutService) -> None:
    checkout.start_checkout(db, "user-2", "p@example.com", "basic")
    checkout.start_checkout(db, "user-2", "p@example.com", "premium")

    assert len(gateway.customers) == 1
    assert [s["customer"] for s in gateway.checkout_sessions] == ["cus_0001", "cus_0001"]
    assert gateway.checkout_sessions[1]["price"] == PREMIUM_PRICE


def test_customer_persisted_even_if_session_creation_fails(db, gateway, checkout: CheckoutService) -> None:
    original = gateway.create_checkout_session

    def failing_session(*args, **kwargs):
        raise PaymentProviderError("timeout")

    gateway.create_checkout_session = failing_session
    with pytest.raises(PaymentProviderError):
        checkout.start_checkout(db, "user-3", "p@example.com", "premium")

    gateway.create_checkout_session = original
    checkout.start_checkout(db, "user-3", "p@example.com", "premium")
    assert len(gateway.customers) == 1


def test_lost_customer_race_keeps_first_reference(db, store, make_profile) -> None:
    make_profile("user-4")
    assert store.attach_customer_ref(db, "user-4", "cus_first") == "cus_first"
    assert store.attach_customer_ref(db, "user-4", "cus_second") == "cus_first"
    assert db.get(models.BillingProfile, "user-4", populate_existing=True).billing_customer_ref == "cus_first"


def test_unconfigured_and_unknown_plans(db, gateway, store, settings) -> None:
    service = CheckoutService(gateway=gateway, store=store, catalog=PlanCatalog(price_refs={}), settings=settings)
    with pytest.raises(PlanNotConfigured):
        service.start_checkout(db, "user-5", None, "basic")
    with pytest.raises(UnknownPlan):
        service.start_checkout(db, "user-5", None, "gold")
    assert gateway.customers == []


def test_provider_unreachable(db, gateway, checkout: CheckoutService) -> None:
    gateway.fail_with = PaymentProviderError("connection reset")
    with pytest.raises(PaymentProviderError) as excinfo:
        checkout.start_checkout(db, "user-6", None, "basic")
    assert excinfo.value.retryable


def test_billing_portal_requires_customer(db, gateway, make_profile, checkout: CheckoutService) -> None:
    make_profile("no-customer")
    with pytest.raises(ProfileNotFound):
        checkout.open_billing_portal(db, "no-customer")

    make_profile("with-customer", customer_ref="cus_9")
    url = checkout.open_billing_portal(db, "with-customer")
    assert url.endswith("cus_9")
    assert gateway.portal_sessions[0]["return_url"] == "https://app.ilyzlist.test/account"
