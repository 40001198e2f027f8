"""Integration checks for the billing, webhook, admin and analysis endpoints."""

from __future__ import annotations

import time
from typing import Dict

import pytest
from fastapi.testclient import TestClient

from ilyzlist.api.dependencies.database import get_db
from ilyzlist.api.main import create_app
from ilyzlist.api.routers import admin, analysis, billing, webhooks
from ilyzlist.core import models
from ilyzlist.core.errors import PaymentProviderError
from ilyzlist.core.security import create_access_token
from ilyzlist.services.analysis import DrawingAnalysisService
from ilyzlist.services.checkout import CheckoutService
from ilyzlist.services.quota import QuotaService
from ilyzlist.services.reconciler import SubscriptionReconciler

from factories import PREMIUM_PRICE, FakeAnalyzer, event_document, full_analysis, sign_payload, subscription_object


@pytest.fixture()
def analyzer() -> FakeAnalyzer:
    return FakeAnalyzer(responses=[full_analysis(), full_analysis()])


@pytest.fixture()
def app_context(monkeypatch, session_factory, gateway, store, catalog, settings, analyzer):
    """Create an app wired to an isolated database and in-process fakes."""

    quota = QuotaService(store=store, catalog=catalog)
    monkeypatch.setattr(
        billing, "checkout_service", CheckoutService(gateway=gateway, store=store, catalog=catalog, settings=settings)
    )
    monkeypatch.setattr(
        webhooks,
        "reconciler",
        SubscriptionReconciler(gateway=gateway, store=store, catalog=catalog, settings=settings),
    )
    monkeypatch.setattr(admin, "quota_service", quota)
    monkeypatch.setattr(
        analysis,
        "analysis_service",
        DrawingAnalysisService(analyzer=analyzer, quota=quota, store=store, settings=settings),
    )

    app = create_app()

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield {"app": app, "SessionLocal": session_factory}
    app.dependency_overrides.clear()


@pytest.fixture()
def client(app_context) -> TestClient:
    return TestClient(app_context["app"])


def _auth(user_id: str, email: str | None = None) -> Dict[str, str]:
    token = create_access_token({"sub": user_id, "email": email or f"{user_id}@example.com"})
    return {"Authorization": f"Bearer {token}"}


def test_plans_are_listed(client: TestClient) -> None:
    response = client.get("/api/v1/plans")
    assert response.status_code == 200, response.text
    plans = {plan["id"]: plan for plan in response.json()}
    assert plans["free"]["monthly_analyses"] == 1
    assert plans["basic"]["monthly_analyses"] == 15
    assert plans["premium"]["purchasable"] is True
    assert plans["free"]["purchasable"] is False


def test_usage_requires_authentication(client: TestClient) -> None:
    assert client.get("/api/v1/usage").status_code == 401
    response = client.get("/api/v1/usage", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401


def test_usage_creates_free_profile_on_first_use(client: TestClient) -> None:
    response = client.get("/api/v1/usage", headers=_auth("parent-1"))
    assert response.status_code == 200, response.text
    usage = response.json()
    assert usage["plan"] == "free"
    assert usage["quota_remaining"] == usage["quota_allowance"] == 1
    assert usage["can_analyze"] is True
    assert usage["subscription_status"] == "none"


def test_checkout_returns_redirect(client: TestClient, gateway) -> None:
    response = client.post("/api/v1/checkout", json={"plan": "Premium"}, headers=_auth("parent-2"))
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["checkout_url"].startswith("https://checkout.stripe.test/")
    assert gateway.checkout_sessions[0]["price"] == PREMIUM_PRICE
    assert gateway.customers[0]["email"] == "parent-2@example.com"


def test_checkout_errors_are_translated(client: TestClient, gateway) -> None:
    free = client.post("/api/v1/checkout", json={"plan": "free"}, headers=_auth("parent-3"))
    assert free.status_code == 500
    assert "Stripe" not in free.json()["detail"]

    unknown = client.post("/api/v1/checkout", json={"plan": "gold"}, headers=_auth("parent-3"))
    assert unknown.status_code == 500

    gateway.fail_with = PaymentProviderError("timeout")
    unavailable = client.post("/api/v1/checkout", json={"plan": "basic"}, headers=_auth("parent-3"))
    assert unavailable.status_code == 502
    assert unavailable.json()["detail"] == "Payment provider unavailable, please try again."


def test_billing_portal(client: TestClient) -> None:
    missing = client.post("/api/v1/billing-portal", headers=_auth("parent-4"))
    assert missing.status_code == 400

    client.post("/api/v1/checkout", json={"plan": "basic"}, headers=_auth("parent-4"))
    response = client.post(
        "/api/v1/billing-portal", json={"return_url": "https://app.ilyzlist.test/plans"}, headers=_auth("parent-4")
    )
    assert response.status_code == 200, response.text
    assert response.json()["url"].startswith("https://billing.stripe.test/")


def test_webhook_end_to_end_upgrade(client: TestClient, app_context) -> None:
    client.post("/api/v1/checkout", json={"plan": "premium"}, headers=_auth("parent-5"))
    session_maker = app_context["SessionLocal"]
    with session_maker() as session:
        customer_ref = session.get(models.BillingProfile, "parent-5").billing_customer_ref

    subscription = subscription_object(
        "sub_5", customer_ref, PREMIUM_PRICE, metadata={"user_id": "parent-5", "plan_id": "premium"}
    )
    body, header = sign_payload(event_document("evt_api_1", "customer.subscription.created", subscription))

    response = client.post("/api/v1/stripe/webhook", content=body, headers={"Stripe-Signature": header})
    assert response.status_code == 200, response.text
    assert response.json()["outcome"] == "applied"

    usage = client.get("/api/v1/usage", headers=_auth("parent-5")).json()
    assert usage["plan"] == "premium"
    assert usage["quota_remaining"] == usage["quota_allowance"] == 25
    assert usage["subscription_status"] == "active"

    duplicate = client.post("/api/v1/stripe/webhook", content=body, headers={"Stripe-Signature": header})
    assert duplicate.status_code == 200
    assert duplicate.json()["duplicate"] is True


def test_webhook_rejects_tampered_payload(client: TestClient) -> None:
    client.get("/api/v1/usage", headers=_auth("parent-6"))
    subscription = subscription_object("sub_6", "cus_x", PREMIUM_PRICE, metadata={"user_id": "parent-6"})
    body, header = sign_payload(event_document("evt_api_2", "customer.subscription.updated", subscription))
    tampered = body.replace(b"parent-6", b"parent-7")

    response = client.post("/api/v1/stripe/webhook", content=tampered, headers={"Stripe-Signature": header})
    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid webhook"

    missing = client.post("/api/v1/stripe/webhook", content=body)
    assert missing.status_code == 400

    assert client.get("/api/v1/usage", headers=_auth("parent-6")).json()["plan"] == "free"


def test_webhook_unresolved_is_acknowledged(client: TestClient) -> None:
    subscription = subscription_object("sub_7", "cus_nobody", PREMIUM_PRICE)
    body, header = sign_payload(event_document("evt_api_3", "customer.subscription.updated", subscription))
    response = client.post("/api/v1/stripe/webhook", content=body, headers={"Stripe-Signature": header})
    assert response.status_code == 200
    assert response.json()["outcome"] == "unresolved"


def test_webhook_apply_failure_asks_for_redelivery(client: TestClient, gateway) -> None:
    client.get("/api/v1/usage", headers=_auth("parent-8"))
    session = {"id": "cs_8", "customer": "cus_8", "subscription": "sub_missing", "metadata": {"user_id": "parent-8"}}
    body, header = sign_payload(event_document("evt_api_4", "checkout.session.completed", session))
    response = client.post("/api/v1/stripe/webhook", content=body, headers={"Stripe-Signature": header})
    assert response.status_code == 500


def test_reset_quotas_requires_cron_secret(client: TestClient) -> None:
    assert client.post("/api/v1/admin/reset-quotas").status_code == 401
    wrong = client.post("/api/v1/admin/reset-quotas", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401


def test_reset_quotas_refills(client: TestClient, app_context, analyzer) -> None:
    headers = _auth("parent-9")
    analysed = client.post("/api/v1/analyses", json={"image_url": "https://cdn.test/a.png"}, headers=headers)
    assert analysed.status_code == 200, analysed.text
    assert client.get("/api/v1/usage", headers=headers).json()["quota_remaining"] == 0

    response = client.post("/api/v1/admin/reset-quotas", headers={"Authorization": "Bearer cron-test-secret"})
    assert response.status_code == 200, response.text
    assert response.json() == {"updated": 1, "due_only": False}
    assert client.get("/api/v1/usage", headers=headers).json()["quota_remaining"] == 1


def test_analysis_quota_exhaustion_returns_upgrade_prompt(client: TestClient, analyzer) -> None:
    headers = _auth("parent-10")
    first = client.post(
        "/api/v1/analyses", json={"image_url": "https://cdn.test/b.png", "child_age": 5}, headers=headers
    )
    assert first.status_code == 200, first.text
    assert first.json()["quota_remaining"] == 0

    cached = client.post(
        "/api/v1/analyses",
        json={"image_url": "https://cdn.test/b.png", "drawing_id": first.json()["drawing_id"]},
        headers=headers,
    )
    assert cached.status_code == 200
    assert cached.json()["from_cache"] is True

    second = client.post("/api/v1/analyses", json={"image_url": "https://cdn.test/c.png"}, headers=headers)
    assert second.status_code == 402
    body = second.json()
    assert body["code"] == "QUOTA_EXHAUSTED"
    assert body["plan"] == "free"
    assert body["upgrade_url"] == "https://app.ilyzlist.test/plans"
    assert len(analyzer.calls) == 1


def test_webhook_signature_tolerance(client: TestClient) -> None:
    subscription = subscription_object("sub_11", "cus_11", PREMIUM_PRICE)
    body, header = sign_payload(
        event_document("evt_api_5", "customer.subscription.updated", subscription), timestamp=int(time.time()) - 3600
    )
    response = client.post("/api/v1/stripe/webhook", content=body, headers={"Stripe-Signature": header})
    assert response.status_code == 400


def test_webhook_reconciles_in_worker_thread(client: TestClient, monkeypatch) -> None:
    calls = []
    original = webhooks.run_in_threadpool

    async def recording(func, *args, **kwargs):
        calls.append(func)
        return await original(func, *args, **kwargs)

    monkeypatch.setattr(webhooks, "run_in_threadpool", recording)
    subscription = subscription_object("sub_12", "cus_nobody", PREMIUM_PRICE)
    body, header = sign_payload(event_document("evt_api_6", "customer.subscription.updated", subscription))

    response = client.post("/api/v1/stripe/webhook", content=body, headers={"Stripe-Signature": header})

    assert response.status_code == 200
    assert calls == [webhooks.reconciler.handle_webhook]
