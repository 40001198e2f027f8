"""Shared fixtures: isolated databases, fake billing provider and analyzer."""

from __future__ import annotations

import os
import tempfile
from datetime import datetime, timedelta
from typing import Callable

import pytest

# ---------------------------------------------------------------------------
# Configure the environment before any application module reads settings.

_SANDBOX = tempfile.mkdtemp(prefix="ilyzlist-tests-")
os.environ["ILYZLIST_DATA_DIR"] = _SANDBOX
os.environ["ILYZLIST_DATABASE_URL"] = f"sqlite:///{_SANDBOX}/app.db"
os.environ["ILYZLIST_ENABLE_PROMETHEUS"] = "false"
os.environ["ILYZLIST_JWT_SECRET"] = "test-jwt-secret-with-enough-entropy-0123456789"
os.environ["ILYZLIST_STRIPE_API_KEY"] = "sk_test_dummy"
os.environ["ILYZLIST_STRIPE_PRICE_BASIC"] = "price_basic_test"
os.environ["ILYZLIST_STRIPE_PRICE_PREMIUM"] = "price_premium_test"
os.environ["ILYZLIST_STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["ILYZLIST_CRON_SECRET"] = "cron-test-secret"
os.environ["ILYZLIST_RATE_LIMIT_REQUESTS"] = "10000"
os.environ["ILYZLIST_SITE_URL"] = "https://app.ilyzlist.test"

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from ilyzlist.core import models  # noqa: E402
from ilyzlist.core.database import Base  # noqa: E402
from ilyzlist.core.plans import PlanCatalog  # noqa: E402
from ilyzlist.core.settings import get_settings  # noqa: E402
from ilyzlist.services.profiles import ProfileStore  # noqa: E402

from factories import BASIC_PRICE, PREMIUM_PRICE, FakeGateway  # noqa: E402


@pytest.fixture()
def engine(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def settings():
    return get_settings()


@pytest.fixture()
def catalog() -> PlanCatalog:
    return PlanCatalog(price_refs={"basic": BASIC_PRICE, "premium": PREMIUM_PRICE})


@pytest.fixture()
def store(catalog, settings) -> ProfileStore:
    return ProfileStore(catalog, settings)


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def make_profile(db, catalog) -> Callable[..., models.BillingProfile]:
    def _make(
        user_id: str,
        plan_id: str = "free",
        remaining: int | None = None,
        customer_ref: str | None = None,
        subscription_ref: str | None = None,
        subscription_status: str = "none",
        cycle_renews_at: datetime | None = None,
        synced_at: datetime | None = None,
        email: str | None = None,
    ) -> models.BillingProfile:
        allowance = catalog.allowance_for(plan_id)
        profile = models.BillingProfile(
            user_id=user_id,
            email=email or f"{user_id}@example.com",
            plan_id=plan_id,
            quota_allowance=allowance,
            quota_remaining=allowance if remaining is None else remaining,
            billing_customer_ref=customer_ref,
            subscription_ref=subscription_ref,
            subscription_status=subscription_status,
            cycle_renews_at=cycle_renews_at or datetime.utcnow() + timedelta(days=30),
            subscription_synced_at=synced_at,
        )
        db.add(profile)
        db.commit()
        return profile

    return _make
