# subsync/conftest.py
import logging

import pytest

from subsync.core.config import Settings
from subsync.core.metrics import METRICS
from subsync.features.billing.stripe_provider import StripeWebhookVerifier
from subsync.features.billing.webhook_handler import SubscriptionWebhookHandler
from subsync.models.plan import SubscriptionPlan
from subsync.models.user import UserAccount, UserProfile
from subsync.tests.fakes import (
    WEBHOOK_SECRET,
    FakePlanRepository,
    FakeProfileRepository,
    FakeRoleAssigner,
    FakeUserRepository,
    RecordingPublisher,
)


@pytest.fixture(autouse=True)
def reset_metrics():
    """Counters are process-wide; start every test from zero."""
    METRICS.reset()
    yield


@pytest.fixture
def stripe_settings():
    return Settings(
        STRIPE_SECRET_KEY="sk_test_123",
        STRIPE_WEBHOOK_SECRET=WEBHOOK_SECRET,
        DATABASE_URL="sqlite://",
    )


@pytest.fixture
def unconfigured_settings():
    return Settings(STRIPE_SECRET_KEY=None, STRIPE_WEBHOOK_SECRET=None)


@pytest.fixture
def db(tmp_path):
    """
    Fresh sqlite database per test.

    Points the global engine at a file under tmp_path, creates the schema,
    and disposes the engine afterwards.
    """
    from subsync.core.database import create_all_tables, dispose_engine, init_engine

    init_engine(f"sqlite:///{tmp_path / 'subsync_test.db'}")
    create_all_tables()
    yield
    dispose_engine()


@pytest.fixture
def catalog():
    """Two plans granting distinct roles, plus a third sharing basic's role."""
    return [
        SubscriptionPlan(id="plan_basic", name="Basic", stripe_price_id="price_basic", role_id="role_basic"),
        SubscriptionPlan(id="plan_pro", name="Pro", stripe_price_id="price_pro", role_id="role_pro"),
        SubscriptionPlan(id="plan_basic_yearly", name="Basic yearly", stripe_price_id="price_basic_yearly", role_id="role_basic"),
    ]


@pytest.fixture
def fake_store(catalog):
    """In-memory repositories seeded with user u1 linked to customer cus_1."""
    return {
        "users": FakeUserRepository([UserAccount(user_id="u1", username="alice")]),
        "profiles": FakeProfileRepository([UserProfile(user_id="u1", stripe_customer_id="cus_1")]),
        "plans": FakePlanRepository(catalog),
        "roles": FakeRoleAssigner(),
        "publisher": RecordingPublisher(),
    }


@pytest.fixture
def make_handler(stripe_settings, fake_store):
    def _make(settings=None, **overrides):
        collaborators = {**fake_store, **overrides}
        return SubscriptionWebhookHandler(
            settings=settings or stripe_settings,
            verifier=collaborators.pop("verifier", StripeWebhookVerifier()),
            logger=logging.getLogger("subsync.subscription.webhook"),
            **collaborators,
        )

    return _make
