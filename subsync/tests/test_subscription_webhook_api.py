"""
POST /webhook contract.

503 when Stripe is not configured, 400 for anything that fails validation,
413 for oversized bodies, 204 once an event is accepted. Reconciliation runs
as a background task, which TestClient completes before returning.
"""
import logging
import time
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from subsync.api.subscription import get_webhook_handler
from subsync.core.config import Settings
from subsync.core.database import get_db_session, users as app_users
from subsync.features.billing.stripe_provider import StripeWebhookVerifier
from subsync.features.billing.webhook_handler import SubscriptionWebhookHandler
from subsync.features.plans.service import SqlSubscriptionPlanRepository, seed_plans
from subsync.features.roles.service import RoleService
from subsync.features.users.service import SqlUserProfileRepository, SqlUserRepository
from subsync.core.metrics import subscription_webhook_events_total
from subsync.main import app
from subsync.models.events import SUBSCRIPTION_CREATED
from subsync.tests.fakes import RecordingPublisher, dumps, stripe_signature, subscription_payload
from sqlalchemy import select

client = TestClient(app)


@pytest.fixture
def use_handler():
    def _use(handler):
        app.dependency_overrides[get_webhook_handler] = lambda: handler
        return handler

    yield _use
    app.dependency_overrides.pop(get_webhook_handler, None)


def post_signed(payload: str, signature=None):
    headers = {"stripe-signature": signature if signature is not None else stripe_signature(payload)}
    return client.post("/webhook", content=payload, headers=headers)


def test_unconfigured_stripe_returns_503_without_parsing(use_handler, make_handler, unconfigured_settings):
    verifier = Mock()
    use_handler(make_handler(settings=unconfigured_settings, verifier=verifier))

    resp = post_signed(dumps(subscription_payload(SUBSCRIPTION_CREATED)))

    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "billing_disabled"
    verifier.verify.assert_not_called()


def test_empty_body_is_rejected(use_handler, make_handler):
    use_handler(make_handler())

    resp = client.post("/webhook", content=b"", headers={"stripe-signature": "t=1,v1=abc"})

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "empty_body"


def test_missing_signature_is_rejected(use_handler, make_handler):
    use_handler(make_handler())

    resp = client.post("/webhook", content=dumps(subscription_payload(SUBSCRIPTION_CREATED)))

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "missing_signature"


def test_bad_signature_is_rejected_before_any_lookup(use_handler, make_handler, fake_store):
    use_handler(make_handler())
    payload = dumps(subscription_payload(SUBSCRIPTION_CREATED))

    resp = post_signed(payload, signature=stripe_signature(payload, secret="whsec_wrong"))

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_signature"
    assert fake_store["profiles"].lookups == []
    assert fake_store["users"].updates == []


def test_rejected_signature_is_logged_once_with_its_cause(use_handler, make_handler, caplog):
    use_handler(make_handler())
    payload = dumps(subscription_payload(SUBSCRIPTION_CREATED))

    with caplog.at_level(logging.INFO, logger="subsync"):
        resp = post_signed(payload, signature=stripe_signature(payload, secret="whsec_wrong"))

    assert resp.status_code == 400
    problems = [r for r in caplog.records if r.levelno >= logging.WARNING]
    assert [r.levelno for r in problems] == [logging.ERROR]
    assert problems[0].error_code == "invalid_signature"
    assert "Invalid signature" in problems[0].getMessage()
    assert problems[0].request_id == resp.headers["x-request-id"]
    assert subscription_webhook_events_total.value({"event_type": "unknown", "outcome": "rejected"}) == 1


def test_unconfigured_stripe_is_logged_once(use_handler, make_handler, unconfigured_settings, caplog):
    use_handler(make_handler(settings=unconfigured_settings))

    with caplog.at_level(logging.INFO, logger="subsync"):
        resp = post_signed(dumps(subscription_payload(SUBSCRIPTION_CREATED)))

    assert resp.status_code == 503
    problems = [r for r in caplog.records if r.levelno >= logging.WARNING]
    assert [r.levelno for r in problems] == [logging.ERROR]
    assert problems[0].error_code == "billing_disabled"


def test_expired_signature_is_rejected(use_handler, make_handler):
    use_handler(make_handler())
    payload = dumps(subscription_payload(SUBSCRIPTION_CREATED))

    resp = post_signed(payload, signature=stripe_signature(payload, timestamp=int(time.time()) - 3600))

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_signature"


def test_malformed_payload_is_rejected(use_handler, make_handler):
    use_handler(make_handler())

    resp = post_signed('{"id": "evt_1", "type": "customer.subscription.created", "data": {}}')

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "invalid_payload"


def test_unhandled_event_type_logs_one_warning(use_handler, stripe_settings, caplog):
    repos = {name: Mock() for name in ("users", "profiles", "plans", "roles", "publisher")}
    use_handler(SubscriptionWebhookHandler(settings=stripe_settings, verifier=StripeWebhookVerifier(), **repos))

    with caplog.at_level(logging.INFO, logger="subsync"):
        resp = post_signed(dumps({"id": "evt_x", "type": "foo.bar", "data": {"object": {}}}))

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "unhandled_event"
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "foo.bar" in warnings[0].getMessage()
    for repo in repos.values():
        assert repo.method_calls == []


def test_oversized_body_returns_413(use_handler, make_handler):
    limited = Settings(STRIPE_SECRET_KEY="sk_test_123", STRIPE_WEBHOOK_SECRET="whsec_test_secret", WEBHOOK_MAX_BODY_BYTES=128)
    use_handler(make_handler(settings=limited))

    resp = post_signed(dumps(subscription_payload(SUBSCRIPTION_CREATED, event_id="evt_" + "x" * 256)))

    assert resp.status_code == 413
    assert resp.json()["error"]["code"] == "payload_too_large"


def test_unknown_customer_is_acknowledged_without_writes(use_handler, make_handler, fake_store):
    use_handler(make_handler())

    resp = post_signed(dumps(subscription_payload(SUBSCRIPTION_CREATED, customer="cus_nobody")))

    assert resp.status_code == 204
    assert fake_store["profiles"].lookups == ["cus_nobody"]
    assert fake_store["users"].updates == []
    assert fake_store["roles"].calls == []
    assert fake_store["publisher"].messages == []


def test_response_carries_request_id(use_handler, make_handler):
    use_handler(make_handler())

    resp = client.post("/webhook", content=b"", headers={"x-request-id": "rid-abc"})

    assert resp.headers["x-request-id"] == "rid-abc"
    assert resp.json()["error"]["request_id"] == "rid-abc"


@pytest.fixture
def sql_handler(db, stripe_settings, use_handler):
    seed_plans([
        {"id": "plan_basic", "name": "Basic", "stripe_price_id": "price_basic", "role_id": "role_basic"},
        {"id": "plan_pro", "name": "Pro", "stripe_price_id": "price_pro", "role_id": "role_pro"},
    ])
    SqlUserRepository().create("u1", "alice")
    SqlUserProfileRepository().link_customer("u1", "cus_1")

    publisher = RecordingPublisher()
    handler = SubscriptionWebhookHandler(
        settings=stripe_settings,
        verifier=StripeWebhookVerifier(),
        users=SqlUserRepository(),
        profiles=SqlUserProfileRepository(),
        plans=SqlSubscriptionPlanRepository(),
        roles=RoleService(),
        publisher=publisher,
    )
    return use_handler(handler)


def test_created_event_end_to_end(sql_handler, caplog):
    payload = dumps(subscription_payload(SUBSCRIPTION_CREATED))

    with caplog.at_level(logging.INFO, logger="subsync"):
        first = post_signed(payload)
    replay = post_signed(payload)

    assert first.status_code == 204
    assert replay.status_code == 204
    assigned = [r for r in caplog.records if r.getMessage() == "role.assigned"]
    assert len(assigned) == 1
    assert assigned[0].request_id == first.headers["x-request-id"]
    assert [r.id for r in RoleService().get_user_roles("u1")] == ["role_basic"]

    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.user_id == "u1")).first()
    assert row.subscription_status == "active"
    assert row.subscription_plan_id == "plan_basic"
    assert row.stripe_subscription_id == "sub_1"

    messages = sql_handler.publisher.messages
    assert len(messages) == 1
    assert messages[0][0] == "u1"
    assert messages[0][2]["stripeSubscriptionId"] == "sub_1"
