"""
Test Stripe webhook reconciliation (POST /api/webhooks) and the dead-letter log.
"""
import time
from datetime import datetime

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from fitai.core.database import get_db_session, webhook_failures
from fitai.features.billing import service as billing_service
from fitai.features.profiles import service as profile_service
from fitai.models.identity import Identity
from fitai.models.profile import ActiveSubscription, LapsedSubscription, Unsubscribed
from fitai.tests.mocks import signed_event, stripe_event, sign_stripe_payload


SECRET = "whsec_test_secret"


@pytest.fixture
def u1(stripe_settings):
    profile, _ = profile_service.ensure_profile(Identity(user_id="u1", email="u1@example.com"))
    return profile


@pytest.fixture
def subscribed_u1(u1):
    profile_service.activate_subscription("u1", "sub_1", "month")
    return profile_service.get_profile("u1")


def _checkout_completed(user_id="u1", plan_type="month", subscription="sub_1"):
    return {
        "id": "cs_test_1",
        "object": "checkout.session",
        "subscription": subscription,
        "metadata": {"clerkUserId": user_id, "planType": plan_type},
    }


def _post(client, event_type, data_object, event_id="evt_test_1"):
    body, headers = signed_event(event_type, data_object, SECRET, event_id=event_id)
    return client.post("/api/webhooks", content=body, headers=headers)


def _failure_rows():
    with get_db_session() as session:
        return session.execute(select(webhook_failures)).fetchall()


def test_checkout_completed_activates_subscription(client, u1):
    resp = _post(client, "checkout.session.completed", _checkout_completed())

    assert resp.status_code == 200
    assert resp.json() == {}
    profile = profile_service.get_profile("u1")
    assert profile.subscription_active is True
    assert profile.subscription_tier == "month"
    assert profile.stripe_subscription_id == "sub_1"
    assert profile.subscription == ActiveSubscription(tier="month", subscription_id="sub_1")


def test_redelivered_event_is_idempotent(client, u1):
    _post(client, "checkout.session.completed", _checkout_completed())
    first = profile_service.get_profile("u1")

    resp = _post(client, "checkout.session.completed", _checkout_completed())

    assert resp.status_code == 200
    second = profile_service.get_profile("u1")
    assert second.subscription == first.subscription
    assert (second.subscription_active, second.subscription_tier, second.stripe_subscription_id) == (
        first.subscription_active,
        first.subscription_tier,
        first.stripe_subscription_id,
    )


def test_checkout_accepts_expanded_subscription_object(client, u1):
    resp = _post(client, "checkout.session.completed", _checkout_completed(subscription={"id": "sub_9", "object": "subscription"}))

    assert resp.status_code == 200
    assert profile_service.get_profile("u1").stripe_subscription_id == "sub_9"


@pytest.mark.parametrize(
    "line",
    [
        {"id": "il_1", "subscription": "sub_1"},
        {"id": "il_1", "parent": {"subscription_item_details": {"subscription": "sub_1"}}},
    ],
    ids=["legacy-line", "parent-details"],
)
def test_invoice_payment_failed_deactivates_but_keeps_link(client, subscribed_u1, line):
    invoice = {"id": "in_1", "object": "invoice", "lines": {"object": "list", "data": [line]}}

    resp = _post(client, "invoice.payment_failed", invoice)

    assert resp.status_code == 200
    profile = profile_service.get_profile("u1")
    assert profile.subscription_active is False
    assert profile.subscription_tier == "month"
    assert profile.stripe_subscription_id == "sub_1"
    assert isinstance(profile.subscription, LapsedSubscription)


def test_subscription_deleted_unlinks(client, subscribed_u1):
    resp = _post(client, "customer.subscription.deleted", {"id": "sub_1", "object": "subscription"})

    assert resp.status_code == 200
    profile = profile_service.get_profile("u1")
    assert profile.subscription_active is False
    assert profile.stripe_subscription_id is None
    assert profile.subscription == Unsubscribed()


def test_invalid_signature_is_rejected_without_mutation(client, u1):
    body = stripe_event("checkout.session.completed", _checkout_completed())
    headers = {"stripe-signature": sign_stripe_payload(body, "whsec_wrong"), "content-type": "application/json"}

    resp = client.post("/api/webhooks", content=body, headers=headers)

    assert resp.status_code == 400
    assert "error" in resp.json()
    assert profile_service.get_profile("u1").subscription_active is False


def test_missing_signature_is_rejected(client, u1):
    body = stripe_event("checkout.session.completed", _checkout_completed())

    resp = client.post("/api/webhooks", content=body, headers={"content-type": "application/json"})

    assert resp.status_code == 400
    assert profile_service.get_profile("u1").stripe_subscription_id is None


def test_tampered_body_is_rejected(client, u1):
    body, headers = signed_event("checkout.session.completed", _checkout_completed(), SECRET)
    tampered = body.replace(b'"month"', b'"year"')

    resp = client.post("/api/webhooks", content=tampered, headers=headers)

    assert resp.status_code == 400
    assert profile_service.get_profile("u1").subscription_tier is None


def test_unknown_event_type_is_acknowledged(client, u1):
    resp = _post(client, "customer.created", {"id": "cus_1", "object": "customer"})

    assert resp.status_code == 200
    assert resp.json() == {}


def test_checkout_without_user_metadata_is_skipped(client, u1):
    session = _checkout_completed()
    session["metadata"] = {}

    resp = _post(client, "checkout.session.completed", session)

    assert resp.status_code == 200
    assert profile_service.get_profile("u1").subscription_active is False


def test_checkout_for_unknown_profile_is_skipped(client, stripe_settings):
    resp = _post(client, "checkout.session.completed", _checkout_completed(user_id="ghost"))

    assert resp.status_code == 200
    assert profile_service.get_profile("ghost") is None
    assert _failure_rows() == []


def test_invoice_for_unknown_subscription_is_skipped(client, u1):
    invoice = {"id": "in_1", "lines": {"data": [{"subscription": "sub_unknown"}]}}

    resp = _post(client, "invoice.payment_failed", invoice)

    assert resp.status_code == 200


def test_unexpected_handler_error_returns_400(client, u1, monkeypatch):
    def explode(obj):
        raise RuntimeError("handler blew up")

    monkeypatch.setitem(billing_service.EVENT_HANDLERS, "checkout.session.completed", explode)

    resp = _post(client, "checkout.session.completed", _checkout_completed())

    assert resp.status_code == 400
    assert resp.json() == {"error": "handler blew up"}


def test_storage_failure_is_acknowledged_and_dead_lettered(client, u1, monkeypatch):
    real_activate = profile_service.activate_subscription
    calls = []

    def flaky_activate(user_id, subscription_id, tier):
        calls.append(user_id)
        if len(calls) == 1:
            raise OperationalError("UPDATE profiles", {}, Exception("database is locked"))
        return real_activate(user_id, subscription_id, tier)

    monkeypatch.setattr(profile_service, "activate_subscription", flaky_activate)
    monkeypatch.setattr(billing_service.settings, "ADMIN_KEY", "admin-secret")

    resp = _post(client, "checkout.session.completed", _checkout_completed(), event_id="evt_dead_1")

    assert resp.status_code == 200
    assert profile_service.get_profile("u1").subscription_active is False
    rows = _failure_rows()
    assert len(rows) == 1
    assert rows[0].stripe_event_id == "evt_dead_1"
    assert rows[0].event_type == "checkout.session.completed"
    assert rows[0].replayed_at is None

    admin = {"X-Admin-Key": "admin-secret"}
    listing = client.get("/api/admin/webhook-failures", headers=admin)
    assert listing.status_code == 200
    assert listing.json()["count"] == 1
    assert listing.json()["failures"][0]["event_id"] == "evt_dead_1"

    replay = client.post("/api/admin/webhook-failures/replay", headers=admin)
    assert replay.status_code == 200
    assert replay.json() == {"replayed": 1, "failed": 0, "skipped": 0}

    profile = profile_service.get_profile("u1")
    assert profile.subscription == ActiveSubscription(tier="month", subscription_id="sub_1")
    assert client.get("/api/admin/webhook-failures", headers=admin).json()["count"] == 0
    assert client.get("/api/admin/webhook-failures?include_replayed=true", headers=admin).json()["count"] == 1


def test_replay_leaves_still_failing_rows_pending(u1, monkeypatch):
    def always_locked(user_id, subscription_id, tier):
        raise OperationalError("UPDATE profiles", {}, Exception("database is locked"))

    monkeypatch.setattr(profile_service, "activate_subscription", always_locked)
    event = billing_service.BillingWebhookEvent(
        event_id="evt_dead_2",
        event_type="checkout.session.completed",
        data_object=_checkout_completed(),
    )

    assert billing_service.apply_event(event) is False
    assert billing_service.replay_webhook_failures() == {"replayed": 0, "failed": 1, "skipped": 0}
    # The failed replay must not add a second dead-letter row
    assert len(_failure_rows()) == 1
    assert len(billing_service.list_webhook_failures()) == 1


def test_replay_skips_checkout_superseded_by_later_cancellation(u1, monkeypatch):
    real_activate = profile_service.activate_subscription
    calls = []

    def flaky_activate(user_id, subscription_id, tier):
        calls.append(user_id)
        if len(calls) == 1:
            raise OperationalError("UPDATE profiles", {}, Exception("database is locked"))
        return real_activate(user_id, subscription_id, tier)

    monkeypatch.setattr(profile_service, "activate_subscription", flaky_activate)
    checkout = billing_service.BillingWebhookEvent(
        event_id="evt_checkout_lost",
        event_type="checkout.session.completed",
        data_object=_checkout_completed(),
    )
    assert billing_service.apply_event(checkout) is False

    # Newer state lands before anyone replays: linked, then the subscription ends
    real_activate("u1", "sub_1", "month")
    deleted = billing_service.BillingWebhookEvent(
        event_id="evt_sub_deleted",
        event_type="customer.subscription.deleted",
        data_object={"id": "sub_1", "object": "subscription"},
    )
    assert billing_service.apply_event(deleted) is True
    assert profile_service.get_profile("u1").subscription == Unsubscribed()

    assert billing_service.replay_webhook_failures() == {"replayed": 0, "failed": 0, "skipped": 1}

    profile = profile_service.get_profile("u1")
    assert profile.subscription_active is False
    assert profile.stripe_subscription_id is None
    assert len(calls) == 1
    assert billing_service.list_webhook_failures() == []
    assert len(billing_service.list_webhook_failures(include_replayed=True)) == 1


def test_replay_skips_event_older_than_profile_update(subscribed_u1):
    stale_invoice = billing_service.BillingWebhookEvent(
        event_id="evt_old_invoice",
        event_type="invoice.payment_failed",
        data_object={"id": "in_old", "lines": {"data": [{"subscription": "sub_1"}]}},
        created=int(time.time()) - 3600,
    )
    billing_service.record_webhook_failure(stale_invoice, RuntimeError("database is locked"))

    assert billing_service.replay_webhook_failures() == {"replayed": 0, "failed": 0, "skipped": 1}
    assert profile_service.get_profile("u1").subscription_active is True


def test_dead_letter_keeps_event_creation_time(u1):
    event = billing_service.BillingWebhookEvent(
        event_id="evt_timed",
        event_type="customer.subscription.deleted",
        data_object={"id": "sub_gone"},
        created=1700000000,
    )
    billing_service.record_webhook_failure(event, RuntimeError("database is locked"))

    row = _failure_rows()[0]
    assert row.event_created_at.replace(tzinfo=None) == datetime(2023, 11, 14, 22, 13, 20)
    assert row.payload["created"] == 1700000000


def test_checkout_with_unknown_plan_type_stores_no_tier(client, u1):
    resp = _post(client, "checkout.session.completed", _checkout_completed(plan_type="lifetime-premium-" + "x" * 16))

    assert resp.status_code == 200
    profile = profile_service.get_profile("u1")
    assert profile.subscription_active is True
    assert profile.stripe_subscription_id == "sub_1"
    assert profile.subscription_tier is None
    assert _failure_rows() == []
