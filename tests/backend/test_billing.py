from __future__ import annotations

from typing import Any

import pytest
import stripe

from firestore_fakes import FakeFirestoreClient
from lingodrill import billing
from lingodrill.config import settings
from lingodrill.store.users import FirestoreSubscriberStore


@pytest.fixture()
def subscribers() -> FirestoreSubscriberStore:
    return FirestoreSubscriberStore(FakeFirestoreClient())


@pytest.fixture(autouse=True)
def _stripe_keys(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "stripe_secret_key", "sk_test_123456789")
    monkeypatch.setattr(settings, "stripe_webhook_secret", "whsec_123456789")


class _EmailRecorder:
    def __init__(self) -> None:
        self.sent: list[tuple[Any, str]] = []

    def __call__(self, template: Any, to: str, **_: Any) -> bool:
        self.sent.append((template, to))
        return True


def test_get_plan_rejects_unknown_plan() -> None:
    assert billing.get_plan(" Annual ").plan_id == "annual"
    with pytest.raises(billing.UnknownPlanError):
        billing.get_plan("weekly")


def test_checkout_requires_secret_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "stripe_secret_key", None)

    with pytest.raises(billing.BillingNotConfiguredError):
        billing.create_checkout_session(plan_id="monthly", email="a@example.com", user_id="u1")


def test_subscription_checkout_carries_trial_and_metadata(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}
    monkeypatch.setattr(stripe.Customer, "list", lambda **kwargs: {"data": []})

    def fake_create(**params: Any) -> dict[str, Any]:
        captured.update(params)
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)

    url, customer_id = billing.create_checkout_session(
        plan_id="quarterly", email="learner@example.com", user_id="user-1", currency="EUR"
    )

    assert url == "https://checkout.stripe.test/cs_test_1"
    assert customer_id is None
    assert captured["mode"] == "subscription"
    assert captured["customer_email"] == "learner@example.com"
    assert captured["metadata"] == {"plan_id": "quarterly", "user_id": "user-1"}
    assert captured["subscription_data"] == {"trial_period_days": 7}
    price_data = captured["line_items"][0]["price_data"]
    assert price_data["currency"] == "eur"
    assert price_data["recurring"] == {"interval": "month", "interval_count": 3}
    assert captured["allow_promotion_codes"] is True


def test_lifetime_checkout_is_one_time_payment_for_existing_customer(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}
    monkeypatch.setattr(stripe.Customer, "list", lambda **kwargs: {"data": [{"id": "cus_1"}]})
    monkeypatch.setattr(
        stripe.checkout.Session,
        "create",
        lambda **params: captured.update(params) or {"id": "cs_2", "url": "https://pay.test/cs_2"},
    )

    _, customer_id = billing.create_checkout_session(
        plan_id="lifetime", email="learner@example.com", user_id="user-1", promotion_code_id="promo_1"
    )

    assert customer_id == "cus_1"
    assert captured["mode"] == "payment"
    assert captured["customer"] == "cus_1"
    assert captured["discounts"] == [{"promotion_code": "promo_1"}]
    assert "subscription_data" not in captured
    assert "recurring" not in captured["line_items"][0]["price_data"]


def test_construct_event_maps_signature_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_construct(payload: bytes, signature: str, secret: str) -> Any:
        raise stripe.SignatureVerificationError("bad", signature)

    monkeypatch.setattr(stripe.Webhook, "construct_event", fake_construct)

    with pytest.raises(billing.WebhookVerificationError):
        billing.construct_event(b"{}", "t=1,v1=abc")
    with pytest.raises(billing.WebhookVerificationError):
        billing.construct_event(b"{}", None)


def test_lifetime_checkout_completion_grants_premium(subscribers: FirestoreSubscriberStore) -> None:
    emails = _EmailRecorder()
    event = {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_1",
                "mode": "payment",
                "customer": "cus_1",
                "customer_email": "learner@example.com",
                "metadata": {"plan_id": "lifetime", "user_id": "user-1"},
            }
        },
    }

    assert billing.handle_webhook_event(event, subscribers, email_sender=emails) is True

    record = subscribers.get_subscriber("learner@example.com")
    assert record["subscribed"] is True
    assert record["subscription_tier"] == "lifetime"
    assert record["subscription_status"] == "lifetime"
    assert subscribers.is_premium("learner@example.com")
    assert [t.value for t, _ in emails.sent] == ["premium"]


def test_subscription_checkout_completion_reads_subscription(
    monkeypatch: pytest.MonkeyPatch, subscribers: FirestoreSubscriberStore
) -> None:
    monkeypatch.setattr(
        stripe.Subscription,
        "retrieve",
        lambda sub_id: {"id": sub_id, "status": "trialing", "trial_end": 1_800_000_000, "current_period_end": 1_800_000_000},
    )
    event = {
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "mode": "subscription",
                "subscription": "sub_1",
                "customer": "cus_1",
                "customer_details": {"email": "learner@example.com"},
                "metadata": {"plan_id": "monthly"},
            }
        },
    }

    billing.handle_webhook_event(event, subscribers, email_sender=_EmailRecorder())

    record = subscribers.get_subscriber("learner@example.com")
    assert record["subscribed"] is True
    assert record["subscription_tier"] == "monthly"
    assert record["trial_end"] == "2027-01-15T08:00:00+00:00"


def test_subscription_deleted_revokes_premium(
    monkeypatch: pytest.MonkeyPatch, subscribers: FirestoreSubscriberStore
) -> None:
    subscribers.upsert_subscriber("learner@example.com", subscribed=True, subscription_status="active")
    monkeypatch.setattr(stripe.Customer, "retrieve", lambda customer_id: {"email": "learner@example.com"})
    emails = _EmailRecorder()
    event = {"type": "customer.subscription.deleted", "data": {"object": {"customer": "cus_1"}}}

    billing.handle_webhook_event(event, subscribers, email_sender=emails)

    record = subscribers.get_subscriber("learner@example.com")
    assert record["subscribed"] is False
    assert record["subscription_status"] == "canceled"
    assert [t.value for t, _ in emails.sent] == ["cancellation"]


def test_unknown_event_is_ignored(subscribers: FirestoreSubscriberStore) -> None:
    event = {"type": "invoice.paid", "data": {"object": {}}}

    assert billing.handle_webhook_event(event, subscribers, email_sender=_EmailRecorder()) is False


def test_refresh_keeps_lifetime_without_calling_stripe(
    monkeypatch: pytest.MonkeyPatch, subscribers: FirestoreSubscriberStore
) -> None:
    subscribers.upsert_subscriber(
        "learner@example.com", subscribed=True, subscription_tier="lifetime", subscription_status="lifetime"
    )

    def fail(**_: Any) -> None:
        raise AssertionError("Stripe should not be called for lifetime members")

    monkeypatch.setattr(stripe.Customer, "list", fail)

    view = billing.refresh_subscription("learner@example.com", subscribers)
    assert view["subscribed"] is True
    assert view["subscription_tier"] == "lifetime"


def test_refresh_picks_active_subscription(
    monkeypatch: pytest.MonkeyPatch, subscribers: FirestoreSubscriberStore
) -> None:
    subscribers.upsert_subscriber("learner@example.com", pending_plan="annual", subscription_status="pending")
    monkeypatch.setattr(stripe.Customer, "list", lambda **kwargs: {"data": [{"id": "cus_9"}]})
    monkeypatch.setattr(
        stripe.Subscription,
        "list",
        lambda **kwargs: {"data": [{"status": "canceled"}, {"status": "active", "current_period_end": 1_800_000_000}]},
    )

    view = billing.refresh_subscription("learner@example.com", subscribers)

    assert view["subscribed"] is True
    assert view["subscription_tier"] == "annual"
    assert view["subscription_status"] == "active"


def test_validate_promo_code(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        stripe.PromotionCode,
        "list",
        lambda **kwargs: {
            "data": [
                {
                    "id": "promo_1",
                    "active": True,
                    "expires_at": None,
                    "coupon": {"id": "SAVE20", "percent_off": 20, "amount_off": None, "currency": None},
                }
            ]
        },
    )

    result = billing.validate_promo_code("SAVE20")
    assert result["valid"] is True
    assert result["discount_type"] == "percent"
    assert result["discount_amount"] == 20

    monkeypatch.setattr(stripe.PromotionCode, "list", lambda **kwargs: {"data": []})
    assert billing.validate_promo_code("NOPE") == {"valid": False, "error": "Invalid promo code"}


@pytest.mark.parametrize(
    ("status", "subscribed"),
    [("trialing", True), ("active", True), ("past_due", False), ("canceled", False)],
)
def test_subscription_updated_tracks_status(
    monkeypatch: pytest.MonkeyPatch, subscribers: FirestoreSubscriberStore, status: str, subscribed: bool
) -> None:
    monkeypatch.setattr(stripe.Customer, "retrieve", lambda customer_id: {"email": "learner@example.com"})
    event = {
        "type": "customer.subscription.updated",
        "data": {
            "object": {
                "customer": "cus_1",
                "status": status,
                "trial_end": None,
                "current_period_end": 1_800_000_000,
            }
        },
    }

    assert billing.handle_webhook_event(event, subscribers, email_sender=_EmailRecorder()) is True

    record = subscribers.get_subscriber("learner@example.com")
    assert record["subscribed"] is subscribed
    assert record["subscription_status"] == status
    assert record["stripe_customer_id"] == "cus_1"
    assert record["subscription_end"] == "2027-01-15T08:00:00+00:00"
    assert "canceled_at" not in record


def test_subscription_updated_records_cancellation_time(
    monkeypatch: pytest.MonkeyPatch, subscribers: FirestoreSubscriberStore
) -> None:
    subscribers.upsert_subscriber("learner@example.com", subscribed=True, subscription_status="active")
    monkeypatch.setattr(stripe.Customer, "retrieve", lambda customer_id: {"email": "learner@example.com"})
    emails = _EmailRecorder()
    event = {
        "type": "customer.subscription.updated",
        "data": {"object": {"customer": "cus_1", "status": "canceled", "canceled_at": 1_799_913_600}},
    }

    billing.handle_webhook_event(event, subscribers, email_sender=emails)

    record = subscribers.get_subscriber("learner@example.com")
    assert record["subscribed"] is False
    assert record["canceled_at"] == "2027-01-14T08:00:00+00:00"
    assert emails.sent == []


def test_redelivered_checkout_sends_premium_email_once(subscribers: FirestoreSubscriberStore) -> None:
    emails = _EmailRecorder()
    event = {
        "id": "evt_1",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "mode": "payment",
                "customer": "cus_1",
                "customer_email": "learner@example.com",
                "metadata": {"plan_id": "lifetime"},
            }
        },
    }

    billing.handle_webhook_event(event, subscribers, email_sender=emails)
    billing.handle_webhook_event(event, subscribers, email_sender=emails)

    assert [t.value for t, _ in emails.sent] == ["premium"]
    assert subscribers.get_subscriber("learner@example.com")["subscription_tier"] == "lifetime"


def test_redelivered_deletion_sends_cancellation_once(
    monkeypatch: pytest.MonkeyPatch, subscribers: FirestoreSubscriberStore
) -> None:
    subscribers.upsert_subscriber("learner@example.com", subscribed=True, subscription_status="active")
    monkeypatch.setattr(stripe.Customer, "retrieve", lambda customer_id: {"email": "learner@example.com"})
    emails = _EmailRecorder()
    event = {"type": "customer.subscription.deleted", "data": {"object": {"customer": "cus_1"}}}

    billing.handle_webhook_event(event, subscribers, email_sender=emails)
    first_canceled_at = subscribers.get_subscriber("learner@example.com")["canceled_at"]
    billing.handle_webhook_event(event, subscribers, email_sender=emails)

    assert [t.value for t, _ in emails.sent] == ["cancellation"]
    assert subscribers.get_subscriber("learner@example.com")["canceled_at"] == first_canceled_at
