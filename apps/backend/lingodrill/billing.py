"""Stripe billing: checkout sessions, webhooks, subscription refresh and promo codes.

購読状態の正は Stripe 側にあり、`subscribers` コレクションはその写しとして
Webhook と `/api/billing/subscription` の再同期で更新する。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable

import stripe

from .config import settings
from .emailer import EmailTemplate, send_email
from .logging import logger
from .store.users import FirestoreSubscriberStore

ACTIVE_STATUSES = frozenset({"active", "trialing"})
LIFETIME_STATUS = "lifetime"


class BillingNotConfiguredError(RuntimeError):
    """Raised when the Stripe secret key (or webhook secret) is missing."""


class UnknownPlanError(ValueError):
    pass


class WebhookVerificationError(ValueError):
    pass


@dataclass(frozen=True)
class Plan:
    plan_id: str
    name: str
    description: str
    unit_amount: int
    interval: str | None = None
    interval_count: int = 1
    trial_period_days: int | None = None

    @property
    def is_one_time(self) -> bool:
        return self.interval is None


PLANS: dict[str, Plan] = {
    "monthly": Plan(
        plan_id="monthly",
        name="Monthly Premium",
        description="Full access, cancel anytime",
        unit_amount=499,
        interval="month",
        interval_count=1,
        trial_period_days=7,
    ),
    "quarterly": Plan(
        plan_id="quarterly",
        name="Quarterly Premium",
        description="Save 13% vs monthly",
        unit_amount=1299,
        interval="month",
        interval_count=3,
        trial_period_days=7,
    ),
    "annual": Plan(
        plan_id="annual",
        name="Annual Premium",
        description="Save 25%, billed annually",
        unit_amount=4499,
        interval="year",
        interval_count=1,
        trial_period_days=7,
    ),
    "lifetime": Plan(
        plan_id="lifetime",
        name="Lifetime Access",
        description="Pay once, get lifetime access to all current and future features",
        unit_amount=11999,
    ),
}


def get_plan(plan_id: str) -> Plan:
    plan = PLANS.get((plan_id or "").strip().lower())
    if plan is None:
        raise UnknownPlanError(f"Invalid plan ID: {plan_id}")
    return plan


def _configure_stripe() -> None:
    if not settings.stripe_secret_key:
        raise BillingNotConfiguredError("STRIPE_SECRET_KEY is not set")
    stripe.api_key = settings.stripe_secret_key
    stripe.api_version = settings.stripe_api_version


def _timestamp_to_iso(value: Any) -> str | None:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=UTC).replace(microsecond=0).isoformat()
    except (TypeError, ValueError, OSError):
        return None


def _period_end(subscription: Any) -> Any:
    """`current_period_end` を取得する（新しい API では items 側に移動している）。"""

    value = subscription.get("current_period_end")
    if value:
        return value
    items = (subscription.get("items") or {}).get("data") or []
    if items:
        return items[0].get("current_period_end")
    return None


def find_customer_id(email: str) -> str | None:
    _configure_stripe()
    customers = stripe.Customer.list(email=email, limit=1)
    data = customers.get("data") or []
    return data[0]["id"] if data else None


def create_checkout_session(
    *,
    plan_id: str,
    email: str,
    user_id: str,
    currency: str = "usd",
    promotion_code_id: str | None = None,
) -> tuple[str, str | None]:
    """Create a Checkout Session and return ``(url, existing_customer_id)``."""

    plan = get_plan(plan_id)
    _configure_stripe()
    customer_id = find_customer_id(email)
    base_url = settings.app_base_url.rstrip("/")
    price_data: dict[str, Any] = {
        "currency": currency.lower(),
        "product_data": {"name": plan.name, "description": plan.description},
        "unit_amount": plan.unit_amount,
    }
    params: dict[str, Any] = {
        "line_items": [{"price_data": price_data, "quantity": 1}],
        "success_url": f"{base_url}/dashboard?subscription=success&plan={plan.plan_id}",
        "cancel_url": f"{base_url}/dashboard?subscription=canceled",
        "metadata": {"plan_id": plan.plan_id, "user_id": user_id},
    }
    if customer_id:
        params["customer"] = customer_id
    else:
        params["customer_email"] = email
    if promotion_code_id:
        params["discounts"] = [{"promotion_code": promotion_code_id}]
    else:
        params["allow_promotion_codes"] = True
    if plan.is_one_time:
        params["mode"] = "payment"
    else:
        price_data["recurring"] = {
            "interval": plan.interval,
            "interval_count": plan.interval_count,
        }
        params["mode"] = "subscription"
        params["subscription_data"] = {"trial_period_days": plan.trial_period_days}

    session = stripe.checkout.Session.create(**params)
    logger.info(
        "checkout_session_created",
        plan_id=plan.plan_id,
        mode=params["mode"],
        session_id=session.get("id"),
        existing_customer=bool(customer_id),
    )
    return str(session["url"]), customer_id


def construct_event(payload: bytes, signature: str | None) -> Any:
    """Verify the `Stripe-Signature` header and parse the webhook event."""

    if not settings.stripe_webhook_secret:
        raise BillingNotConfiguredError("STRIPE_WEBHOOK_SECRET is not set")
    if not signature:
        raise WebhookVerificationError("No Stripe signature found")
    try:
        return stripe.Webhook.construct_event(payload, signature, settings.stripe_webhook_secret)
    except ValueError as exc:
        raise WebhookVerificationError("Invalid payload") from exc
    except stripe.SignatureVerificationError as exc:
        raise WebhookVerificationError("Invalid signature") from exc


EmailSender = Callable[..., bool]


def _customer_email(customer_id: str | None) -> str | None:
    if not customer_id:
        return None
    customer = stripe.Customer.retrieve(customer_id)
    return customer.get("email")


def _handle_checkout_completed(
    session: Any, subscribers: FirestoreSubscriberStore, email_sender: EmailSender
) -> None:
    customer_details = session.get("customer_details") or {}
    email = session.get("customer_email") or customer_details.get("email")
    if not email:
        logger.warning("stripe_webhook_missing_email", event_type="checkout.session.completed")
        return
    metadata = session.get("metadata") or {}
    plan_id = metadata.get("plan_id")
    fields: dict[str, Any] = {"stripe_customer_id": session.get("customer")}
    if metadata.get("user_id"):
        fields["user_id"] = metadata["user_id"]

    if session.get("mode") == "payment" or plan_id == "lifetime":
        fields.update(
            subscribed=True,
            subscription_tier="lifetime",
            subscription_status=LIFETIME_STATUS,
            trial_end=None,
            subscription_end=None,
            pending_plan=None,
        )
    elif session.get("subscription"):
        subscription = stripe.Subscription.retrieve(session["subscription"])
        fields.update(
            subscribed=subscription.get("status") in ACTIVE_STATUSES,
            subscription_tier=plan_id,
            subscription_status=subscription.get("status"),
            trial_end=_timestamp_to_iso(subscription.get("trial_end")),
            subscription_end=_timestamp_to_iso(_period_end(subscription)),
            pending_plan=None,
        )
    else:
        logger.warning("stripe_webhook_unexpected_session", session_id=session.get("id"))
        return
    existing = subscribers.get_subscriber(email) or {}
    already_granted = bool(existing.get("subscribed")) and all(
        existing.get(key) == fields[key] for key in ("subscription_tier", "subscription_status")
    )
    subscribers.upsert_subscriber(email, **fields)
    if already_granted:
        # 再送イベントではメールを重複送信しない
        logger.info("stripe_webhook_email_skipped", template=EmailTemplate.premium.value, reason="already_applied")
        return
    email_sender(EmailTemplate.premium, email)


def _handle_subscription_updated(subscription: Any, subscribers: FirestoreSubscriberStore) -> None:
    email = _customer_email(subscription.get("customer"))
    if not email:
        logger.warning("stripe_webhook_missing_email", event_type="customer.subscription.updated")
        return
    fields: dict[str, Any] = {
        "stripe_customer_id": subscription.get("customer"),
        "subscribed": subscription.get("status") in ACTIVE_STATUSES,
        "subscription_status": subscription.get("status"),
        "trial_end": _timestamp_to_iso(subscription.get("trial_end")),
        "subscription_end": _timestamp_to_iso(_period_end(subscription)),
    }
    canceled_at = _timestamp_to_iso(subscription.get("canceled_at"))
    if canceled_at:
        fields["canceled_at"] = canceled_at
    subscribers.upsert_subscriber(email, **fields)


def _handle_subscription_deleted(
    subscription: Any, subscribers: FirestoreSubscriberStore, email_sender: EmailSender
) -> None:
    email = _customer_email(subscription.get("customer"))
    if not email:
        logger.warning("stripe_webhook_missing_email", event_type="customer.subscription.deleted")
        return
    existing = subscribers.get_subscriber(email) or {}
    if existing.get("subscription_status") == "canceled" and not existing.get("subscribed"):
        logger.info(
            "stripe_webhook_email_skipped", template=EmailTemplate.cancellation.value, reason="already_applied"
        )
        return
    subscribers.upsert_subscriber(
        email,
        stripe_customer_id=subscription.get("customer"),
        subscribed=False,
        subscription_status="canceled",
        canceled_at=datetime.now(UTC).replace(microsecond=0).isoformat(),
    )
    email_sender(EmailTemplate.cancellation, email)


def handle_webhook_event(
    event: Any,
    subscribers: FirestoreSubscriberStore,
    *,
    email_sender: EmailSender = send_email,
) -> bool:
    """Apply a verified webhook event. Returns False for ignored event types."""

    _configure_stripe()
    event_type = event["type"]
    obj = event["data"]["object"]
    logger.info("stripe_webhook_received", event_type=event_type, event_id=event.get("id"))
    if event_type == "checkout.session.completed":
        _handle_checkout_completed(obj, subscribers, email_sender)
    elif event_type == "customer.subscription.updated":
        _handle_subscription_updated(obj, subscribers)
    elif event_type == "customer.subscription.deleted":
        _handle_subscription_deleted(obj, subscribers, email_sender)
    else:
        logger.info("stripe_webhook_ignored", event_type=event_type)
        return False
    return True


def refresh_subscription(email: str, subscribers: FirestoreSubscriberStore) -> dict[str, Any]:
    """Re-sync the caller's subscription state from Stripe.

    買い切り (lifetime) は Stripe 上に購読が存在しないため、記録済みの状態を維持する。
    """

    existing = subscribers.get_subscriber(email) or {}
    if existing.get("subscription_status") == LIFETIME_STATUS:
        return _subscription_view(existing)

    customer_id = find_customer_id(email)
    if not customer_id:
        record = subscribers.upsert_subscriber(
            email,
            stripe_customer_id=None,
            subscribed=False,
            subscription_tier=None,
            subscription_status=existing.get("subscription_status") or "inactive",
            subscription_end=None,
        )
        return _subscription_view(record)

    subscriptions = stripe.Subscription.list(customer=customer_id, status="all", limit=10)
    active = next(
        (
            sub
            for sub in subscriptions.get("data") or []
            if sub.get("status") in ACTIVE_STATUSES
        ),
        None,
    )
    if active is None:
        record = subscribers.upsert_subscriber(
            email,
            stripe_customer_id=customer_id,
            subscribed=False,
            subscription_status=existing.get("subscription_status") or "inactive",
            subscription_end=None,
        )
        return _subscription_view(record)

    tier = existing.get("subscription_tier") or existing.get("pending_plan")
    record = subscribers.upsert_subscriber(
        email,
        stripe_customer_id=customer_id,
        subscribed=True,
        subscription_tier=tier,
        subscription_status=active.get("status"),
        trial_end=_timestamp_to_iso(active.get("trial_end")),
        subscription_end=_timestamp_to_iso(_period_end(active)),
    )
    return _subscription_view(record)


def _subscription_view(record: dict[str, Any]) -> dict[str, Any]:
    return {
        "subscribed": bool(record.get("subscribed")),
        "subscription_tier": record.get("subscription_tier"),
        "subscription_status": record.get("subscription_status"),
        "trial_end": record.get("trial_end"),
        "subscription_end": record.get("subscription_end"),
    }


def validate_promo_code(code: str) -> dict[str, Any]:
    """Look up an active promotion code and describe its discount."""

    _configure_stripe()
    codes = stripe.PromotionCode.list(code=code, limit=1)
    data = codes.get("data") or []
    if not data:
        return {"valid": False, "error": "Invalid promo code"}
    promotion = data[0]
    if not promotion.get("active"):
        return {"valid": False, "error": "Promo code is not active"}
    expires_at = promotion.get("expires_at")
    if expires_at and int(expires_at) < int(datetime.now(UTC).timestamp()):
        return {"valid": False, "error": "Promo code has expired"}

    coupon = promotion.get("coupon")
    if isinstance(coupon, str):
        coupon = stripe.Coupon.retrieve(coupon)
    coupon = coupon or {}
    amount_off = coupon.get("amount_off")
    percent_off = coupon.get("percent_off")
    return {
        "valid": True,
        "promotion_code_id": promotion.get("id"),
        "coupon_id": coupon.get("id"),
        "discount_type": "amount" if amount_off else "percent",
        "discount_amount": amount_off or percent_off or 0,
        "currency": coupon.get("currency"),
    }
