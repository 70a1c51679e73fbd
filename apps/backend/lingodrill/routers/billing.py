from __future__ import annotations

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status

from .. import billing
from ..auth import get_current_user
from ..logging import logger
from ..models.billing import (
    CheckoutRequest,
    CheckoutResponse,
    PromoCodeRequest,
    PromoCodeResult,
    SubscriptionState,
)
from ..store import store

router = APIRouter(prefix="/api/billing", tags=["billing"])


def _not_configured(exc: Exception) -> HTTPException:
    logger.error("billing_not_configured", error=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Billing is not configured",
    )


def _stripe_failed(operation: str, exc: stripe.StripeError) -> HTTPException:
    logger.warning(
        "stripe_request_failed",
        operation=operation,
        error_class=exc.__class__.__name__,
        error=str(exc),
    )
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Payment provider error")


@router.post("/checkout", response_model=CheckoutResponse)
def create_checkout(payload: CheckoutRequest, user: dict = Depends(get_current_user)) -> CheckoutResponse:
    """Start a Stripe Checkout Session for the selected plan.

    決済完了前でも subscribers に pending 状態を記録し、Webhook 到着時にプランを確定する。
    """

    email = user.get("email")
    if not email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User email is required")
    try:
        url, customer_id = billing.create_checkout_session(
            plan_id=payload.plan_id,
            email=email,
            user_id=user["google_sub"],
            currency=payload.currency,
            promotion_code_id=payload.promotion_code_id,
        )
    except billing.UnknownPlanError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except billing.BillingNotConfiguredError as exc:
        raise _not_configured(exc) from exc
    except stripe.StripeError as exc:
        raise _stripe_failed("checkout", exc) from exc

    existing = store.subscribers.get_subscriber(email) or {}
    fields = {"user_id": user["google_sub"], "pending_plan": payload.plan_id.strip().lower()}
    if customer_id:
        fields["stripe_customer_id"] = customer_id
    if not existing.get("subscribed"):
        fields.update(subscribed=False, subscription_status="pending")
    store.subscribers.upsert_subscriber(email, **fields)
    return CheckoutResponse(url=url)


@router.post("/webhook")
async def stripe_webhook(request: Request) -> dict[str, object]:
    """Receive Stripe webhook events. 署名検証に生のリクエストボディを使う。"""

    payload = await request.body()
    signature = request.headers.get("stripe-signature")
    try:
        event = billing.construct_event(payload, signature)
    except billing.WebhookVerificationError as exc:
        logger.warning("stripe_webhook_rejected", reason=str(exc))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except billing.BillingNotConfiguredError as exc:
        raise _not_configured(exc) from exc

    try:
        handled = billing.handle_webhook_event(event, store.subscribers)
    except billing.BillingNotConfiguredError as exc:
        raise _not_configured(exc) from exc
    except stripe.StripeError as exc:
        raise _stripe_failed("webhook", exc) from exc
    return {"received": True, "handled": handled}


@router.get("/subscription", response_model=SubscriptionState)
def get_subscription(user: dict = Depends(get_current_user)) -> SubscriptionState:
    """Re-sync and return the caller's subscription state."""

    email = user.get("email")
    if not email:
        return SubscriptionState()
    try:
        view = billing.refresh_subscription(email, store.subscribers)
    except billing.BillingNotConfiguredError:
        # Stripe 未設定（ローカル開発）では保存済みの状態をそのまま返す。
        record = store.subscribers.get_subscriber(email) or {}
        return SubscriptionState.model_validate(
            {k: record.get(k) for k in SubscriptionState.model_fields if k in record}
        )
    except stripe.StripeError as exc:
        raise _stripe_failed("subscription_refresh", exc) from exc
    return SubscriptionState.model_validate(view)


@router.post("/promo-code", response_model=PromoCodeResult)
def check_promo_code(payload: PromoCodeRequest, user: dict = Depends(get_current_user)) -> PromoCodeResult:
    code = payload.code.strip()
    if not code:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Promo code is required")
    try:
        result = billing.validate_promo_code(code)
    except billing.BillingNotConfiguredError as exc:
        raise _not_configured(exc) from exc
    except stripe.StripeError as exc:
        raise _stripe_failed("promo_code", exc) from exc
    logger.info("promo_code_checked", user_id=user["google_sub"], valid=result.get("valid"))
    return PromoCodeResult.model_validate(result)
