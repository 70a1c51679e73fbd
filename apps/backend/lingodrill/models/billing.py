from __future__ import annotations

from pydantic import BaseModel, Field


class CheckoutRequest(BaseModel):
    plan_id: str = Field(default="monthly", max_length=32)
    currency: str = Field(default="usd", min_length=3, max_length=3)
    promotion_code_id: str | None = Field(default=None, max_length=255)


class CheckoutResponse(BaseModel):
    url: str


class SubscriptionState(BaseModel):
    subscribed: bool = False
    subscription_tier: str | None = None
    subscription_status: str | None = None
    trial_end: str | None = None
    subscription_end: str | None = None


class PromoCodeRequest(BaseModel):
    code: str = Field(default="", max_length=255)


class PromoCodeResult(BaseModel):
    """割引コードの検証結果。`discount_type` は amount（最小通貨単位）か percent。"""

    valid: bool
    error: str | None = None
    promotion_code_id: str | None = None
    coupon_id: str | None = None
    discount_type: str | None = None
    discount_amount: float | None = None
    currency: str | None = None
