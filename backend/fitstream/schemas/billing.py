from datetime import datetime

from pydantic import BaseModel, Field

from fitstream.services.plans import SubscriptionTier


class CheckoutRequest(BaseModel):
    # Optional here so a missing value is reported as 400, not a validation 422.
    price_id: str | None = Field(default=None, alias="priceId")


class CheckoutResponse(BaseModel):
    sessionId: str
    url: str


class WebhookAck(BaseModel):
    received: bool = True


class SubscriptionResponse(BaseModel):
    id: str
    user_id: str
    stripe_customer_id: str | None
    stripe_subscription_id: str
    stripe_price_id: str | None
    status: str
    current_period_start: datetime | None
    current_period_end: datetime | None
    created_at: datetime
    updated_at: datetime
    canceled_at: datetime | None

    class Config:
        from_attributes = True


class SubscriptionStatusResponse(BaseModel):
    active: bool
    subscription: SubscriptionResponse | None
    tier: SubscriptionTier | None
    video_count: int


class PlanResponse(BaseModel):
    tier: SubscriptionTier
    name: str
    description: str
    price_label: str
    price_id: str
    video_count: int

    class Config:
        from_attributes = True
