import logging

from fastapi import APIRouter, Depends, Header, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from fitstream.core.config import Settings, get_settings
from fitstream.core.database import get_db
from fitstream.core.deps import get_current_identity, get_optional_identity
from fitstream.core.rate_limit import limiter
from fitstream.core.session import Identity
from fitstream.schemas.billing import (
    CheckoutRequest,
    CheckoutResponse,
    PlanResponse,
    SubscriptionResponse,
    SubscriptionStatusResponse,
    WebhookAck,
)
from fitstream.services.checkout import create_checkout_session
from fitstream.services.plans import plan_catalog, tier_for_price, video_access
from fitstream.services.stripe_gateway import StripeGateway, get_stripe_gateway
from fitstream.services.subscriptions import get_active_subscription, list_user_subscriptions
from fitstream.services.webhooks import handle_event

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing"])


async def checkout_price_id(request: Request) -> str | None:
    # Bodies that are not JSON or carry a non-string priceId are reported as 400 by the service.
    try:
        payload = CheckoutRequest.model_validate_json(await request.body() or b"{}")
    except ValidationError:
        return None
    return payload.price_id


@router.post("/checkout", response_model=CheckoutResponse)
@limiter.limit(lambda: get_settings().CHECKOUT_RATE_LIMIT)
def checkout(
    request: Request,
    price_id: str | None = Depends(checkout_price_id),
    identity: Identity | None = Depends(get_optional_identity),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    settings: Settings = Depends(get_settings),
):
    session = create_checkout_session(
        db,
        gateway,
        settings,
        identity,
        price_id,
    )
    return CheckoutResponse(sessionId=session.id, url=session.url)


@router.post("/webhook", response_model=WebhookAck)
async def stripe_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="stripe-signature"),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    # Signature is computed over the exact bytes Stripe sent; never parse before verifying.
    payload = await request.body()
    event = gateway.construct_event(payload, stripe_signature)
    await run_in_threadpool(handle_event, db, gateway, event)
    return WebhookAck()


@router.get("/subscription", response_model=SubscriptionStatusResponse)
def subscription_status(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    sub = get_active_subscription(db, identity.id)
    price_id = sub.stripe_price_id if sub else None
    return SubscriptionStatusResponse(
        active=sub is not None,
        subscription=SubscriptionResponse.model_validate(sub) if sub else None,
        tier=tier_for_price(settings, price_id),
        video_count=video_access(settings, price_id),
    )


@router.get("/subscriptions", response_model=list[SubscriptionResponse])
def subscription_history(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    return list_user_subscriptions(db, identity.id)


@router.get("/plans", response_model=list[PlanResponse])
def plans(settings: Settings = Depends(get_settings)):
    return plan_catalog(settings)
