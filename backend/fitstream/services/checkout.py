import logging

from sqlalchemy.orm import Session

from fitstream.core.config import Settings
from fitstream.core.errors import ConfigError, InvalidRequest, Unauthenticated, UpstreamError
from fitstream.core.session import Identity
from fitstream.services import profiles
from fitstream.services.stripe_gateway import CheckoutSessionResult, StripeGateway
from fitstream.services.subscriptions import get_active_subscription

logger = logging.getLogger(__name__)


def resolve_customer_id(db: Session, gateway: StripeGateway, identity: Identity) -> str:
    """Reuse the user's Stripe customer, creating and storing one on first checkout."""
    customer_id = profiles.get_stripe_customer_id(db, identity.id)
    if customer_id:
        return customer_id

    active = get_active_subscription(db, identity.id)
    if active and active.stripe_customer_id:
        customer_id = active.stripe_customer_id
    else:
        logger.info("Creating Stripe customer for user %s", identity.id)
        customer_id = gateway.create_customer(identity.email, identity.id)

    profiles.set_stripe_customer_id(db, identity.id, customer_id, email=identity.email)
    return customer_id


def create_checkout_session(
    db: Session,
    gateway: StripeGateway,
    settings: Settings,
    identity: Identity | None,
    price_id: str | None,
) -> CheckoutSessionResult:
    price_id = (price_id or "").strip()
    if not price_id:
        raise InvalidRequest("Price ID is required")
    if identity is None:
        raise Unauthenticated()
    if not gateway.configured:
        raise ConfigError("Stripe is not configured")

    customer_id = resolve_customer_id(db, gateway, identity)

    site_url = settings.site_url
    session = gateway.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        user_id=identity.id,
        success_url=f"{site_url}payment/success?session_id={{CHECKOUT_SESSION_ID}}",
        cancel_url=site_url,
        mode=settings.CHECKOUT_MODE,
    )
    if not session.url:
        raise UpstreamError("Could not create Stripe session URL")

    logger.info("Checkout session %s created for user %s (price %s)", session.id, identity.id, price_id)
    return session
