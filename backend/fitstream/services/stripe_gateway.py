"""Stripe access for checkout and webhook reconciliation.

`StripeGateway` is built once per process from settings and passed to the
services that need it; it never holds per-request state. Stripe objects are
flattened into small dataclasses at this boundary so the rest of the code
works with plain values.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

import stripe

from fitstream.core.config import Settings, get_settings
from fitstream.core.errors import ConfigError, SignatureInvalid, UpstreamError

logger = logging.getLogger(__name__)


def field_of(obj: Any, key: str) -> Any:
    """Read a key from a Stripe object or a plain dict, None when absent."""
    if obj is None:
        return None
    try:
        return obj[key]
    except (KeyError, TypeError, IndexError):
        return None


def plain_dict(obj: Any) -> dict:
    if isinstance(obj, dict):
        return obj
    for name in ("to_dict", "to_dict_recursive"):
        converter = getattr(obj, name, None)
        if callable(converter):
            return converter()
    return dict(obj)


def ref_id(value: Any) -> str | None:
    # Stripe references are ids unless expanded into objects.
    if value is None or isinstance(value, str):
        return value
    return field_of(value, "id")


def from_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class CheckoutSessionResult:
    id: str
    url: str | None


@dataclass(frozen=True)
class SubscriptionSnapshot:
    id: str
    status: str
    customer_id: str | None = None
    price_id: str | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    canceled_at: datetime | None = None
    metadata: dict = field(default_factory=dict)

    @property
    def user_id(self) -> str | None:
        return self.metadata.get("supabaseUUID")


def snapshot_from(obj: Any) -> SubscriptionSnapshot:
    """Build a snapshot from a Stripe Subscription (object or webhook payload)."""
    items = field_of(field_of(obj, "items"), "data") or []

    # Newer API versions carry the billing period on each item, older ones on the subscription.
    starts = [field_of(item, "current_period_start") for item in items]
    ends = [field_of(item, "current_period_end") for item in items]
    starts = [s for s in starts if s is not None]
    ends = [e for e in ends if e is not None]
    period_start = min(starts) if starts else field_of(obj, "current_period_start")
    period_end = max(ends) if ends else field_of(obj, "current_period_end")

    price_id = ref_id(field_of(items[0], "price")) if items else None
    metadata = field_of(obj, "metadata") or {}

    return SubscriptionSnapshot(
        id=field_of(obj, "id"),
        status=field_of(obj, "status") or "",
        customer_id=ref_id(field_of(obj, "customer")),
        price_id=price_id,
        current_period_start=from_timestamp(period_start),
        current_period_end=from_timestamp(period_end),
        canceled_at=from_timestamp(field_of(obj, "canceled_at")),
        metadata={str(k): str(v) for k, v in plain_dict(metadata).items()},
    )


class StripeGateway:
    def __init__(self, settings: Settings):
        self._api_key = settings.STRIPE_SECRET_KEY
        self._webhook_secret = settings.STRIPE_WEBHOOK_SECRET
        self._options: dict[str, Any] = {}
        if settings.STRIPE_API_VERSION:
            self._options["stripe_version"] = settings.STRIPE_API_VERSION
        # Process-wide transport settings; configured once, never per request.
        stripe.default_http_client = stripe.RequestsClient(timeout=settings.STRIPE_TIMEOUT_SECONDS)
        stripe.max_network_retries = settings.STRIPE_MAX_NETWORK_RETRIES

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _require_key(self) -> str:
        if not self._api_key:
            raise ConfigError("Stripe is not configured")
        return self._api_key

    def create_customer(self, email: str | None, user_id: str) -> str:
        api_key = self._require_key()
        try:
            customer = stripe.Customer.create(
                api_key=api_key,
                email=email,
                metadata={"supabaseUUID": user_id},
                **self._options,
            )
        except stripe.StripeError as exc:
            logger.error("Stripe customer creation failed for user %s: %s", user_id, exc)
            raise UpstreamError("Could not create Stripe customer") from exc
        return customer["id"]

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        user_id: str,
        success_url: str,
        cancel_url: str,
        mode: str = "subscription",
    ) -> CheckoutSessionResult:
        api_key = self._require_key()
        metadata = {"supabaseUUID": user_id, "priceId": price_id}
        params: dict[str, Any] = {
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "mode": mode,
            "customer": customer_id,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "metadata": metadata,
        }
        if mode == "subscription":
            # Lets subscription/invoice events name the user even if they beat checkout.session.completed.
            params["subscription_data"] = {"metadata": metadata}
        try:
            session = stripe.checkout.Session.create(api_key=api_key, **params, **self._options)
        except stripe.StripeError as exc:
            logger.error("Stripe checkout session creation failed for user %s: %s", user_id, exc)
            raise UpstreamError("Could not create checkout session") from exc
        return CheckoutSessionResult(id=session["id"], url=field_of(session, "url"))

    def retrieve_subscription(self, subscription_id: str) -> SubscriptionSnapshot:
        api_key = self._require_key()
        try:
            subscription = stripe.Subscription.retrieve(subscription_id, api_key=api_key, **self._options)
        except stripe.StripeError as exc:
            logger.error("Stripe subscription lookup failed for %s: %s", subscription_id, exc)
            raise UpstreamError("Could not retrieve subscription") from exc
        return snapshot_from(subscription)

    def construct_event(self, payload: bytes, signature: str | None) -> dict[str, Any]:
        """Verify the Stripe-Signature header over the raw body and parse the event."""
        if not self._webhook_secret:
            raise SignatureInvalid("Webhook secret not configured")
        if not signature:
            raise SignatureInvalid("Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise SignatureInvalid("Webhook body is not valid UTF-8") from exc

        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self._webhook_secret, tolerance=stripe.Webhook.DEFAULT_TOLERANCE
            )
        except stripe.SignatureVerificationError as exc:
            logger.warning("Rejected webhook with invalid signature: %s", exc)
            raise SignatureInvalid() from exc

        try:
            event = json.loads(body)
        except ValueError as exc:
            raise SignatureInvalid("Webhook body is not valid JSON") from exc
        if not isinstance(event, dict):
            raise SignatureInvalid("Webhook body is not an event object")
        return event


@lru_cache
def get_stripe_gateway() -> StripeGateway:
    return StripeGateway(get_settings())
