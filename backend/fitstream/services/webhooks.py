"""Stripe webhook dispatch and subscription reconciliation.

Deliveries are at-least-once and unordered. Each handler therefore writes
through the `stripe_subscription_id` key only, and re-reads the subscription
from Stripe whenever the event payload alone cannot be trusted for status or
billing period.
"""
import calendar
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Callable

from sqlalchemy import func
from sqlalchemy.orm import Session

from fitstream.core.errors import MalformedEvent
from fitstream.models.subscription import Subscription, SubscriptionStatus, utcnow
from fitstream.services.stripe_gateway import (
    StripeGateway,
    SubscriptionSnapshot,
    field_of,
    from_timestamp,
    ref_id,
    snapshot_from,
)
from fitstream.services.subscriptions import update_subscription, upsert_subscription

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    checkout_session_completed = "checkout.session.completed"
    invoice_payment_succeeded = "invoice.payment_succeeded"
    invoice_payment_failed = "invoice.payment_failed"
    customer_subscription_updated = "customer.subscription.updated"
    customer_subscription_deleted = "customer.subscription.deleted"


class WebhookOutcome(str, Enum):
    applied = "applied"
    ignored = "ignored"  # event type we do not handle
    skipped = "skipped"  # handled type, nothing to write


# A late checkout completion must not bring these back to active.
_TERMINAL_STATUSES = {SubscriptionStatus.canceled.value, SubscriptionStatus.incomplete_expired.value}

Handler = Callable[[Session, StripeGateway, dict[str, Any]], WebhookOutcome]


def add_one_month(start: datetime) -> datetime:
    month = start.month % 12 + 1
    year = start.year + (1 if start.month == 12 else 0)
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def _period_values(snapshot: SubscriptionSnapshot) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if snapshot.current_period_start:
        values["current_period_start"] = snapshot.current_period_start
    if snapshot.current_period_end:
        values["current_period_end"] = snapshot.current_period_end
    return values


def _reconcile(db: Session, snapshot: SubscriptionSnapshot, values: dict[str, Any]) -> WebhookOutcome:
    """Update the row for `snapshot`, creating it only when the subscription names its user."""
    if snapshot.price_id:
        values.setdefault("stripe_price_id", snapshot.price_id)
    if snapshot.customer_id:
        values.setdefault("stripe_customer_id", snapshot.customer_id)

    if update_subscription(db, snapshot.id, values):
        return WebhookOutcome.applied

    if snapshot.user_id:
        # Arrived before checkout.session.completed; the metadata is enough to create the row.
        upsert_subscription(db, snapshot.id, {"user_id": snapshot.user_id, **values})
        return WebhookOutcome.applied

    logger.info("Subscription %s is not tracked and carries no user id; nothing to update", snapshot.id)
    return WebhookOutcome.skipped


def _on_checkout_completed(db: Session, gateway: StripeGateway, session: dict[str, Any]) -> WebhookOutcome:
    metadata = field_of(session, "metadata") or {}
    user_id = metadata.get("supabaseUUID")
    price_id = metadata.get("priceId")
    customer_id = ref_id(field_of(session, "customer"))
    session_id = field_of(session, "id")

    if not user_id or not price_id or not customer_id:
        logger.error("Checkout session %s is missing metadata or customer", session_id)
        raise MalformedEvent("Missing required data in session")

    values: dict[str, Any] = {
        "user_id": user_id,
        "stripe_customer_id": customer_id,
        "stripe_price_id": price_id,
        "status": SubscriptionStatus.active.value,
    }

    if field_of(session, "mode") == "payment":
        if not session_id:
            raise MalformedEvent("Missing checkout session id")
        start = from_timestamp(field_of(session, "created")) or utcnow()
        values["current_period_start"] = start
        values["current_period_end"] = add_one_month(start)
        upsert_subscription(db, session_id, values)
        logger.info("One-time access recorded for user %s (session %s)", user_id, session_id)
        return WebhookOutcome.applied

    subscription_id = ref_id(field_of(session, "subscription"))
    if not subscription_id:
        logger.error("Checkout session %s completed without a subscription", session_id)
        raise MalformedEvent("Missing subscription in session")

    live = gateway.retrieve_subscription(subscription_id)
    if live.status in _TERMINAL_STATUSES:
        values["status"] = live.status
    values.update(_period_values(live))
    upsert_subscription(db, subscription_id, values)
    logger.info("Subscription %s recorded for user %s", subscription_id, user_id)
    return WebhookOutcome.applied


def _invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    subscription_id = ref_id(field_of(invoice, "subscription"))
    if subscription_id:
        return subscription_id
    details = field_of(field_of(invoice, "parent"), "subscription_details")
    return ref_id(field_of(details, "subscription"))


def _on_invoice(forced_status: str | None) -> Handler:
    def handler(db: Session, gateway: StripeGateway, invoice: dict[str, Any]) -> WebhookOutcome:
        subscription_id = _invoice_subscription_id(invoice)
        if not subscription_id:
            logger.info("Invoice %s is not linked to a subscription", field_of(invoice, "id"))
            return WebhookOutcome.skipped

        live = gateway.retrieve_subscription(subscription_id)
        values = {"status": forced_status or live.status, **_period_values(live)}
        return _reconcile(db, live, values)

    return handler


def _on_subscription_updated(db: Session, gateway: StripeGateway, subscription: dict[str, Any]) -> WebhookOutcome:
    subscription_id = field_of(subscription, "id")
    if not subscription_id:
        raise MalformedEvent("Missing subscription id")
    live = gateway.retrieve_subscription(subscription_id)
    values: dict[str, Any] = {"status": live.status, **_period_values(live)}
    if live.canceled_at:
        values["canceled_at"] = live.canceled_at
    return _reconcile(db, live, values)


def _on_subscription_deleted(db: Session, gateway: StripeGateway, subscription: dict[str, Any]) -> WebhookOutcome:
    if not field_of(subscription, "id"):
        raise MalformedEvent("Missing subscription id")
    snapshot = snapshot_from(subscription)
    stripe_stamp = snapshot.canceled_at or from_timestamp(field_of(subscription, "ended_at"))
    canceled_at = stripe_stamp or utcnow()
    status = SubscriptionStatus.canceled.value

    # Without a Stripe timestamp, a redelivery keeps the first recorded cancellation time.
    stamp = stripe_stamp or func.coalesce(Subscription.canceled_at, canceled_at)
    if update_subscription(db, snapshot.id, {"status": status, "canceled_at": stamp}):
        return WebhookOutcome.applied
    if snapshot.user_id:
        values = {"status": status, "canceled_at": canceled_at, **_period_values(snapshot)}
        return _reconcile(db, snapshot, values)
    logger.info("Deleted subscription %s was never tracked", snapshot.id)
    return WebhookOutcome.skipped


_HANDLERS: dict[EventType, Handler] = {
    EventType.checkout_session_completed: _on_checkout_completed,
    EventType.invoice_payment_succeeded: _on_invoice(None),
    EventType.invoice_payment_failed: _on_invoice(SubscriptionStatus.past_due.value),
    EventType.customer_subscription_updated: _on_subscription_updated,
    EventType.customer_subscription_deleted: _on_subscription_deleted,
}

_unhandled = set(EventType) - set(_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No webhook handler registered for: {sorted(e.value for e in _unhandled)}")


def handle_event(db: Session, gateway: StripeGateway, event: dict[str, Any]) -> WebhookOutcome:
    event_id = event.get("id")
    try:
        event_type = EventType(event.get("type"))
    except ValueError:
        logger.info("Ignoring unhandled event type %s (%s)", event.get("type"), event_id)
        return WebhookOutcome.ignored

    payload = (event.get("data") or {}).get("object")
    if not isinstance(payload, dict):
        raise MalformedEvent("Event has no data object")

    outcome = _HANDLERS[event_type](db, gateway, payload)
    logger.info("Webhook %s (%s): %s", event_type.value, event_id, outcome.value)
    return outcome
