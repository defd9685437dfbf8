"""Reads and idempotent writes against the `subscriptions` table.

Every write is keyed on `stripe_subscription_id`; the table's unique
constraint is what keeps concurrent or duplicated webhook deliveries safe.
"""
import logging
import uuid
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fitstream.core.errors import PersistenceError
from fitstream.models.subscription import ACTIVE_STATUSES, Subscription, utcnow

logger = logging.getLogger(__name__)

# Columns an upsert may overwrite on conflict; identity and creation time are kept.
_MUTABLE_COLUMNS = (
    "user_id",
    "stripe_customer_id",
    "stripe_price_id",
    "status",
    "current_period_start",
    "current_period_end",
    "canceled_at",
    "updated_at",
)


def _insert_for(db: Session):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise PersistenceError(f"Upsert is not supported on {dialect}")
    return insert


def get_active_subscription(db: Session, user_id: str) -> Subscription | None:
    """Most recently created row for the user whose status is active or trialing."""
    try:
        return (
            db.query(Subscription)
            .filter(Subscription.user_id == user_id, Subscription.status.in_(ACTIVE_STATUSES))
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .first()
        )
    except SQLAlchemyError as exc:
        logger.exception("Active subscription lookup failed for user %s", user_id)
        raise PersistenceError("Could not read subscription") from exc


def has_active_subscription(db: Session, user_id: str) -> bool:
    return get_active_subscription(db, user_id) is not None


def list_user_subscriptions(db: Session, user_id: str) -> list[Subscription]:
    try:
        return (
            db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        logger.exception("Subscription listing failed for user %s", user_id)
        raise PersistenceError("Could not read subscriptions") from exc


def upsert_subscription(db: Session, stripe_subscription_id: str, values: dict[str, Any]) -> None:
    """Insert the row or update it in place when the Stripe id already exists.

    Only keys present in `values` are overwritten on conflict, so callers can
    leave columns they know nothing about untouched.
    """
    now = utcnow()
    row = {
        "id": str(uuid.uuid4()),
        "stripe_subscription_id": stripe_subscription_id,
        "created_at": now,
        **values,
        "updated_at": now,
    }
    insert = _insert_for(db)
    stmt = insert(Subscription).values(**row)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Subscription.stripe_subscription_id],
        set_={key: stmt.excluded[key] for key in _MUTABLE_COLUMNS if key in row},
    )
    try:
        db.execute(stmt)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Subscription upsert failed for %s", stripe_subscription_id)
        raise PersistenceError("Database error during subscription update") from exc


def update_subscription(db: Session, stripe_subscription_id: str, values: dict[str, Any]) -> bool:
    """Update the matching row; returns False when no row exists yet."""
    stmt = (
        update(Subscription)
        .where(Subscription.stripe_subscription_id == stripe_subscription_id)
        .values(**values, updated_at=utcnow())
    )
    try:
        result = db.execute(stmt)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Subscription update failed for %s", stripe_subscription_id)
        raise PersistenceError("Database error during subscription update") from exc
    return result.rowcount > 0
