from datetime import datetime, timezone
import enum
import uuid

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from fitstream.core.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class SubscriptionStatus(str, enum.Enum):
    # Mirrors Stripe's subscription lifecycle vocabulary.
    active = "active"
    trialing = "trialing"
    past_due = "past_due"
    canceled = "canceled"
    incomplete = "incomplete"
    incomplete_expired = "incomplete_expired"
    unpaid = "unpaid"
    paused = "paused"


ACTIVE_STATUSES = (SubscriptionStatus.active.value, SubscriptionStatus.trialing.value)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(String(120))
    # Holds the checkout session id for one-time payments.
    stripe_subscription_id: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    stripe_price_id: Mapped[str | None] = mapped_column(String(120))
    # Plain string: a status Stripe introduces later is stored, not rejected.
    status: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    current_period_start: Mapped[datetime | None] = mapped_column(DateTime)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime)
