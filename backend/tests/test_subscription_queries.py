from datetime import datetime

from fitstream.models import Subscription
from fitstream.services.subscriptions import (
    get_active_subscription,
    has_active_subscription,
    list_user_subscriptions,
)


def add_row(db, stripe_id, status, created_at, user_id="u1", price_id="price_basic"):
    row = Subscription(
        user_id=user_id,
        stripe_customer_id="c1",
        stripe_subscription_id=stripe_id,
        stripe_price_id=price_id,
        status=status,
        created_at=created_at,
        updated_at=created_at,
    )
    db.add(row)
    db.commit()
    return row


def test_active_row_wins_over_newer_canceled_row(db):
    add_row(db, "s_active", "active", datetime(2025, 1, 1))
    add_row(db, "s_canceled", "canceled", datetime(2025, 3, 1))

    sub = get_active_subscription(db, "u1")

    assert sub is not None
    assert sub.stripe_subscription_id == "s_active"
    assert has_active_subscription(db, "u1")


def test_most_recent_active_or_trialing_row_is_returned(db):
    add_row(db, "s_old", "active", datetime(2024, 6, 1))
    add_row(db, "s_trial", "trialing", datetime(2025, 2, 1))

    assert get_active_subscription(db, "u1").stripe_subscription_id == "s_trial"


def test_no_active_subscription(db):
    add_row(db, "s_due", "past_due", datetime(2025, 1, 1))
    add_row(db, "s_other_user", "active", datetime(2025, 1, 1), user_id="u2")

    assert get_active_subscription(db, "u1") is None
    assert not has_active_subscription(db, "u1")


def test_history_lists_every_row_newest_first(db):
    add_row(db, "s1", "canceled", datetime(2024, 1, 1))
    add_row(db, "s2", "active", datetime(2025, 1, 1))
    add_row(db, "s3", "active", datetime(2025, 1, 1), user_id="u2")

    history = list_user_subscriptions(db, "u1")

    assert [s.stripe_subscription_id for s in history] == ["s2", "s1"]
