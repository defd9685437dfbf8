import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from fitstream.core.errors import PersistenceError
from fitstream.models.profile import Profile

logger = logging.getLogger(__name__)


def get_stripe_customer_id(db: Session, user_id: str) -> str | None:
    try:
        profile = db.get(Profile, user_id)
    except SQLAlchemyError as exc:
        logger.exception("Profile lookup failed for user %s", user_id)
        raise PersistenceError("Failed to retrieve user profile") from exc
    return profile.stripe_customer_id if profile else None


def set_stripe_customer_id(db: Session, user_id: str, customer_id: str, email: str | None = None) -> None:
    # Last write wins: Stripe is the source of truth for customer identity.
    try:
        profile = db.get(Profile, user_id)
        if profile is None:
            profile = Profile(id=user_id, email=email)
            db.add(profile)
        profile.stripe_customer_id = customer_id
        if email and not profile.email:
            profile.email = email
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Profile update failed for user %s", user_id)
        raise PersistenceError("Failed to update user profile") from exc
