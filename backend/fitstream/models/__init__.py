from fitstream.models.profile import Profile
from fitstream.models.subscription import ACTIVE_STATUSES, Subscription, SubscriptionStatus

__all__ = [
    "ACTIVE_STATUSES",
    "Profile",
    "Subscription",
    "SubscriptionStatus",
]
