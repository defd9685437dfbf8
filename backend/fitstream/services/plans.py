from dataclasses import dataclass
from enum import Enum

from fitstream.core.config import Settings


class SubscriptionTier(str, Enum):
    basic = "basic"
    standard = "standard"
    premium = "premium"


@dataclass(frozen=True)
class Plan:
    tier: SubscriptionTier
    name: str
    description: str
    price_label: str
    price_id: str
    video_count: int


TIER_VIDEO_ACCESS: dict[SubscriptionTier, int] = {
    SubscriptionTier.basic: 1,
    SubscriptionTier.standard: 2,
    SubscriptionTier.premium: 3,
}

_TIER_COPY: dict[SubscriptionTier, tuple[str, str, str]] = {
    SubscriptionTier.basic: ("Basic", "Start with the essentials", "29 € / month"),
    SubscriptionTier.standard: ("Standard", "More content for better results", "59 € / month"),
    SubscriptionTier.premium: ("Premium", "Unlock everything", "99 € / month"),
}


def _price_ids(settings: Settings) -> dict[SubscriptionTier, str]:
    return {
        SubscriptionTier.basic: settings.STRIPE_PRICE_ID_BASIC,
        SubscriptionTier.standard: settings.STRIPE_PRICE_ID_STANDARD,
        SubscriptionTier.premium: settings.STRIPE_PRICE_ID_PREMIUM,
    }


def plan_catalog(settings: Settings) -> list[Plan]:
    """Plans that have a Stripe price configured, cheapest first."""
    plans = []
    for tier, price_id in _price_ids(settings).items():
        if not price_id:
            continue
        name, description, price_label = _TIER_COPY[tier]
        plans.append(Plan(tier, name, description, price_label, price_id, TIER_VIDEO_ACCESS[tier]))
    return plans


def tier_for_price(settings: Settings, price_id: str | None) -> SubscriptionTier | None:
    if not price_id:
        return None
    for tier, configured in _price_ids(settings).items():
        if configured and configured == price_id:
            return tier
    return None


def video_access(settings: Settings, price_id: str | None) -> int:
    tier = tier_for_price(settings, price_id)
    return TIER_VIDEO_ACCESS[tier] if tier else 0
