"""Subscription gate for paid-tier analytics."""
from ..schemas.analytics import SubscriptionTier


PAID_TIERS = frozenset(
    {SubscriptionTier.PREMIUM_MONTHLY, SubscriptionTier.PREMIUM_YEARLY}
)


def includes_ads_data(tier: SubscriptionTier) -> bool:
    """Return True only for tiers that unlock paid-campaign metrics."""
    return tier in PAID_TIERS


def available_analytics_types(tier: SubscriptionTier) -> list[str]:
    return ["posts", "ads"] if includes_ads_data(tier) else ["posts"]
