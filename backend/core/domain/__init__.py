# Domain rules
# Pure business logic with no external dependencies
from .subscription import (
    DerivedSubscription,
    SubscriptionTier,
    as_utc,
    derive_subscription,
    owned_by_other_channel,
    tier_for_provider_subscription,
)

__all__ = [
    "DerivedSubscription",
    "SubscriptionTier",
    "as_utc",
    "derive_subscription",
    "owned_by_other_channel",
    "tier_for_provider_subscription",
]
