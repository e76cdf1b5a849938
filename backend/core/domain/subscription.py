"""Subscription domain rules.

Pure functions that turn a subscription-type tag (``elite_monthly``,
``pro_daypass``, legacy ``monthly`` ...) into a tier, a plan type and an
expiry. Nothing here touches the database or Stripe.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional


class SubscriptionTier(str, Enum):
    """Available subscription tiers."""
    FREE = "free"
    PRO = "pro"
    ELITE = "elite"


# Channel tags written to profiles.subscription_source
STRIPE_WEB_SOURCE = "stripe_web"
WEB_SOURCES = frozenset({STRIPE_WEB_SOURCE, "stripe"})

# Fallback durations when Stripe does not supply a billing period end,
# keyed by the plan portion of the tag.
PLAN_DURATIONS: dict[str, timedelta] = {
    "daypass": timedelta(hours=24),
    "weekly": timedelta(days=7),
    "monthly": timedelta(days=30),
    "yearly": timedelta(days=365),
    "lifetime": timedelta(days=100 * 365),
}

_TIER_PREFIXES = (
    ("elite_", SubscriptionTier.ELITE),
    ("pro_", SubscriptionTier.PRO),
)

# Price ids that identify an elite plan when the tag is missing on the Stripe side
ELITE_PRICE_MARKERS = ("elite", "allstar")


@dataclass(frozen=True)
class DerivedSubscription:
    """Subscription fields derived from a tag."""

    tier: SubscriptionTier
    plan_type: str
    expires_at: datetime


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps read back from the store."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def split_tag(tag: str) -> tuple[SubscriptionTier, str]:
    """Split a tag into (tier, plan portion).

    Tags without a known tier prefix are legacy pro tags and keep their
    full text as the plan portion.
    """
    for prefix, tier in _TIER_PREFIXES:
        if tag.startswith(prefix):
            return tier, tag[len(prefix):]
    return SubscriptionTier.PRO, tag


def derive_subscription(
    tag: str,
    billing_period_end: Optional[datetime] = None,
    now: Optional[datetime] = None,
) -> DerivedSubscription:
    """
    Derive tier, plan type and expiry from a subscription-type tag.

    Args:
        tag: Subscription-type tag from Stripe metadata
        billing_period_end: Stripe's current period end. Always wins over
            the fixed-duration table when supplied.
        now: Reference time (defaults to the current UTC time)

    Returns:
        DerivedSubscription. Unrecognised plans expire at ``now`` so an
        unknown tag never grants open-ended access.
    """
    now = now or utcnow()
    tier, plan_type = split_tag(tag or "")

    if billing_period_end is not None:
        expires_at = as_utc(billing_period_end)
    else:
        duration = PLAN_DURATIONS.get(plan_type)
        expires_at = now + duration if duration is not None else now

    return DerivedSubscription(tier=tier, plan_type=plan_type, expires_at=expires_at)


def tier_for_provider_subscription(tag: Optional[str], price_id: Optional[str]) -> SubscriptionTier:
    """Tier for a subscription found on Stripe.

    Any tag starting with ``elite`` counts, with or without the underscore.
    Stripe-side records may lack the original tag, so the price id is
    checked for elite markers as a second signal.
    """
    if tag and tag.startswith("elite"):
        return SubscriptionTier.ELITE
    price = (price_id or "").lower()
    if any(marker in price for marker in ELITE_PRICE_MARKERS):
        return SubscriptionTier.ELITE
    return SubscriptionTier.PRO


def owned_by_other_channel(source: Optional[str], tier: str) -> bool:
    """True when a non-web channel (e.g. mobile in-app purchase) owns a paid profile."""
    if tier == SubscriptionTier.FREE.value:
        return False
    return bool(source) and source not in WEB_SOURCES


def is_expired(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    if expires_at is None:
        return False
    return as_utc(expires_at) < (now or utcnow())
