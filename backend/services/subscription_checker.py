"""
Single-user subscription reconciliation against Stripe.

``SubscriptionChecker.check_user_subscription_status`` compares one
profile with what Stripe reports for the profile's email and corrects the
profile when they disagree. It never raises: any failure yields the safe
default status annotated with ``error`` and leaves the profile untouched.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adapters.payments.stripe_adapter import StripeGateway
from core.domain.subscription import (
    STRIPE_WEB_SOURCE,
    SubscriptionTier,
    as_utc,
    is_expired,
    owned_by_other_channel,
    tier_for_provider_subscription,
    utcnow,
)
from infrastructure.database.models import Profile
from services.profile_updates import get_profile, update_user_profile

logger = logging.getLogger(__name__)


@dataclass
class SubscriptionStatus:
    """Subscription state of one user after a check."""

    is_active: bool
    tier: str
    plan_type: Optional[str] = None
    expires_at: Optional[datetime] = None
    status: Optional[str] = None
    error: Optional[str] = None
    last_checked: datetime = field(default_factory=utcnow)

    @classmethod
    def safe_default(cls, error: Optional[str] = None) -> "SubscriptionStatus":
        return cls(is_active=False, tier=SubscriptionTier.FREE.value, error=error)

    @classmethod
    def from_profile(cls, profile: Profile) -> "SubscriptionStatus":
        return cls(
            is_active=profile.is_paid,
            tier=profile.subscription_tier,
            plan_type=profile.subscription_plan_type,
            expires_at=as_utc(profile.subscription_expires_at),
            status=profile.subscription_status,
        )


class SubscriptionChecker:
    """Reconciles individual profiles with Stripe."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], gateway: StripeGateway):
        """
        Args:
            session_factory: Opens one session per check, so concurrent checks
                never share a session
            gateway: Stripe adapter
        """
        self.session_factory = session_factory
        self.gateway = gateway

    async def check_user_subscription_status(self, user_id: str) -> SubscriptionStatus:
        """
        Check a user's subscription against Stripe and correct drift.

        Returns:
            The user's status after the check, or the safe default
            (inactive, free) carrying ``error`` when the check failed
        """
        logger.info("Checking subscription status for user %s", user_id, extra={"user_id": user_id})
        try:
            async with self.session_factory() as db:
                return await self._check(db, user_id)
        except Exception as e:
            logger.error(
                "Error checking subscription status for user %s: %s",
                user_id,
                e,
                exc_info=True,
                extra={"user_id": user_id},
            )
            return SubscriptionStatus.safe_default(error=str(e) or type(e).__name__)

    async def _check(self, db: AsyncSession, user_id: str) -> SubscriptionStatus:
        profile = await get_profile(db, user_id)
        if profile is None:
            logger.error("User profile %s not found", user_id)
            return SubscriptionStatus.safe_default(error="Profile not found")

        tier = profile.subscription_tier

        # Mobile in-app purchases are reconciled by their own channel
        if owned_by_other_channel(profile.subscription_source, tier):
            logger.info(
                "User %s subscription owned by %s, skipping Stripe check",
                user_id,
                profile.subscription_source,
            )
            return SubscriptionStatus.from_profile(profile)

        now = utcnow()
        if tier != SubscriptionTier.FREE.value and is_expired(profile.subscription_expires_at, now):
            logger.info("Subscription expired for user %s, downgrading to free", user_id)
            await update_user_profile(
                db,
                user_id,
                {
                    "subscription_tier": SubscriptionTier.FREE.value,
                    "subscription_status": "expired",
                    "subscription_expires_at": now,
                },
                "subscription expired",
            )
            await db.commit()
            return SubscriptionStatus(
                is_active=False,
                tier=SubscriptionTier.FREE.value,
                plan_type=profile.subscription_plan_type,
                expires_at=now,
                status="expired",
            )

        if not profile.email:
            return SubscriptionStatus.from_profile(profile)

        # A provider failure raises here and is reported, never read as "no subscription"
        subscription = await self.gateway.find_active_subscription(profile.email)

        if subscription is not None and tier == SubscriptionTier.FREE.value:
            new_tier = tier_for_provider_subscription(subscription.subscription_type, subscription.price_id)
            plan_type = subscription.interval or "month"
            logger.info(
                "Found active Stripe subscription %s for free user %s, upgrading to %s",
                subscription.id,
                user_id,
                new_tier.value,
            )
            await update_user_profile(
                db,
                user_id,
                {
                    "subscription_tier": new_tier.value,
                    "subscription_status": "active",
                    "subscription_plan_type": plan_type,
                    "subscription_expires_at": subscription.current_period_end,
                    "subscription_source": STRIPE_WEB_SOURCE,
                },
                "reconciled from Stripe",
            )
            await db.commit()
            return SubscriptionStatus(
                is_active=True,
                tier=new_tier.value,
                plan_type=plan_type,
                expires_at=subscription.current_period_end,
                status="active",
            )

        if subscription is None and tier != SubscriptionTier.FREE.value:
            logger.info("No active Stripe subscription for user %s, downgrading to free", user_id)
            await update_user_profile(
                db,
                user_id,
                {
                    "subscription_tier": SubscriptionTier.FREE.value,
                    "subscription_status": "canceled",
                    "subscription_expires_at": now,
                },
                "no active Stripe subscription",
            )
            await db.commit()
            return SubscriptionStatus(
                is_active=False,
                tier=SubscriptionTier.FREE.value,
                plan_type=profile.subscription_plan_type,
                expires_at=now,
                status="canceled",
            )

        return SubscriptionStatus.from_profile(profile)
