"""
User profile database model.

Only the columns the billing service reads or writes are mapped. The row
itself is created by the auth system at signup with a free tier.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from core.domain.subscription import SubscriptionTier

from .base import Base, TimestampMixin


class Profile(Base, TimestampMixin):
    """Subscription-relevant subset of a user profile."""

    __tablename__ = "profiles"

    # Primary key, owned by the auth system
    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Join key to the Stripe customer record
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    # Subscription
    subscription_tier: Mapped[str] = mapped_column(
        String(20),
        default=SubscriptionTier.FREE.value,
        nullable=False,
    )
    subscription_status: Mapped[Optional[str]] = mapped_column(
        String(50),
        default="inactive",
        nullable=True,
    )  # active, past_due, canceled, unpaid, expired, trialing, inactive
    subscription_plan_type: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    subscription_started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    subscription_expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    subscription_source: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    """Channel that last wrote the subscription fields: 'stripe_web', 'revenuecat', ..."""

    subscription_event_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    """Provider timestamp of the last applied customer.subscription.* event."""

    __table_args__ = (
        Index("ix_profiles_subscription", "subscription_tier", "subscription_status"),
        Index("ix_profiles_expires", "subscription_expires_at"),
    )

    def __repr__(self) -> str:
        return f"<Profile(id={self.id}, tier={self.subscription_tier}, status={self.subscription_status})>"

    @property
    def is_paid(self) -> bool:
        return self.subscription_tier != SubscriptionTier.FREE.value
