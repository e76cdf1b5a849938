"""
Service layer for business logic.
"""

from services.profile_updates import ProfileNotFoundError, update_user_profile
from services.stripe_webhooks import StripeWebhookProcessor, WebhookResult
from services.subscription_checker import SubscriptionChecker, SubscriptionStatus
from services.subscription_maintenance import (
    MaintenanceSummary,
    SubscriptionMaintenanceJob,
    expire_lapsed_subscriptions,
)
from services.subscription_scheduler import SubscriptionScheduler

__all__ = [
    "ProfileNotFoundError",
    "update_user_profile",
    "StripeWebhookProcessor",
    "WebhookResult",
    "SubscriptionChecker",
    "SubscriptionStatus",
    "SubscriptionMaintenanceJob",
    "MaintenanceSummary",
    "expire_lapsed_subscriptions",
    "SubscriptionScheduler",
]
