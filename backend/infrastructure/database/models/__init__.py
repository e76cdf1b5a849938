"""
SQLAlchemy database models.
"""

from .base import Base, TimestampMixin
from .cron_log import CronLog, CronLogStatus
from .profile import Profile
from .webhook_event import StripeWebhookEvent

__all__ = [
    "Base",
    "TimestampMixin",
    "Profile",
    "CronLog",
    "CronLogStatus",
    "StripeWebhookEvent",
]
