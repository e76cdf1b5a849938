"""
Profile subscription update primitive.

Webhook handlers, the reconciler and the expiry sweep all write
subscription fields through ``update_user_profile`` so every mutation
reads the current row first, merges only the supplied fields and stamps
``updated_at``.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.domain.subscription import as_utc, utcnow
from infrastructure.database.models import Profile

logger = logging.getLogger(__name__)

# Columns the billing service is allowed to write
UPDATABLE_FIELDS = frozenset(
    {
        "subscription_tier",
        "subscription_status",
        "subscription_plan_type",
        "subscription_started_at",
        "subscription_expires_at",
        "subscription_source",
    }
)


class ProfileNotFoundError(LookupError):
    """Raised when the profile to update does not exist."""

    def __init__(self, user_id: str):
        super().__init__(f"Profile {user_id} not found")
        self.user_id = user_id


async def get_profile(db: AsyncSession, user_id: str, lock: bool = False) -> Optional[Profile]:
    stmt = select(Profile).where(Profile.id == user_id)
    if lock:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def update_user_profile(
    db: AsyncSession,
    user_id: str,
    fields: dict[str, Any],
    context: str,
    event_at: Optional[datetime] = None,
) -> bool:
    """
    Merge subscription fields into an existing profile.

    Args:
        db: Async database session. The caller owns the commit.
        user_id: Profile id
        fields: Subscription columns to set
        context: Short label for the log line (e.g. "subscription_deleted")
        event_at: Provider time of the event being applied. When given, an
            event older than the last applied one is rejected.

    Returns:
        True when the fields were applied, False when the event was stale

    Raises:
        ProfileNotFoundError: If the profile does not exist
        ValueError: If ``fields`` names a column outside the subscription set
    """
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Cannot update profile fields: {sorted(unknown)}")

    # Row lock prevents concurrent webhook deliveries from interleaving
    profile = await get_profile(db, user_id, lock=True)
    if profile is None:
        logger.error("Profile %s not found for %s", user_id, context)
        raise ProfileNotFoundError(user_id)

    if event_at is not None:
        event_at = as_utc(event_at)
        last_applied = as_utc(profile.subscription_event_at)
        if last_applied is not None and event_at < last_applied:
            logger.warning(
                "Ignoring stale %s for user %s: event at %s, last applied %s",
                context,
                user_id,
                event_at.isoformat(),
                last_applied.isoformat(),
                extra={"user_id": user_id},
            )
            return False
        profile.subscription_event_at = event_at

    for name, value in fields.items():
        setattr(profile, name, value)
    profile.updated_at = utcnow()

    await db.flush()

    logger.info(
        "Profile updated (%s): user=%s tier=%s status=%s",
        context,
        user_id,
        profile.subscription_tier,
        profile.subscription_status,
        extra={"user_id": user_id},
    )
    return True
