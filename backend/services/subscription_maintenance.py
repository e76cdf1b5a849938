"""
Subscription maintenance jobs.

``SubscriptionMaintenanceJob`` re-checks every paying profile against
Stripe in small concurrent batches and records the outcome in
``cron_logs``. ``expire_lapsed_subscriptions`` is the cheaper sweep that
only downgrades web subscriptions whose expiry date has passed.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.domain.subscription import WEB_SOURCES, SubscriptionTier, as_utc, utcnow
from infrastructure.config.settings import settings
from infrastructure.database.models import CronLog, CronLogStatus, Profile
from services.profile_updates import ProfileNotFoundError, update_user_profile
from services.subscription_checker import SubscriptionChecker

logger = logging.getLogger(__name__)

MAINTENANCE_JOB_TYPE = "subscription_maintenance"
EXPIRY_SWEEP_JOB_TYPE = "subscription_expiry_sweep"

# Statuses the scheduled run re-checks
CHECKED_STATUSES = ("active", "past_due", "unpaid")


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value is not None else None


@dataclass
class MaintenanceSummary:
    """Aggregate result of one maintenance run."""

    timestamp: datetime
    users_found: int = 0
    users_checked: int = 0
    users_updated: int = 0
    errors: int = 0
    duration_ms: int = 0
    details: list[dict[str, Any]] = field(default_factory=list)

    @property
    def status(self) -> CronLogStatus:
        return CronLogStatus.SUCCESS if self.errors == 0 else CronLogStatus.PARTIAL_SUCCESS

    @property
    def duration(self) -> str:
        return f"{self.duration_ms}ms"

    def as_log_summary(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "usersFound": self.users_found,
            "usersChecked": self.users_checked,
            "usersUpdated": self.users_updated,
            "errors": self.errors,
            "duration": self.duration,
        }


@dataclass(frozen=True)
class _Candidate:
    """Profile snapshot taken before the check."""

    id: str
    email: Optional[str]
    tier: str
    status: Optional[str]
    expires_at: Optional[datetime]


async def write_cron_log(
    session_factory: async_sessionmaker[AsyncSession],
    job_type: str,
    status: CronLogStatus,
    summary: dict[str, Any],
    details: Optional[list] = None,
) -> None:
    """Persist a cron log row. A failure to log never fails the job."""
    try:
        async with session_factory() as db:
            db.add(CronLog(job_type=job_type, status=status.value, summary=summary, details=details))
            await db.commit()
    except SQLAlchemyError as e:
        logger.warning("Failed to store %s cron log: %s", job_type, e, extra={"job_type": job_type})


class SubscriptionMaintenanceJob:
    """Batch reconciliation of paying profiles against Stripe."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        checker: SubscriptionChecker,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        details_limit: Optional[int] = None,
    ):
        """
        Args:
            session_factory: Session factory for the candidate query and the log row
            checker: Single-user checker
            batch_size: Users checked concurrently per batch
            batch_delay: Seconds to wait between batches
            details_limit: Maximum per-user entries stored in the cron log
        """
        self.session_factory = session_factory
        self.checker = checker
        self.batch_size = batch_size or settings.subscription_check_batch_size
        self.batch_delay = (
            batch_delay if batch_delay is not None else settings.subscription_check_batch_delay_ms / 1000
        )
        self.details_limit = details_limit if details_limit is not None else settings.cron_log_details_limit

    async def run(self, user_ids: Optional[list[str]] = None) -> MaintenanceSummary:
        """
        Run the maintenance job.

        Args:
            user_ids: Check exactly these profiles instead of every paying one

        Returns:
            MaintenanceSummary with one detail entry per candidate

        Raises:
            Exception: Any failure outside the per-user checks, after a
                ``failed`` cron log has been written
        """
        started = time.monotonic()
        summary = MaintenanceSummary(timestamp=utcnow())
        logger.info("Starting subscription maintenance job", extra={"job_type": MAINTENANCE_JOB_TYPE})

        try:
            candidates = await self._load_candidates(user_ids)
            summary.users_found = len(candidates)
            logger.info("Found %d users with subscriptions to check", len(candidates))

            for offset in range(0, len(candidates), self.batch_size):
                batch = candidates[offset : offset + self.batch_size]
                results = await asyncio.gather(*(self._check_candidate(c) for c in batch))
                summary.details.extend(results)

                # Spread Stripe calls out between batches
                if offset + self.batch_size < len(candidates):
                    await asyncio.sleep(self.batch_delay)

            for entry in summary.details:
                if "error" in entry:
                    summary.errors += 1
                    continue
                summary.users_checked += 1
                if entry["changed"]:
                    summary.users_updated += 1

            summary.duration_ms = int((time.monotonic() - started) * 1000)
        except Exception as e:
            logger.error("Subscription maintenance job failed: %s", e, exc_info=True)
            await write_cron_log(
                self.session_factory,
                MAINTENANCE_JOB_TYPE,
                CronLogStatus.FAILED,
                {"error": str(e) or type(e).__name__},
            )
            raise

        logger.info(
            "Subscription maintenance completed: found=%d checked=%d updated=%d errors=%d duration=%s",
            summary.users_found,
            summary.users_checked,
            summary.users_updated,
            summary.errors,
            summary.duration,
            extra={"job_type": MAINTENANCE_JOB_TYPE, "duration_ms": summary.duration_ms},
        )

        await write_cron_log(
            self.session_factory,
            MAINTENANCE_JOB_TYPE,
            summary.status,
            summary.as_log_summary(),
            summary.details[: self.details_limit],
        )
        return summary

    async def _load_candidates(self, user_ids: Optional[list[str]]) -> list[_Candidate]:
        stmt = select(Profile).order_by(Profile.id)
        if user_ids:
            stmt = stmt.where(Profile.id.in_(user_ids))
        else:
            stmt = stmt.where(
                Profile.subscription_tier != SubscriptionTier.FREE.value,
                Profile.subscription_status.in_(CHECKED_STATUSES),
            )

        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return [
                _Candidate(
                    id=p.id,
                    email=p.email,
                    tier=p.subscription_tier,
                    status=p.subscription_status,
                    expires_at=as_utc(p.subscription_expires_at),
                )
                for p in result.scalars().all()
            ]

    async def _check_candidate(self, candidate: _Candidate) -> dict[str, Any]:
        before = {
            "tier": candidate.tier,
            "status": candidate.status,
            "expiresAt": _iso(candidate.expires_at),
        }
        try:
            result = await self.checker.check_user_subscription_status(candidate.id)
        except Exception as e:
            logger.error("Error checking subscription for user %s: %s", candidate.id, e)
            return {"userId": candidate.id, "email": candidate.email, "error": str(e) or type(e).__name__}

        if result.error:
            return {"userId": candidate.id, "email": candidate.email, "error": result.error}

        changed = (
            result.tier != candidate.tier
            or result.status != candidate.status
            or as_utc(result.expires_at) != candidate.expires_at
        )
        if changed:
            logger.info(
                "Updated subscription for user %s: %s -> %s",
                candidate.id,
                candidate.tier,
                result.tier,
                extra={"user_id": candidate.id},
            )

        return {
            "userId": candidate.id,
            "email": candidate.email,
            "changed": changed,
            "before": before,
            "after": {
                "tier": result.tier,
                "status": result.status,
                "expiresAt": _iso(result.expires_at),
            },
        }


async def expire_lapsed_subscriptions(
    session_factory: async_sessionmaker[AsyncSession],
) -> list[dict[str, Any]]:
    """
    Downgrade web subscriptions whose expiry date has passed.

    Only profiles with status ``active`` are swept; profiles owned by
    another channel are left to that channel.

    Returns:
        One entry per downgraded profile
    """
    now = utcnow()
    downgraded: list[dict[str, Any]] = []

    async with session_factory() as db:
        result = await db.execute(
            select(Profile)
            .where(
                Profile.subscription_tier != SubscriptionTier.FREE.value,
                Profile.subscription_status == "active",
                Profile.subscription_expires_at < now,
                or_(
                    Profile.subscription_source.is_(None),
                    Profile.subscription_source == "",
                    Profile.subscription_source.in_(WEB_SOURCES),
                ),
            )
            .order_by(Profile.id)
        )
        expired = [
            {
                "id": p.id,
                "email": p.email,
                "previousTier": p.subscription_tier,
                "planType": p.subscription_plan_type,
                "expiredAt": _iso(p.subscription_expires_at),
            }
            for p in result.scalars().all()
        ]
        logger.info("Found %d expired subscriptions", len(expired), extra={"job_type": EXPIRY_SWEEP_JOB_TYPE})

        for entry in expired:
            try:
                await update_user_profile(
                    db,
                    entry["id"],
                    {
                        "subscription_tier": SubscriptionTier.FREE.value,
                        "subscription_status": "expired",
                    },
                    "subscription expiry sweep",
                )
            except ProfileNotFoundError:
                logger.warning("Profile %s disappeared during expiry sweep", entry["id"])
                continue
            downgraded.append(entry)

        await db.commit()

    await write_cron_log(
        session_factory,
        EXPIRY_SWEEP_JOB_TYPE,
        CronLogStatus.SUCCESS,
        {"timestamp": now.isoformat(), "processed": len(downgraded)},
        downgraded,
    )
    logger.info("Processed %d expired subscriptions", len(downgraded))
    return downgraded
