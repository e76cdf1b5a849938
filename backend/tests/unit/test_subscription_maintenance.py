"""
Unit tests for the subscription maintenance job, expiry sweep and scheduler.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from infrastructure.database.models import CronLog
from services.subscription_checker import SubscriptionChecker
from services.subscription_maintenance import (
    EXPIRY_SWEEP_JOB_TYPE,
    MAINTENANCE_JOB_TYPE,
    SubscriptionMaintenanceJob,
    expire_lapsed_subscriptions,
)
from services.subscription_scheduler import SubscriptionScheduler
from stripe_helpers import make_subscription


def future(days: int = 30) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


def past(days: int = 1) -> datetime:
    return datetime.now(timezone.utc) - timedelta(days=days)


@pytest.fixture
def make_job(session_factory, fake_gateway):
    def _make(**kwargs) -> SubscriptionMaintenanceJob:
        kwargs.setdefault("batch_delay", 0)
        checker = SubscriptionChecker(session_factory, fake_gateway)
        return SubscriptionMaintenanceJob(session_factory, checker, **kwargs)

    return _make


@pytest.fixture
def cron_logs(session_factory):
    async def _load(job_type: str) -> list[CronLog]:
        async with session_factory() as session:
            result = await session.execute(select(CronLog).where(CronLog.job_type == job_type))
            return list(result.scalars().all())

    return _load


async def paying_profile(create_profile, user_id: str, **fields):
    fields.setdefault("subscription_tier", "pro")
    fields.setdefault("subscription_status", "active")
    fields.setdefault("subscription_plan_type", "month")
    fields.setdefault("subscription_expires_at", future())
    return await create_profile(user_id, **fields)


class TestMaintenanceJob:
    async def test_partial_failure_is_isolated(self, make_job, fake_gateway, create_profile, cron_logs):
        """One failing user counts as an error while the rest are still checked."""
        await paying_profile(create_profile, "u1")
        await paying_profile(create_profile, "u2")
        await paying_profile(create_profile, "u3")
        fake_gateway.active_by_email["u1@example.com"] = make_subscription()
        fake_gateway.failing_emails.add("u3@example.com")

        summary = await make_job(batch_size=2).run()

        assert summary.users_found == 3
        assert summary.users_checked == 2
        assert summary.users_updated == 1
        assert summary.errors == 1
        assert len(summary.details) == 3

        by_user = {entry["userId"]: entry for entry in summary.details}
        assert by_user["u1"]["changed"] is False
        assert by_user["u2"]["changed"] is True
        assert by_user["u2"]["after"]["tier"] == "free"
        assert "Stripe is unavailable" in by_user["u3"]["error"]

        logs = await cron_logs(MAINTENANCE_JOB_TYPE)
        assert len(logs) == 1
        assert logs[0].status == "partial_success"
        assert logs[0].summary["usersFound"] == 3
        assert logs[0].summary["errors"] == 1
        assert logs[0].summary["duration"].endswith("ms")

    async def test_success_status_without_errors(self, make_job, fake_gateway, create_profile, cron_logs):
        await paying_profile(create_profile, "u1")
        fake_gateway.active_by_email["u1@example.com"] = make_subscription()

        summary = await make_job().run()

        assert summary.errors == 0
        logs = await cron_logs(MAINTENANCE_JOB_TYPE)
        assert logs[0].status == "success"

    async def test_details_are_capped_in_the_log(self, make_job, create_profile, cron_logs):
        for i in range(5):
            await paying_profile(create_profile, f"u{i}")

        summary = await make_job(details_limit=2).run()

        assert len(summary.details) == 5
        logs = await cron_logs(MAINTENANCE_JOB_TYPE)
        assert len(logs[0].details) == 2

    async def test_only_paying_profiles_in_checked_statuses(self, make_job, create_profile):
        await paying_profile(create_profile, "paid")
        await paying_profile(create_profile, "dunning", subscription_status="past_due")
        await paying_profile(create_profile, "canceled", subscription_status="canceled")
        await create_profile("free")

        summary = await make_job().run()

        assert sorted(entry["userId"] for entry in summary.details) == ["dunning", "paid"]

    async def test_explicit_user_ids_bypass_the_filter(self, make_job, fake_gateway, create_profile):
        """A free profile named explicitly is reconciled against Stripe."""
        await create_profile("u2")
        await paying_profile(create_profile, "u5")
        fake_gateway.active_by_email["u2@example.com"] = make_subscription(
            metadata={"subscription_type": "pro_yearly"},
            interval="year",
        )

        summary = await make_job().run(user_ids=["u2"])

        assert summary.users_found == 1
        entry = summary.details[0]
        assert entry["userId"] == "u2"
        assert entry["changed"] is True
        assert entry["before"]["tier"] == "free"
        assert entry["after"]["tier"] == "pro"

    async def test_empty_candidate_set(self, make_job, cron_logs):
        summary = await make_job().run()

        assert summary.users_found == 0
        assert summary.details == []
        logs = await cron_logs(MAINTENANCE_JOB_TYPE)
        assert logs[0].status == "success"

    async def test_checker_exception_counts_as_error(self, session_factory, create_profile):
        class ExplodingChecker:
            async def check_user_subscription_status(self, user_id):
                raise RuntimeError("checker crashed")

        await paying_profile(create_profile, "u1")
        job = SubscriptionMaintenanceJob(session_factory, ExplodingChecker(), batch_delay=0)

        summary = await job.run()

        assert summary.errors == 1
        assert summary.details[0]["error"] == "checker crashed"

    async def test_job_failure_writes_failed_log_and_raises(self, make_job, cron_logs, monkeypatch):
        job = make_job()

        async def broken_query(user_ids):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(job, "_load_candidates", broken_query)

        with pytest.raises(RuntimeError, match="database unavailable"):
            await job.run()

        logs = await cron_logs(MAINTENANCE_JOB_TYPE)
        assert len(logs) == 1
        assert logs[0].status == "failed"
        assert logs[0].summary == {"error": "database unavailable"}


class TestExpirySweep:
    async def test_downgrades_only_lapsed_web_subscriptions(
        self, session_factory, create_profile, load_profile, cron_logs
    ):
        await paying_profile(create_profile, "web", subscription_source="stripe_web", subscription_expires_at=past())
        await paying_profile(create_profile, "legacy", subscription_expires_at=past(days=2))
        await paying_profile(create_profile, "mobile", subscription_source="revenuecat", subscription_expires_at=past())
        await paying_profile(create_profile, "current", subscription_expires_at=future())
        await paying_profile(create_profile, "dunning", subscription_status="past_due", subscription_expires_at=past())

        downgraded = await expire_lapsed_subscriptions(session_factory)

        assert [entry["id"] for entry in downgraded] == ["legacy", "web"]
        assert downgraded[0]["previousTier"] == "pro"
        assert downgraded[0]["planType"] == "month"
        assert downgraded[0]["expiredAt"] is not None

        for user_id in ("legacy", "web"):
            profile = await load_profile(user_id)
            assert profile.subscription_tier == "free"
            assert profile.subscription_status == "expired"
        for user_id in ("mobile", "current", "dunning"):
            assert (await load_profile(user_id)).subscription_tier == "pro"

        logs = await cron_logs(EXPIRY_SWEEP_JOB_TYPE)
        assert logs[0].status == "success"
        assert logs[0].summary["processed"] == 2

    async def test_nothing_to_sweep(self, session_factory, create_profile):
        await paying_profile(create_profile, "u1")
        assert await expire_lapsed_subscriptions(session_factory) == []


class TestSubscriptionScheduler:
    async def test_run_once_logs_job_errors(self, caplog):
        class FailingJob:
            async def run(self):
                raise RuntimeError("stripe down")

        scheduler = SubscriptionScheduler(FailingJob, interval_minutes=1)

        await scheduler.run_once()

        assert "Scheduled subscription maintenance failed" in caplog.text

    async def test_loop_runs_until_stopped(self):
        runs = []
        scheduler = None

        class CountingJob:
            async def run(self):
                runs.append(1)
                if len(runs) == 2:
                    await scheduler.stop()

        scheduler = SubscriptionScheduler(CountingJob, interval_minutes=1)
        scheduler.check_interval = 0

        await asyncio.wait_for(scheduler.start(), timeout=5)

        assert len(runs) == 2
        assert scheduler.is_running is False
