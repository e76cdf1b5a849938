"""
Integration tests for subscription maintenance endpoints.

Tests:
- Cron bearer authentication
- Reconciliation of explicit and scheduled candidate sets
- Partial failure reporting
- Expired-subscription sweep
- Tier catalogue and health checks
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import status

from infrastructure.config.settings import settings
from stripe_helpers import make_subscription

CRON_URL = "/api/subscription/cron"
SWEEP_URL = "/api/cron/check-subscriptions"
CRON_SECRET = "test-cron-secret"
AUTH = {"Authorization": f"Bearer {CRON_SECRET}"}


@pytest.fixture
def cron_secret(monkeypatch):
    monkeypatch.setattr(settings, "cron_secret", CRON_SECRET)
    monkeypatch.setattr(settings, "subscription_check_batch_delay_ms", 0)
    return CRON_SECRET


def future(days: int = 30) -> datetime:
    return datetime.now(timezone.utc) + timedelta(days=days)


class TestCronAuthentication:
    """Tests for the cron bearer token."""

    @pytest.mark.asyncio
    async def test_missing_token_rejected(self, async_client, cron_secret):
        response = await async_client.post(CRON_URL)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "Unauthorized"}

    @pytest.mark.asyncio
    async def test_wrong_token_rejected(self, async_client, cron_secret):
        response = await async_client.post(CRON_URL, headers={"Authorization": "Bearer nope"})
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_sweep_requires_token(self, async_client, cron_secret):
        response = await async_client.get(SWEEP_URL)
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    @pytest.mark.asyncio
    async def test_no_secret_allows_request(self, async_client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", None)

        response = await async_client.post(CRON_URL)

        assert response.status_code == status.HTTP_200_OK

    @pytest.mark.asyncio
    async def test_manual_trigger_requires_bearer_outside_development(self, async_client, monkeypatch):
        monkeypatch.setattr(settings, "cron_secret", None)
        monkeypatch.setattr(settings, "environment", "production")

        response = await async_client.get(CRON_URL)

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json() == {"error": "Authorization required for manual trigger"}


class TestSubscriptionMaintenanceEndpoint:
    """Tests for POST /subscription/cron."""

    @pytest.mark.asyncio
    async def test_explicit_user_is_reconciled(
        self, async_client, cron_secret, fake_gateway, create_profile, load_profile
    ):
        """A free user with an active Stripe subscription is upgraded."""
        await create_profile("u2")
        fake_gateway.active_by_email["u2@example.com"] = make_subscription(
            metadata={"subscription_type": "pro_yearly"},
            interval="year",
            price_id="price_pro_yearly",
        )

        response = await async_client.post(CRON_URL, json={"userIds": ["u2"]}, headers=AUTH)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["success"] is True
        assert data["usersFound"] == 1
        assert data["usersChecked"] == 1
        assert data["usersUpdated"] == 1
        assert data["errors"] == 0
        assert data["duration"].endswith("ms")
        assert data["details"][0]["userId"] == "u2"
        assert data["details"][0]["changed"] is True

        profile = await load_profile("u2")
        assert profile.subscription_tier == "pro"
        assert profile.subscription_plan_type == "year"

    @pytest.mark.asyncio
    async def test_partial_failure_reported(self, async_client, cron_secret, fake_gateway, create_profile):
        for user_id in ("a1", "a2", "a3"):
            await create_profile(
                user_id,
                subscription_tier="pro",
                subscription_status="active",
                subscription_expires_at=future(),
            )
            fake_gateway.active_by_email[f"{user_id}@example.com"] = make_subscription()
        fake_gateway.failing_emails.add("a2@example.com")

        response = await async_client.post(CRON_URL, headers=AUTH)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["usersFound"] == 3
        assert data["usersChecked"] == 2
        assert data["errors"] == 1
        assert [entry["userId"] for entry in data["details"] if "error" in entry] == ["a2"]

    @pytest.mark.asyncio
    async def test_get_alias_runs_maintenance(self, async_client, cron_secret, create_profile):
        await create_profile(
            "u1",
            subscription_tier="pro",
            subscription_status="active",
            subscription_expires_at=future(),
        )

        response = await async_client.get(CRON_URL, headers=AUTH)

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["usersFound"] == 1
        assert response.json()["usersUpdated"] == 1

    @pytest.mark.asyncio
    async def test_job_failure_returns_500(self, async_client, cron_secret):
        with patch(
            "api.routes.subscription_cron.SubscriptionMaintenanceJob.run",
            new=AsyncMock(side_effect=RuntimeError("database unavailable")),
        ):
            response = await async_client.post(CRON_URL, headers=AUTH)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert response.json() == {"error": "Subscription maintenance failed"}


class TestExpirySweepEndpoint:
    """Tests for /cron/check-subscriptions."""

    @pytest.mark.asyncio
    async def test_no_expired_subscriptions(self, async_client, cron_secret):
        response = await async_client.get(SWEEP_URL, headers=AUTH)

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {
            "message": "No expired subscriptions found",
            "processed": 0,
            "downgradedUsers": [],
        }

    @pytest.mark.asyncio
    async def test_expired_subscription_downgraded(self, async_client, cron_secret, create_profile, load_profile):
        await create_profile(
            "u1",
            subscription_tier="elite",
            subscription_status="active",
            subscription_plan_type="weekly",
            subscription_expires_at=datetime.now(timezone.utc) - timedelta(hours=2),
        )

        response = await async_client.post(SWEEP_URL, headers=AUTH)

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["message"] == "Processed 1 expired subscriptions"
        assert data["processed"] == 1
        assert data["downgradedUsers"][0]["id"] == "u1"
        assert data["downgradedUsers"][0]["previousTier"] == "elite"
        assert data["downgradedUsers"][0]["planType"] == "weekly"

        profile = await load_profile("u1")
        assert profile.subscription_tier == "free"
        assert profile.subscription_status == "expired"


class TestCatalogueAndHealth:
    """Tests for the tier catalogue and health endpoints."""

    @pytest.mark.asyncio
    async def test_tiers(self, async_client):
        response = await async_client.get("/api/subscription/tiers")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert [tier["id"] for tier in data["tiers"]] == ["free", "pro", "elite"]
        assert data["tiers"][1]["capabilities"]["dailyPicks"] == 20
        assert data["welcomeBonusPicks"] == 5

    @pytest.mark.asyncio
    async def test_health(self, async_client):
        response = await async_client.get("/api/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["status"] == "healthy"

    @pytest.mark.asyncio
    async def test_health_db(self, async_client):
        response = await async_client.get("/api/health/db")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["database"] == "connected"
