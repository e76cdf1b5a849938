"""Integration tests for rate limiting middleware."""
import pytest
from httpx import AsyncClient
from starlette.requests import Request

from api.middleware.rate_limit import _get_real_ip, get_rate_limit
from infrastructure.config.settings import settings

pytestmark = pytest.mark.asyncio


def make_request(headers: dict, client_host: str = "10.0.0.1") -> Request:
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
        "client": (client_host, 1234),
    }
    return Request(scope)


class TestRateLimitingCron:
    """Tests for rate limiting on cron endpoints."""

    async def test_cron_rate_limit_exceeded(self, async_client: AsyncClient, monkeypatch):
        """Test that the cron endpoint is rate limited (10 requests per minute)."""
        monkeypatch.setattr(settings, "cron_secret", "test-cron-secret")

        for _ in range(10):
            response = await async_client.post("/api/subscription/cron")
            # Should get 401 for the missing token, not 429
            assert response.status_code == 401

        response = await async_client.post("/api/subscription/cron")
        assert response.status_code == 429


class TestClientIp:
    """Tests for the rate limit key."""

    async def test_public_forwarded_ip_is_used(self):
        request = make_request({"X-Forwarded-For": "8.8.8.8, 10.0.0.2"})
        assert _get_real_ip(request) == "8.8.8.8"

    async def test_private_forwarded_ip_is_ignored(self):
        request = make_request({"X-Forwarded-For": "192.168.1.5"}, client_host="198.51.100.1")
        assert _get_real_ip(request) == "198.51.100.1"

    async def test_garbage_header_is_ignored(self):
        request = make_request({"X-Real-IP": "not-an-ip"}, client_host="198.51.100.1")
        assert _get_real_ip(request) == "198.51.100.1"

    async def test_endpoint_limits(self):
        assert get_rate_limit("stripe_webhook") == "100/minute"
        assert get_rate_limit("cron") == "10/minute"
        assert get_rate_limit("unknown") == "100/minute"
