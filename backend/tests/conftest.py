"""
Pytest configuration and shared fixtures for backend tests.
"""

import json
import sys
from pathlib import Path
from typing import AsyncGenerator, Optional

# Add backend directory to path for imports
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

# Import after path is set
from api.dependencies import get_stripe_gateway
from infrastructure.database.connection import get_db, get_session_factory
from infrastructure.database.models import Base, Profile

from stripe_helpers import TEST_WEBHOOK_SECRET, FakeStripeGateway, sign_payload


# ============================================================================
# Stripe Fixtures
# ============================================================================


@pytest.fixture
def fake_gateway() -> FakeStripeGateway:
    return FakeStripeGateway()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
async def db_engine(tmp_path):
    """
    Create a file-backed SQLite engine for one test.

    NullPool gives every session its own connection, which the concurrent
    reconciler checks rely on.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def create_profile(session_factory):
    """
    Factory fixture for profiles.

    Usage:
        profile = await create_profile("u1", email="u1@example.com", subscription_tier="pro")
    """

    async def _create(user_id: str, **fields) -> Profile:
        fields.setdefault("email", f"{user_id}@example.com")
        async with session_factory() as session:
            profile = Profile(id=user_id, **fields)
            session.add(profile)
            await session.commit()
            return profile

    return _create


@pytest.fixture
def load_profile(session_factory):
    """Read a profile back in a fresh session."""

    async def _load(user_id: str) -> Optional[Profile]:
        async with session_factory() as session:
            return await session.get(Profile, user_id)

    return _load


# ============================================================================
# HTTP Client Fixtures
# ============================================================================


@pytest.fixture
async def async_client(session_factory, fake_gateway) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client wired to the test database and fake Stripe."""
    # Import app here to avoid circular imports
    from main import app

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_stripe_gateway] = lambda: fake_gateway

    # Reset rate limiter state between tests to prevent cross-test 429s
    app.state.limiter.reset()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def post_webhook(async_client: AsyncClient):
    """POST a signed Stripe event to the webhook endpoint."""

    async def _post(event: dict, secret: str = TEST_WEBHOOK_SECRET, signature: Optional[str] = None):
        payload = json.dumps(event)
        headers = {
            "Content-Type": "application/json",
            "Stripe-Signature": signature if signature is not None else sign_payload(payload, secret),
        }
        return await async_client.post("/api/stripe/webhook-enhanced", content=payload, headers=headers)

    return _post
