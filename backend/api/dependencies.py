"""
API dependencies for the billing endpoints.
"""

import hmac
import logging
from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from adapters.payments.stripe_adapter import StripeGateway, create_stripe_gateway
from infrastructure.config.settings import settings
from infrastructure.database import get_session_factory
from services.subscription_checker import SubscriptionChecker
from services.subscription_maintenance import SubscriptionMaintenanceJob

logger = logging.getLogger(__name__)


@lru_cache
def get_stripe_gateway() -> StripeGateway:
    """Shared Stripe gateway built from settings."""
    return create_stripe_gateway()


def get_subscription_checker(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    gateway: Annotated[StripeGateway, Depends(get_stripe_gateway)],
) -> SubscriptionChecker:
    return SubscriptionChecker(session_factory, gateway)


def get_maintenance_job(
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
    checker: Annotated[SubscriptionChecker, Depends(get_subscription_checker)],
) -> SubscriptionMaintenanceJob:
    return SubscriptionMaintenanceJob(session_factory, checker)


def cron_authorized(
    authorization: Annotated[str | None, Header()] = None,
) -> bool:
    """
    Check the cron bearer token.

    Returns True when the header matches ``CRON_SECRET``. With no secret
    configured every request is allowed; production refuses to start in
    that state.
    """
    if not settings.cron_secret:
        logger.warning("CRON_SECRET not configured - allowing cron job for development")
        return True

    if not authorization:
        return False
    return hmac.compare_digest(authorization.encode(), f"Bearer {settings.cron_secret}".encode())
