"""
Cron endpoints for subscription maintenance.

``/subscription/cron`` reconciles paying profiles against Stripe;
``/cron/check-subscriptions`` only downgrades subscriptions whose expiry
date has passed. Both require ``Authorization: Bearer <CRON_SECRET>``.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Body, Depends, Header, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from api.dependencies import cron_authorized, get_maintenance_job
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.subscription import (
    DowngradedUser,
    ExpirySweepResponse,
    MaintenanceRequest,
    MaintenanceResponse,
)
from infrastructure.config.settings import settings
from infrastructure.database import get_session_factory
from services.subscription_maintenance import (
    SubscriptionMaintenanceJob,
    expire_lapsed_subscriptions,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Subscription maintenance"])

_UNAUTHORIZED = {"error": "Unauthorized"}


async def _run_maintenance(job: SubscriptionMaintenanceJob, user_ids: list[str] | None):
    try:
        summary = await job.run(user_ids=user_ids)
    except Exception:
        # The job has already logged and recorded the failure
        return JSONResponse(status_code=500, content={"error": "Subscription maintenance failed"})

    return MaintenanceResponse(
        timestamp=summary.timestamp,
        users_found=summary.users_found,
        users_checked=summary.users_checked,
        users_updated=summary.users_updated,
        errors=summary.errors,
        duration=summary.duration,
        details=summary.details,
    )


@router.post("/subscription/cron", response_model=MaintenanceResponse)
@limiter.limit(get_rate_limit("cron"))
async def run_subscription_maintenance(
    request: Request,
    authorized: Annotated[bool, Depends(cron_authorized)],
    job: Annotated[SubscriptionMaintenanceJob, Depends(get_maintenance_job)],
    body: Annotated[MaintenanceRequest | None, Body()] = None,
):
    """Re-check every paying profile (or the given ``userIds``) against Stripe."""
    if not authorized:
        logger.error("Unauthorized cron request")
        return JSONResponse(status_code=401, content=_UNAUTHORIZED)

    return await _run_maintenance(job, body.user_ids if body else None)


@router.get("/subscription/cron", response_model=MaintenanceResponse)
@limiter.limit(get_rate_limit("cron"))
async def trigger_subscription_maintenance(
    request: Request,
    authorized: Annotated[bool, Depends(cron_authorized)],
    job: Annotated[SubscriptionMaintenanceJob, Depends(get_maintenance_job)],
    authorization: Annotated[str | None, Header()] = None,
):
    """Manual trigger. Outside development a bearer token is always required."""
    if not settings.is_development and not (authorization or "").startswith("Bearer "):
        return JSONResponse(
            status_code=401,
            content={"error": "Authorization required for manual trigger"},
        )
    if not authorized:
        logger.error("Unauthorized cron request")
        return JSONResponse(status_code=401, content=_UNAUTHORIZED)

    logger.info("Manual subscription maintenance trigger")
    return await _run_maintenance(job, None)


@router.api_route(
    "/cron/check-subscriptions",
    methods=["GET", "POST"],
    response_model=ExpirySweepResponse,
)
@limiter.limit(get_rate_limit("cron"))
async def check_expired_subscriptions(
    request: Request,
    authorized: Annotated[bool, Depends(cron_authorized)],
    session_factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
):
    """Downgrade web subscriptions whose expiry date has passed."""
    if not authorized:
        return JSONResponse(status_code=401, content=_UNAUTHORIZED)

    try:
        downgraded = await expire_lapsed_subscriptions(session_factory)
    except Exception as e:
        logger.error("Subscription expiry sweep failed: %s", e, exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    if not downgraded:
        message = "No expired subscriptions found"
    else:
        message = f"Processed {len(downgraded)} expired subscriptions"

    return ExpirySweepResponse(
        message=message,
        processed=len(downgraded),
        downgraded_users=[DowngradedUser(**entry) for entry in downgraded],
    )
