"""API Routes."""

from fastapi import APIRouter

from .health import router as health_router
from .stripe_webhook import router as stripe_webhook_router
from .subscription import router as subscription_router
from .subscription_cron import router as subscription_cron_router

# Create main API router
api_router = APIRouter()

# Include route modules
api_router.include_router(health_router, tags=["Health"])
api_router.include_router(stripe_webhook_router)
api_router.include_router(subscription_router)
api_router.include_router(subscription_cron_router)
