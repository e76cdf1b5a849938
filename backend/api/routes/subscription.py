"""Subscription tier catalogue."""

from fastapi import APIRouter

from api.schemas.subscription import TierCapabilities, TierInfo, TiersResponse
from core.plans import TIERS, WELCOME_BONUS_PICKS

router = APIRouter(prefix="/subscription", tags=["Subscription"])


@router.get("/tiers", response_model=TiersResponse)
async def list_tiers():
    """Capabilities unlocked by each subscription tier."""
    return TiersResponse(
        tiers=[
            TierInfo(id=tier_id, name=tier["name"], capabilities=TierCapabilities(**tier["capabilities"]))
            for tier_id, tier in TIERS.items()
        ],
        welcome_bonus_picks=WELCOME_BONUS_PICKS,
    )
