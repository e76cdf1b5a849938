"""
Subscription maintenance and tier catalogue schemas.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class MaintenanceRequest(CamelModel):
    """Optional body of the maintenance cron endpoint."""

    user_ids: list[str] | None = Field(
        None, description="Check exactly these profiles instead of every paying one"
    )


class MaintenanceResponse(CamelModel):
    """Summary of a subscription maintenance run."""

    success: bool = True
    timestamp: datetime
    users_found: int
    users_checked: int
    users_updated: int
    errors: int
    duration: str = Field(..., description='Run time, e.g. "840ms"')
    details: list[dict[str, Any]] = Field(
        default_factory=list,
        description="Per-user outcome: before/after snapshot or an error",
    )


class DowngradedUser(CamelModel):
    id: str
    email: str | None = None
    previous_tier: str
    plan_type: str | None = None
    expired_at: str | None = None


class ExpirySweepResponse(CamelModel):
    """Result of the expired-subscription sweep."""

    message: str
    processed: int
    downgraded_users: list[DowngradedUser] = Field(default_factory=list)


class TierCapabilities(CamelModel):
    daily_picks: int
    team_picks: int
    player_prop_picks: int
    daily_insights: int
    daily_trends: int
    show_upgrade_prompts: bool
    lock_of_the_day: bool
    advanced_ui: bool


class TierInfo(CamelModel):
    id: str = Field(..., description="Tier id (free, pro, elite)")
    name: str
    capabilities: TierCapabilities


class TiersResponse(CamelModel):
    """All subscription tiers and what they unlock."""

    tiers: list[TierInfo]
    welcome_bonus_picks: int
