"""
Tier configuration for subscription plans.

This module is the single source of truth for what each tier unlocks.
It lives in core/ so both service and API layers can import from it
without creating circular dependencies.
"""

from core.domain.subscription import SubscriptionTier

# Picks shown per day while the welcome bonus is active (all tiers)
WELCOME_BONUS_PICKS = 5

TIERS = {
    SubscriptionTier.FREE.value: {
        "name": "Free",
        "capabilities": {
            "daily_picks": 2,
            "team_picks": 1,
            "player_prop_picks": 1,
            "daily_insights": 6,
            "daily_trends": 5,
            "show_upgrade_prompts": True,
            "lock_of_the_day": False,
            "advanced_ui": False,
        },
    },
    SubscriptionTier.PRO.value: {
        "name": "Pro",
        "capabilities": {
            "daily_picks": 20,
            "team_picks": 10,
            "player_prop_picks": 10,
            "daily_insights": 8,
            "daily_trends": 10,
            "show_upgrade_prompts": False,
            "lock_of_the_day": False,
            "advanced_ui": True,
        },
    },
    SubscriptionTier.ELITE.value: {
        "name": "Elite",
        "capabilities": {
            "daily_picks": 30,
            "team_picks": 15,
            "player_prop_picks": 15,
            "daily_insights": 12,
            "daily_trends": 15,
            "show_upgrade_prompts": False,
            "lock_of_the_day": True,
            "advanced_ui": True,
        },
    },
}
