"""
API request/response schemas.
"""

from .stripe import WebhookResponse
from .subscription import (
    DowngradedUser,
    ExpirySweepResponse,
    MaintenanceRequest,
    MaintenanceResponse,
    TierCapabilities,
    TierInfo,
    TiersResponse,
)

__all__ = [
    "WebhookResponse",
    "MaintenanceRequest",
    "MaintenanceResponse",
    "DowngradedUser",
    "ExpirySweepResponse",
    "TierCapabilities",
    "TierInfo",
    "TiersResponse",
]
