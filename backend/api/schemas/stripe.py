"""
Stripe webhook response schemas.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class WebhookResponse(BaseModel):
    """Acknowledgement returned to Stripe for a verified event."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    received: bool = Field(True, description="The event was verified and parsed")
    processed: bool = Field(..., description="The event was applied (or already had been)")
    processing_time_ms: int = Field(..., description="Handler time in milliseconds")
    error: str | None = Field(None, description="Reason the event was not applied")
    duplicate: bool = Field(False, description="The event id was already processed")
