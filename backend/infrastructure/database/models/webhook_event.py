"""
Stripe webhook event ledger.

Every delivered event with an id is recorded here. The ledger doubles as
the idempotency check: an event already marked processed is acknowledged
without being applied again.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class StripeWebhookEvent(Base):
    """A single Stripe event delivery."""

    __tablename__ = "stripe_webhook_events"

    # Stripe event id (evt_...)
    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)

    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<StripeWebhookEvent(id={self.id}, type={self.type}, processed={self.processed})>"
