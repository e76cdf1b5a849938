"""
Cron job audit log model.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class CronLogStatus(str, Enum):
    """Outcome of a cron job run."""

    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


class CronLog(Base):
    """Append-only record of a scheduled job run."""

    __tablename__ = "cron_logs"

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )

    job_type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    """Values: 'subscription_maintenance', 'subscription_expiry_sweep'"""

    status: Mapped[str] = mapped_column(String(50), nullable=False)

    summary: Mapped[dict] = mapped_column(JSON, nullable=False)
    """
    Structure:
    {
        "timestamp": "2025-01-15T12:00:00+00:00",
        "usersFound": 12,
        "usersChecked": 11,
        "usersUpdated": 2,
        "errors": 1,
        "duration": "840ms"
    }
    """

    details: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    """Per-user outcomes, capped to the first N entries."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (Index("ix_cron_logs_job_created", "job_type", "created_at"),)

    def __repr__(self) -> str:
        return f"<CronLog(job_type={self.job_type}, status={self.status})>"
