"""
In-process subscription maintenance scheduler.

Runs the maintenance job on a fixed interval for deployments without an
external cron. Disabled when ``SUBSCRIPTION_CHECK_INTERVAL_MINUTES`` is 0.
"""

import asyncio
import logging
from typing import Callable, Optional

from services.subscription_maintenance import SubscriptionMaintenanceJob

logger = logging.getLogger(__name__)


class SubscriptionScheduler:
    """Background loop that periodically runs subscription maintenance."""

    def __init__(self, job_factory: Callable[[], SubscriptionMaintenanceJob], interval_minutes: int):
        self.job_factory = job_factory
        self.check_interval = interval_minutes * 60
        self.is_running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        """Start the scheduler background loop."""
        if self.is_running:
            logger.warning("Subscription scheduler is already running")
            return

        self.is_running = True
        logger.info(
            "Subscription scheduler started - running maintenance every %d seconds",
            self.check_interval,
        )

        while self.is_running:
            await asyncio.sleep(self.check_interval)
            if not self.is_running:
                break
            await self.run_once()

    async def run_once(self):
        """Run one maintenance pass. Errors are logged and do not stop the loop."""
        try:
            await self.job_factory().run()
        except Exception as e:
            logger.error("Scheduled subscription maintenance failed: %s", e, exc_info=True)

    async def stop(self):
        """Stop the scheduler."""
        if not self.is_running:
            return

        self.is_running = False
        logger.info("Subscription scheduler stopped")
