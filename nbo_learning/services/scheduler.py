"""
Maturation Scheduler: runs outside the request path.

Jobs:
1. Measure pending outcomes (every NBO_MATURATION_SCAN_INTERVAL_HOURS, default 24h)
"""

from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker

from nbo_learning.config import Settings, settings as default_settings
from nbo_learning.db.engine import get_db_session
from nbo_learning.learning.schemas import BatchMeasurementResult
from nbo_learning.learning.service import create_learning_service

logger = structlog.get_logger(__name__)


class MaturationScheduler:
    """Periodically completes outcomes for matured feedback."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Optional[Settings] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or default_settings
        self.scheduler = AsyncIOScheduler()

    def start(self):
        """Register and start the scheduled job."""
        self.scheduler.add_job(
            self.run_maturation_scan,
            IntervalTrigger(hours=self.settings.maturation_scan_interval_hours),
            id="measure_pending_outcomes",
            max_instances=1,
            replace_existing=True,
        )
        self.scheduler.start()
        logger.info(
            "maturation_scheduler_started",
            interval_hours=self.settings.maturation_scan_interval_hours,
        )

    def stop(self):
        """Gracefully stop the scheduler."""
        self.scheduler.shutdown(wait=True)
        logger.info("maturation_scheduler_stopped")

    async def run_maturation_scan(self) -> Optional[BatchMeasurementResult]:
        """One scan in its own session. A failed run is logged and retried next interval."""
        logger.info("maturation_scan_started")
        try:
            async with get_db_session(self.session_factory) as session:
                service = create_learning_service(session, self.settings)
                result = await service.measure_pending_outcomes()
        except Exception as e:
            logger.error("maturation_scan_failed", error=str(e))
            return None

        logger.info(
            "maturation_scan_completed",
            measured=result.measured,
            errors=result.errors,
            skipped=result.skipped,
        )
        return result
