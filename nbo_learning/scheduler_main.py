"""
Scheduler Entry Point: runs as its own process.

Usage:
    python -m nbo_learning.scheduler_main

This does NOT run a web server. It runs the APScheduler
background loop that measures matured outcomes.
"""

import asyncio
import signal

import structlog

from nbo_learning.config import settings
from nbo_learning.db.engine import close_db, get_session_factory, init_db
from nbo_learning.logging_config import configure_logging
from nbo_learning.services.scheduler import MaturationScheduler

logger = structlog.get_logger(__name__)


async def main():
    """Initialize and run the scheduler."""
    configure_logging(settings)
    logger.info("scheduler_starting", version=settings.app_version)

    await init_db()
    scheduler = MaturationScheduler(session_factory=get_session_factory(), settings=settings)

    # Catch up on anything that matured while we were down
    logger.info("running_initial_scan")
    await scheduler.run_maturation_scan()

    scheduler.start()

    # Graceful shutdown handling
    stop_event = asyncio.Event()

    def _handle_signal(signum, frame):
        logger.info("shutdown_signal_received", signal=signum)
        stop_event.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    logger.info("scheduler_running", msg="Waiting for jobs... Ctrl+C to stop.")

    await stop_event.wait()

    scheduler.stop()
    await close_db()
    logger.info("scheduler_shutdown_complete")


def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
