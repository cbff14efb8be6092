"""Background scheduler for periodic tasks.

Uses APScheduler to run the CRM token refresh sweep on an interval.
Controlled by the ENABLE_SCHEDULER setting (default True); set
ENABLE_SCHEDULER=false to disable during tests or CI.
"""

import logging
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from scribe_crm.core.config import Settings, get_settings
from scribe_crm.jobs.token_refresh_job import run_token_refresh_job

logger = logging.getLogger(__name__)

TOKEN_REFRESH_JOB_ID = "crm_token_refresh"


async def _run_token_refresh() -> None:
    """Scheduled entry point for the token refresh sweep."""
    try:
        await run_token_refresh_job()
    except Exception:
        logger.exception("Token refresh sweep scheduler run failed")


_scheduler: Any = None


async def start_scheduler(settings: Settings | None = None) -> None:
    """Start the APScheduler background scheduler if enabled."""
    global _scheduler
    settings = settings or get_settings()

    if not settings.ENABLE_SCHEDULER:
        logger.info("Background scheduler disabled (ENABLE_SCHEDULER != true)")
        return
    if _scheduler is not None:
        return

    try:
        _scheduler = AsyncIOScheduler()
        _scheduler.add_job(
            _run_token_refresh,
            trigger=IntervalTrigger(minutes=settings.TOKEN_SWEEP_INTERVAL_MINUTES),
            id=TOKEN_REFRESH_JOB_ID,
            name="CRM token refresh sweep",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        _scheduler.start()
        logger.info(
            "Background scheduler started: CRM token refresh every %d min",
            settings.TOKEN_SWEEP_INTERVAL_MINUTES,
        )
    except Exception:
        _scheduler = None
        logger.exception("Failed to start background scheduler")


async def stop_scheduler() -> None:
    """Stop the background scheduler if running."""
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        logger.info("Background scheduler stopped")
