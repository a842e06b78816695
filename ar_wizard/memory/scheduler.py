"""APScheduler integration for periodic knowledge store maintenance.

Uses AsyncIOScheduler with CronTrigger to sweep expired analyses and scan for
stale knowledge on a configurable schedule.  No-ops gracefully if no cron
expression is configured.
"""

import contextlib
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]

from ar_wizard.config import get_settings
from ar_wizard.memory.manager import KnowledgeStore

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def _scheduled_maintenance_job(store: KnowledgeStore) -> None:
    """Async job executed by the scheduler."""
    try:
        report = await store.perform_maintenance(trigger="scheduled")
        if not report.ok:
            logger.warning("Scheduled maintenance finished with errors: %s", "; ".join(report.errors))
    except Exception:
        logger.exception("Scheduled maintenance failed")


def start_scheduler(store: KnowledgeStore) -> None:
    """Start the APScheduler if a cron expression is configured.

    Must be called from a running event loop.
    """
    global _scheduler  # noqa: PLW0603

    settings = get_settings()
    if not settings.maintenance_schedule_cron:
        logger.info("Maintenance scheduler disabled (MAINTENANCE_SCHEDULE_CRON not set)")
        return

    trigger = CronTrigger.from_crontab(settings.maintenance_schedule_cron)
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        _scheduled_maintenance_job,
        trigger=trigger,
        args=[store],
        id="knowledge_maintenance",
        name="Knowledge Store Maintenance",
        replace_existing=True,
    )
    _scheduler.start()
    logger.info("Maintenance scheduler started with cron: %s", settings.maintenance_schedule_cron)


def stop_scheduler() -> None:
    """Gracefully shut down the scheduler if it is running."""
    global _scheduler  # noqa: PLW0603

    if _scheduler is not None:
        with contextlib.suppress(Exception):
            _scheduler.shutdown(wait=False)
        logger.info("Maintenance scheduler stopped")
        _scheduler = None
