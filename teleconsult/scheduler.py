"""
APScheduler jobs for the reminder scanners:

  - Every minute: T-5 reminder and start-now reminder
  - Every 5 minutes: J-1 (24h) and J-1h reminders, with professional emails
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from teleconsult import reminders
from teleconsult.config import settings

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def _run_scan(flag: str) -> None:
    try:
        reminders.scan_reminders(flag)
    except Exception as exc:
        logger.error("Reminder scan %s failed: %s", flag, exc)


def get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler(timezone=settings.tz)

        for flag, window in reminders.WINDOWS.items():
            _scheduler.add_job(
                _run_scan,
                IntervalTrigger(minutes=window.interval_minutes, timezone=settings.tz),
                args=[flag],
                id=f"remind_{flag}",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

    return _scheduler
