"""
Background renewal of calendar push channels.

Google watch channels expire; an APScheduler interval job re-subscribes every
link whose channel ends within the configured lead time.
"""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from instructor_booking.core.config import Settings, get_settings
from instructor_booking.services.calendar_bridge import ExternalCalendarBridge

logger = logging.getLogger(__name__)

RENEWAL_JOB_ID = "renew_calendar_channels"

_scheduler: BackgroundScheduler | None = None


def renew_calendar_channels_job() -> None:
    try:
        renewed = ExternalCalendarBridge(get_settings()).renew_expiring_links()
    except Exception:
        logger.exception("Calendar channel renewal job failed")
        return
    if renewed:
        logger.info("Calendar channels renewed count=%s", renewed)


def start_channel_renewal(settings: Settings | None = None) -> BackgroundScheduler | None:
    global _scheduler

    current_settings = settings or get_settings()
    if not current_settings.calendar_channel_renewal_enabled:
        logger.info("Calendar channel renewal disabled")
        return None
    if _scheduler is not None:
        return _scheduler

    scheduler = BackgroundScheduler(daemon=True, timezone="UTC")
    scheduler.add_job(
        func=renew_calendar_channels_job,
        trigger=IntervalTrigger(minutes=current_settings.calendar_channel_renewal_interval_minutes),
        id=RENEWAL_JOB_ID,
        name="Renew expiring calendar push channels",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    _scheduler = scheduler
    logger.info(
        "Calendar channel renewal started interval_minutes=%s",
        current_settings.calendar_channel_renewal_interval_minutes,
    )
    return scheduler


def stop_channel_renewal() -> None:
    global _scheduler

    if _scheduler is None:
        return
    _scheduler.shutdown(wait=False)
    _scheduler = None
    logger.info("Calendar channel renewal stopped")
