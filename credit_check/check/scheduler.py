"""APScheduler integration for the recurring end-of-month credit check.

Uses AsyncIOScheduler with CronTrigger.  No-ops if no cron expression is
configured.
"""

import contextlib
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore[import-untyped]
from apscheduler.triggers.cron import CronTrigger  # type: ignore[import-untyped]

from credit_check.check.service import execute_check
from credit_check.config import get_settings

logger = logging.getLogger(__name__)

_scheduler: AsyncIOScheduler | None = None


async def _scheduled_check_job() -> None:
    """Run the check and post alerts; failures are logged, never raised into the scheduler."""
    settings = get_settings()
    try:
        run = await execute_check(trigger="scheduled", post=settings.scheduled_post_to_slack)
    except Exception:
        logger.exception("Scheduled credit check failed")
        return

    report = run.report
    logger.info(
        "Scheduled credit check finished: %d customer(s), %d alert(s), %d error(s)",
        len(report.results),
        len(report.alerts),
        len(report.errors),
    )
    if run.slack is not None and not run.slack.ok:
        logger.warning("Some Slack messages failed: %s", ", ".join(run.slack.failures))


def start_scheduler() -> None:
    """Start the APScheduler if a cron expression is configured."""
    global _scheduler  # noqa: PLW0603

    settings = get_settings()
    if not settings.check_schedule_cron:
        logger.info("Credit check scheduler disabled (CHECK_SCHEDULE_CRON not set)")
        return

    trigger = CronTrigger.from_crontab(settings.check_schedule_cron)
    _scheduler = AsyncIOScheduler()
    _scheduler.add_job(
        _scheduled_check_job,
        trigger=trigger,
        id="eom_credit_check",
        name="EOM Credit Check",
        replace_existing=True,
    )
    _scheduler.start()
    logger.info("Credit check scheduler started with cron: %s", settings.check_schedule_cron)


def is_scheduler_running() -> bool:
    return _scheduler is not None


def stop_scheduler() -> None:
    """Gracefully shut down the scheduler if it is running."""
    global _scheduler  # noqa: PLW0603

    if _scheduler is not None:
        with contextlib.suppress(Exception):
            _scheduler.shutdown(wait=False)
        logger.info("Credit check scheduler stopped")
        _scheduler = None
