"""
Cron engine backed by APScheduler.
"""

import logging
import secrets
from datetime import datetime
from typing import Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from .types import TickCallback

logger = logging.getLogger(__name__)

# Overlap is decided by the scheduler service's running set. APScheduler's own
# instance limit only has to be high enough to never skip a fire before the
# service gets to see it.
_MAX_CONCURRENT_FIRES = 16


# Classic cron weekday numbering: 0 and 7 are Sunday. APScheduler counts from
# Monday, so numeric weekdays are converted to names before they reach it.
_WEEKDAYS = ["sun", "mon", "tue", "wed", "thu", "fri", "sat"]
_WEEKDAY_NAMES = {
    **{day: i for i, day in enumerate(_WEEKDAYS)},
    "sunday": 0,
    "monday": 1,
    "tuesday": 2,
    "wednesday": 3,
    "thursday": 4,
    "friday": 5,
    "saturday": 6,
}


def _weekday_number(token: str, field: str) -> int:
    if token.isdigit() and int(token) <= 7:
        return int(token)
    if token.lower() in _WEEKDAY_NAMES:
        return _WEEKDAY_NAMES[token.lower()]
    raise ValueError(f"Invalid day of week '{token}' in '{field}'")


def translate_day_of_week(field: str) -> str:
    """
    Convert a cron day-of-week field to APScheduler weekday names.

    ``"1-5"`` becomes ``"mon,tue,wed,thu,fri"`` and ``"0"`` becomes ``"sun"``.

    Raises:
        ValueError: If the field contains an unknown day, an empty part or a
            descending range
    """
    if field in ("*", "?"):
        return "*"

    days = set()
    for part in field.split(","):
        expr, has_step, step_text = part.partition("/")
        if has_step and not (step_text.isdigit() and int(step_text) > 0):
            raise ValueError(f"Invalid step '{step_text}' in day of week '{field}'")
        step = int(step_text) if has_step else 1

        if expr in ("*", "?"):
            first, last = 0, 6
        elif "-" in expr:
            start, _, end = expr.partition("-")
            first, last = _weekday_number(start, field), _weekday_number(end, field)
        else:
            first = _weekday_number(expr, field)
            # "2/3" runs from Tuesday to the end of the week
            last = 6 if has_step else first

        if last < first:
            raise ValueError(f"Invalid day of week range '{expr}' in '{field}'")
        days.update(day % 7 for day in range(first, last + 1, step))

    if len(days) == 7:
        return "*"
    return ",".join(_WEEKDAYS[day] for day in sorted(days))


def build_cron_trigger(expression: str, timezone: Optional[str] = None) -> CronTrigger:
    """
    Build a CronTrigger from a 5 or 6 field cron expression.

    Five fields are ``minute hour day month day_of_week``. Six fields add a
    leading ``second`` field. ``day_of_week`` uses cron numbering, see
    ``translate_day_of_week``.

    Raises:
        ValueError: If the expression has the wrong number of fields or any
            field is rejected by APScheduler
    """
    parts = expression.strip().split()
    if len(parts) == 5:
        second = "0"
        minute, hour, day, month, day_of_week = parts
    elif len(parts) == 6:
        second, minute, hour, day, month, day_of_week = parts
    else:
        raise ValueError(
            f"Cron expression '{expression}' must have 5 fields "
            "(minute hour day month day_of_week) or 6 fields with a leading second"
        )

    return CronTrigger(
        second=second,
        minute=minute,
        hour=hour,
        day=day,
        month=month,
        day_of_week=translate_day_of_week(day_of_week),
        timezone=timezone,
    )


class CronTimerHandle:
    """Handle for one callback scheduled on the APScheduler instance."""

    def __init__(self, scheduler: AsyncIOScheduler, job_id: str, expression: str):
        self._scheduler = scheduler
        self.job_id = job_id
        self.expression = expression
        self._stopped = False

    @property
    def stopped(self) -> bool:
        return self._stopped

    @property
    def next_run_time(self) -> Optional[datetime]:
        if self._stopped:
            return None
        job = self._scheduler.get_job(self.job_id)
        # Jobs added before the scheduler starts have no next_run_time yet
        return getattr(job, "next_run_time", None) if job else None

    def stop(self) -> None:
        """Remove the job from the scheduler. A run already in flight is not touched."""
        if self._stopped:
            return
        try:
            self._scheduler.remove_job(self.job_id)
        except JobLookupError:
            logger.debug(f"Timer {self.job_id} was already removed from the scheduler")
        self._stopped = True


class APSchedulerCronEngine:
    """
    Schedules tick callbacks with an AsyncIOScheduler.

    Every call to ``schedule`` creates a new APScheduler job with a unique id,
    so replacing a job's timer never reuses the old one.
    """

    def __init__(
        self,
        scheduler: Optional[AsyncIOScheduler] = None,
        timezone: Optional[str] = None,
    ):
        self.timezone = timezone
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone or "UTC")

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        if self.scheduler.running:
            logger.warning("Cron engine is already running")
            return
        self.scheduler.start()
        logger.info("Cron engine started")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Cron engine shut down")

    def validate(self, expression: str) -> None:
        """Raise ValueError if ``expression`` cannot be scheduled."""
        build_cron_trigger(expression, self.timezone)

    def schedule(
        self, expression: str, callback: TickCallback, name: Optional[str] = None
    ) -> CronTimerHandle:
        """
        Invoke ``callback`` at every fire time of ``expression``.

        Raises:
            ValueError: If the cron expression is invalid
        """
        trigger = build_cron_trigger(expression, self.timezone)
        job_id = f"{name or 'job'}#{secrets.token_hex(4)}"

        self.scheduler.add_job(
            callback,
            trigger=trigger,
            id=job_id,
            name=name,
            max_instances=_MAX_CONCURRENT_FIRES,
            coalesce=True,
        )
        return CronTimerHandle(self.scheduler, job_id, expression)
