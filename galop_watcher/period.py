"""
Period helpers for the Galop Watcher pipeline.

A period is a logical calendar day in the federation's timezone. The first
run of a new period re-announces every confirmed entry, even when nothing
changed since the previous day.
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from galop_watcher.utils import DEFAULT_TIMEZONE, get_logger


# Module logger
logger = get_logger("period")

PERIOD_FORMAT = "%Y-%m-%d"


def local_now(now: Optional[datetime] = None, tz: str = DEFAULT_TIMEZONE) -> datetime:
    """
    Convert a moment to the given timezone.

    Naive datetimes are taken as UTC.

    Args:
        now: Moment to convert. Defaults to the current time.
        tz: IANA timezone name.

    Returns:
        Timezone-aware datetime in tz.
    """
    moment = now or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz))


def current_period(now: Optional[datetime] = None, tz: str = DEFAULT_TIMEZONE) -> str:
    """Return the logical day of a moment as YYYY-MM-DD."""
    return local_now(now, tz).strftime(PERIOD_FORMAT)


def is_first_of_period(
    last_period: Optional[str],
    now: Optional[datetime] = None,
    tz: str = DEFAULT_TIMEZONE
) -> bool:
    """
    Tell whether a run at `now` is the first one of its logical day.

    Args:
        last_period: Period recorded by the previous run, if any.
        now: Moment of the current run.
        tz: IANA timezone name.

    Returns:
        True when no previous period is known or it differs from today.
    """
    period = current_period(now, tz)
    first = not last_period or last_period != period

    if first:
        logger.info(f"First run of period {period} (previous: {last_period or 'none'})")

    return first
