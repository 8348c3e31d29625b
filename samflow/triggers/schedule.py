"""
Samflow Cron Schedules

Five-field cron expressions for scheduled triggers.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, Optional, Tuple

import pytz
import structlog
from croniter import croniter

from samflow.errors import InvalidScheduleError

logger = structlog.get_logger(__name__)

CRON_FIELDS = ("minute", "hour", "day_of_month", "month", "day_of_week")


class CronSchedule:
    """
    A validated cron schedule.

    Features:
    - Five-field cron expressions (minute hour day-of-month month day-of-week)
    - Optional timezone
    - Next run calculation

    Times passed in and returned are naive local datetimes.
    """

    def __init__(self, expression: str, timezone: Optional[str] = None):
        self.expression = " ".join(expression.split())
        self.timezone = timezone

        if not validate_cron(self.expression):
            raise InvalidScheduleError(f"Invalid cron expression: {expression!r}")

        self.tz = None
        if timezone:
            try:
                self.tz = pytz.timezone(timezone)
            except pytz.UnknownTimeZoneError as e:
                raise InvalidScheduleError(f"Unknown timezone: {timezone!r}") from e

    def next_fire(self, after: Optional[datetime] = None) -> datetime:
        """First occurrence strictly after ``after``."""
        after = after or datetime.now()

        if self.tz is None:
            return croniter(self.expression, after).get_next(datetime)

        local = after.astimezone(self.tz)
        upcoming = croniter(self.expression, local).get_next(datetime)
        return upcoming.astimezone().replace(tzinfo=None)

    def describe(self) -> str:
        return describe_cron(self.expression)

    def __repr__(self) -> str:
        return f"CronSchedule({self.expression!r}, timezone={self.timezone!r})"


def parse_cron(expression: str) -> Dict[str, str]:
    """Split a cron expression into named fields."""
    parts = expression.split()
    if len(parts) != len(CRON_FIELDS):
        raise ValueError(f"Invalid cron expression: {expression}")
    return dict(zip(CRON_FIELDS, parts))


def validate_cron(expression: str) -> bool:
    """Validate a five-field cron expression."""
    if not isinstance(expression, str) or len(expression.split()) != len(CRON_FIELDS):
        return False
    try:
        croniter(expression)
        return True
    except (ValueError, KeyError):
        return False


COMMON_SCHEDULES = {
    "* * * * *": "Every minute",
    "0 * * * *": "Every hour",
    "0 0 * * *": "Every day at midnight",
    "0 9 * * *": "Every day at 9 AM",
    "0 0 * * 0": "Every Sunday at midnight",
    "0 2 * * 0": "Every Sunday at 2 AM",
    "0 0 1 * *": "First day of every month at midnight",
    "0 9 * * 1-5": "Every weekday at 9 AM",
    "0 18 * * 1-5": "Every weekday at 6 PM",
    "*/5 * * * *": "Every 5 minutes",
    "*/15 * * * *": "Every 15 minutes",
    "0 */2 * * *": "Every 2 hours",
}

# Cron allows both 0 and 7 for Sunday
WEEKDAY_NAMES = (
    "Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
)
MONTH_NAMES = (
    "", "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
)


def _named(field: str, names: Tuple[str, ...]) -> Optional[str]:
    """Render "1-5" or "1,3" with names, or None if any token is not a plain number."""

    def lookup(token: str) -> Optional[str]:
        if token.isdigit() and int(token) < len(names):
            return names[int(token)] or None
        return None

    rendered = []
    for token in field.split(","):
        low, dash, high = token.partition("-")
        first, last = lookup(low), lookup(high) if dash else None
        if first is None or (dash and last is None):
            return None
        rendered.append(f"{first} to {last}" if dash else first)
    return ", ".join(rendered)


def describe_cron(expression: str) -> str:
    """Get human-readable description of cron expression."""
    expression = " ".join(expression.split())
    if expression in COMMON_SCHEDULES:
        return COMMON_SCHEDULES[expression]

    try:
        fields = parse_cron(expression)
    except ValueError:
        return expression

    minute, hour, day_of_month, month, day_of_week = (fields[name] for name in CRON_FIELDS)
    words = []

    if minute.isdigit() and hour.isdigit():
        words.append(f"at {int(hour):02d}:{int(minute):02d}")
    else:
        for value, unit in ((minute, "minute"), (hour, "hour")):
            if value.startswith("*/"):
                words.append(f"every {value[2:]} {unit}s")
            elif value != "*":
                words.append(f"at {unit} {value}")

    if day_of_month != "*":
        words.append(f"on day {day_of_month} of the month")
    if month != "*":
        words.append(f"in {_named(month, MONTH_NAMES) or 'month ' + month}")
    if day_of_week != "*":
        words.append(f"on {_named(day_of_week, WEEKDAY_NAMES) or 'days ' + day_of_week}")

    return " ".join(words) if words else expression
