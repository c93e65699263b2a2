"""Next-occurrence calculation for recurring reminders.

Monthly recurrence uses relativedelta, which clamps to the last day of the
target month: Jan 31 + 1 month -> Feb 28 (Feb 29 in leap years). The clamped
day then sticks, so a Jan 31 anchor continues Feb 28 -> Mar 28.
"""

from datetime import datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from .types import RecurrencePattern

_STEPS = {
    RecurrencePattern.DAILY: timedelta(days=1),
    RecurrencePattern.WEEKLY: timedelta(days=7),
    RecurrencePattern.MONTHLY: relativedelta(months=1),
}


def parse_pattern(value) -> Optional[RecurrencePattern]:
    """Map a pattern string (any case) to RecurrencePattern, or None."""
    if isinstance(value, RecurrencePattern):
        return value
    if not isinstance(value, str):
        return None
    try:
        return RecurrencePattern(value.strip().lower())
    except ValueError:
        return None


def next_occurrence(current: datetime, pattern) -> Optional[datetime]:
    """Return the instant after `current` for `pattern`, or None for no successor.

    Args:
        current: The instant the reminder fired for
        pattern: "daily", "weekly", "monthly" or anything else

    Returns:
        The successor instant, same wall-clock time as `current`
    """
    parsed = parse_pattern(pattern)
    if parsed is None:
        return None
    return current + _STEPS[parsed]
