"""Day-streak tracking.

A streak is the number of consecutive calendar days with at least one
reading log. ``update_streak`` is the incremental transition applied on
every new log; ``calculate_streak`` re-derives the same fields from the
full set of log dates and is the reconciliation path.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreakState:
    current_streak: int
    longest_streak: int
    last_reading_date: date | None
    # False only for a same-day re-log (streak left untouched)
    advanced: bool = True


def days_between(earlier: date, later: date) -> int:
    """Signed number of calendar days from ``earlier`` to ``later``."""
    return (later - earlier).days


def update_streak(
    log_date: date,
    current_streak: int,
    longest_streak: int,
    last_reading_date: date | None,
) -> StreakState:
    """Apply one reading log to the streak.

    - no previous log: streak starts at 1
    - same day as the last log: unchanged
    - the day after the last log: +1
    - anything else (a gap, or a backdated log): reset to 1
    """
    advanced = True
    if last_reading_date is None:
        streak = 1
    else:
        day_diff = days_between(last_reading_date, log_date)
        if day_diff == 0:
            streak = current_streak
            advanced = False
        elif day_diff == 1:
            streak = current_streak + 1
        else:
            if day_diff < 0:
                logger.debug("Backdated log %s before %s resets streak", log_date, last_reading_date)
            streak = 1

    return StreakState(
        current_streak=streak,
        longest_streak=max(longest_streak, streak),
        last_reading_date=log_date,
        advanced=advanced,
    )


def _run_back_from(days: set[date], start: date, stop: date | None = None) -> int:
    """Count consecutive days present in ``days`` walking back from ``start``."""
    streak = 0
    check = start
    while check in days and (stop is None or check >= stop):
        streak += 1
        check -= timedelta(days=1)
    return streak


def _anchor(days: set[date], today: date) -> date | None:
    """Today if it has a log, else yesterday if it has one, else None."""
    if today in days:
        return today
    yesterday = today - timedelta(days=1)
    if yesterday in days:
        return yesterday
    return None


def calculate_streak(reading_dates: Iterable[date], today: date) -> StreakState:
    """Re-derive streak fields from every reading date a user has.

    The current streak counts back from today (or from yesterday when
    today has no log yet) and is 0 when neither day has a log. The
    longest streak is the longest run of consecutive days anywhere in
    the history.
    """
    days = set(reading_dates)
    if not days:
        return StreakState(current_streak=0, longest_streak=0, last_reading_date=None)

    anchor = _anchor(days, today)
    current = _run_back_from(days, anchor) if anchor is not None else 0

    longest = 0
    run = 0
    previous: date | None = None
    for day in sorted(days):
        run = run + 1 if previous is not None and days_between(previous, day) == 1 else 1
        longest = max(longest, run)
        previous = day

    return StreakState(
        current_streak=current,
        longest_streak=max(longest, current),
        last_reading_date=max(days),
    )


def weekly_streak(reading_dates: Iterable[date], today: date, week_start: date) -> int:
    """Consecutive reading days inside the current week, ending today or yesterday.

    Counting stops at ``week_start``; a streak that began last week only
    contributes its days from Monday on.
    """
    days = {d for d in reading_dates if week_start <= d <= today}
    anchor = _anchor(days, today)
    if anchor is None:
        return 0
    return _run_back_from(days, anchor, stop=week_start)
