"""Time-based progress calculations.

Every function takes the current time as an argument so results are
deterministic for a given clock reading. Naive datetimes are read as UTC.
"""

import math
from datetime import datetime, timedelta
from typing import Optional

from src.models.progress import ProgressColor, ProgressStatus
from src.utils.clock import ensure_utc

_DAY = timedelta(days=1)

OVERDUE = ProgressColor(band="critical-red", status=ProgressStatus.OVERDUE, color="error")
UPCOMING = ProgressColor(band="info-blue", status=ProgressStatus.UPCOMING, color="info")
ON_TRACK = ProgressColor(band="green", status=ProgressStatus.ON_TRACK, color="success")
ATTENTION = ProgressColor(band="yellow", status=ProgressStatus.ATTENTION, color="warning")
URGENT = ProgressColor(band="orange", status=ProgressStatus.URGENT, color="warning")
CRITICAL = ProgressColor(band="red", status=ProgressStatus.CRITICAL, color="error")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _share_at_least(part: timedelta, whole: timedelta, percent: int) -> bool:
    # Exact comparison on microseconds, no float rounding at band edges
    return part * 100 >= whole * percent


def _ceil_days(delta: timedelta) -> int:
    return math.ceil(delta / _DAY)


def calculate_auto_progress(start: datetime, end: datetime, now: datetime) -> int:
    """Percent of the planned window that has elapsed, 0-100."""
    start, end, now = ensure_utc(start), ensure_utc(end), ensure_utc(now)

    if now < start:
        return 0
    if now > end:
        return 100

    total = end - start
    if total <= timedelta(0):
        # Zero-length (or inverted) window: done once the end is reached
        return 100 if now >= end else 0

    progress = _round_half_up((now - start) / total * 100)
    return min(100, max(0, progress))


def get_days_remaining(end: datetime, now: datetime) -> int:
    """Whole days left until ``end``, rounded up. Negative once overdue."""
    return _ceil_days(ensure_utc(end) - ensure_utc(now))


def get_total_days(start: datetime, end: datetime) -> int:
    """Length of the planned window in days, rounded up. Not validated."""
    return _ceil_days(ensure_utc(end) - ensure_utc(start))


def get_progress_color(start: datetime, end: datetime, now: datetime) -> ProgressColor:
    """
    Health band for a task based on the share of time remaining.

    At least 60% remaining is on-track, 40-60% attention, 20-40% urgent and
    under 20% critical; each band includes its lower bound. Past the end
    date the task is overdue; before the start date it is upcoming.
    """
    start, end, now = ensure_utc(start), ensure_utc(end), ensure_utc(now)

    if now > end:
        return OVERDUE
    if now < start:
        return UPCOMING

    total = end - start
    if total <= timedelta(0):
        return CRITICAL

    remaining = end - now

    # Lower edges are inclusive: exactly 60% remaining is on-track
    if _share_at_least(remaining, total, 60):
        return ON_TRACK
    if _share_at_least(remaining, total, 40):
        return ATTENTION
    if _share_at_least(remaining, total, 20):
        return URGENT
    return CRITICAL


def is_overdue(end: datetime, now: datetime) -> bool:
    """Whether the end date has passed."""
    return ensure_utc(now) > ensure_utc(end)


def get_display_progress(auto_progress: int, manual_progress: Optional[int]) -> int:
    """The progress value shown to users: the manual override when set, else auto progress."""
    if manual_progress is not None:
        return manual_progress
    return auto_progress
