# examcoach/trial_clock.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple

TRIAL_HOURS = 48
TRIAL_LENGTH = timedelta(hours=TRIAL_HOURS)


class TrialAlreadyActivated(Exception):
    """activate() was asked to arm a window on a record that already has one."""


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    SQLite hands back naive datetimes even for timezone=True columns.
    Everything in this package is UTC, so naive means UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def activate(now: datetime, trial_started_at: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Returns (trial_started_at, trial_ends_at) for a trial starting at `now`.

    Passing the record's existing start raises instead of silently moving
    the window.
    """
    if trial_started_at is not None:
        raise TrialAlreadyActivated("Trial window already set")
    start = as_utc(now)
    return start, start + TRIAL_LENGTH


def remaining(trial_ends_at: Optional[datetime], now: datetime) -> Optional[timedelta]:
    if trial_ends_at is None:
        return None
    left = as_utc(trial_ends_at) - as_utc(now)
    if left <= timedelta(0):
        return None
    return left


def is_expired(trial_ends_at: Optional[datetime], now: datetime) -> bool:
    # Strict: at the boundary instant the trial is still active.
    if trial_ends_at is None:
        return False
    return as_utc(now) > as_utc(trial_ends_at)


def format_instant(dt: datetime) -> str:
    dt = as_utc(dt)
    return f"{dt.day}/{dt.month}/{dt.year} {dt.strftime('%H:%M')} UTC"


def display_message(
    trial_started_at: Optional[datetime],
    trial_ends_at: Optional[datetime],
    now: datetime,
) -> Optional[str]:
    """
    None when no trial was ever started, "Trial expired" after the end,
    otherwise "Free trial ends at <ends>".
    """
    if trial_started_at is None and trial_ends_at is None:
        return None
    if trial_ends_at is None:
        return None
    if is_expired(trial_ends_at, now):
        return "Trial expired"
    return f"Free trial ends at {format_instant(trial_ends_at)}"


def remaining_text(trial_ends_at: Optional[datetime], now: datetime) -> Optional[str]:
    left = remaining(trial_ends_at, now)
    if left is None:
        return None

    hours = int(left.total_seconds() // 3600)
    if hours > 24:
        n, unit = left.days, "day"
    elif hours > 0:
        n, unit = hours, "hour"
    else:
        n, unit = int(left.total_seconds() // 60), "minute"
    return f"{n} {unit}{'s' if n != 1 else ''} remaining"
