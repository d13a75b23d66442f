from datetime import datetime, timedelta, timezone

import pytest

from examcoach import trial_clock
from examcoach.trial_clock import TrialAlreadyActivated

SIGNUP = datetime(2025, 1, 28, 10, 0, 0, tzinfo=timezone.utc)
ENDS = datetime(2025, 1, 30, 10, 0, 0, tzinfo=timezone.utc)


def test_activate_sets_48_hour_window():
    start, ends = trial_clock.activate(SIGNUP)
    assert start == SIGNUP
    assert ends == ENDS


@pytest.mark.parametrize(
    "signup",
    [
        datetime(2024, 2, 28, 23, 30, tzinfo=timezone.utc),
        datetime(2025, 12, 31, 0, 0, tzinfo=timezone.utc),
        datetime(2025, 3, 30, 1, 59, 59, 999999, tzinfo=timezone.utc),
    ],
)
def test_activate_end_is_exactly_start_plus_48h(signup):
    start, ends = trial_clock.activate(signup)
    assert ends - start == timedelta(hours=48)


def test_activate_treats_naive_datetimes_as_utc():
    start, ends = trial_clock.activate(datetime(2025, 1, 28, 10, 0, 0))
    assert start == SIGNUP
    assert ends == ENDS


def test_activate_refuses_to_rearm_existing_window():
    with pytest.raises(TrialAlreadyActivated):
        trial_clock.activate(ENDS, trial_started_at=SIGNUP)


def test_remaining_positive_and_never_negative():
    assert trial_clock.remaining(ENDS, SIGNUP) == timedelta(hours=48)
    assert trial_clock.remaining(ENDS, ENDS) is None
    assert trial_clock.remaining(ENDS, ENDS + timedelta(seconds=1)) is None
    assert trial_clock.remaining(None, SIGNUP) is None


def test_is_expired_is_strict_at_boundary():
    assert trial_clock.is_expired(ENDS, ENDS - timedelta(seconds=1)) is False
    assert trial_clock.is_expired(ENDS, ENDS) is False
    assert trial_clock.is_expired(ENDS, ENDS + timedelta(microseconds=1)) is True
    assert trial_clock.is_expired(None, ENDS) is False


def test_display_message_variants():
    assert trial_clock.display_message(None, None, SIGNUP) is None
    assert trial_clock.display_message(SIGNUP, ENDS, SIGNUP) == "Free trial ends at 30/1/2025 10:00 UTC"
    assert trial_clock.display_message(SIGNUP, ENDS, ENDS + timedelta(seconds=1)) == "Trial expired"


@pytest.mark.parametrize(
    "left, expected",
    [
        (timedelta(hours=47), "1 day remaining"),
        (timedelta(hours=24, minutes=30), "24 hours remaining"),
        (timedelta(hours=23, minutes=59), "23 hours remaining"),
        (timedelta(hours=1, minutes=5), "1 hour remaining"),
        (timedelta(minutes=59), "59 minutes remaining"),
        (timedelta(seconds=61), "1 minute remaining"),
    ],
)
def test_remaining_text(left, expected):
    assert trial_clock.remaining_text(ENDS, ENDS - left) == expected


def test_remaining_text_none_when_not_on_trial():
    assert trial_clock.remaining_text(None, SIGNUP) is None
    assert trial_clock.remaining_text(ENDS, ENDS + timedelta(hours=1)) is None
