# tests/test_reminders.py

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from rappel.tasks.reminders import (
    PAST_REASON,
    ReminderPolicy,
    compute_reminders,
    flag_past_reminders,
    reminder_kind_label,
    reminder_text,
)
from rappel.tasks.task_models import ReminderKind
from rappel.tasks.time_utils import (
    at_local_time,
    format_for_user_relative,
    parse_instant,
    to_iso,
)


def _utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def test_default_policy_one_hour_before_and_at_time() -> None:
    reminders = compute_reminders(parse_instant("2024-03-10T20:00:00Z"))

    assert [r.kind for r in reminders] == [ReminderKind.ONE_HOUR_BEFORE, ReminderKind.AT_TIME]
    assert to_iso(reminders[0].fire_at) == "2024-03-10T19:00:00.000Z"
    assert to_iso(reminders[1].fire_at) == "2024-03-10T20:00:00.000Z"
    assert all(r.sent_at is None and r.skipped_reason is None for r in reminders)


def test_exactly_one_at_time_reminder_per_policy() -> None:
    for policy in ReminderPolicy:
        reminders = compute_reminders(_utc(2024, 6, 1, 12, 0), policy=policy)
        assert [r.kind for r in reminders].count(ReminderKind.AT_TIME) == 1


@pytest.mark.parametrize(
    ("due", "expected_day_before"),
    [
        # Spring forward: Saturday 21:00 is still CET (UTC+1).
        (_utc(2024, 3, 31, 8, 0), _utc(2024, 3, 30, 20, 0)),
        # Fall back: Saturday 21:00 is still CEST (UTC+2).
        (_utc(2024, 10, 27, 11, 0), _utc(2024, 10, 26, 19, 0)),
    ],
)
def test_day_before_anchor_keeps_local_2100_across_dst(due: datetime, expected_day_before: datetime) -> None:
    reminders = compute_reminders(due, policy=ReminderPolicy.EXTENDED)

    assert reminders[0].kind == ReminderKind.DAY_BEFORE_2100
    assert reminders[0].fire_at == expected_day_before
    assert reminders[-1].fire_at == due


def test_policy_parse_falls_back_to_default() -> None:
    assert ReminderPolicy.parse("EXTENDED") == ReminderPolicy.EXTENDED
    assert ReminderPolicy.parse("bogus") == ReminderPolicy.DEFAULT
    assert ReminderPolicy.parse(None) == ReminderPolicy.DEFAULT


def test_flag_past_reminders_marks_only_due_ones() -> None:
    reminders = compute_reminders(_utc(2024, 3, 10, 20, 0))

    skipped = flag_past_reminders(reminders, now=_utc(2024, 3, 10, 19, 30))

    assert skipped == [ReminderKind.ONE_HOUR_BEFORE]
    assert reminders[0].skipped_reason == PAST_REASON
    assert reminders[1].skipped_reason is None


def test_reminder_texts() -> None:
    assert reminder_text(ReminderKind.AT_TIME, "Call mom") == "🔔 NOW 🔔\nCall mom"
    assert reminder_text(ReminderKind.ONE_HOUR_BEFORE, "Call mom").startswith("🔔 In 1 hour 🔔")
    assert "Tomorrow at 09:00" in reminder_text(ReminderKind.DAY_BEFORE_2100, "Call mom", due_label="09:00")


def test_at_local_time_and_relative_labels() -> None:
    nine = at_local_time(datetime(2024, 3, 11).date(), 9, 0)
    assert nine == _utc(2024, 3, 11, 8, 0)

    now = _utc(2024, 3, 10, 8, 0)
    assert format_for_user_relative(_utc(2024, 3, 10, 17, 0), now=now) == "today at 18:00"
    assert format_for_user_relative(nine, now=now) == "tomorrow at 09:00"
    assert format_for_user_relative(_utc(2024, 3, 13, 8, 0), now=now) == "on Wednesday 13/03/2024 at 09:00"


def test_parse_instant_reads_naive_values_as_local_wall_time() -> None:
    assert parse_instant("2024-07-01T10:00:00") == _utc(2024, 7, 1, 8, 0)
    with pytest.raises(ValueError):
        parse_instant("next tuesday")


def test_reminder_kind_labels() -> None:
    assert reminder_kind_label(ReminderKind.ONE_HOUR_BEFORE) == "1 hour before"
    assert reminder_kind_label(ReminderKind.AT_TIME) == "at the time"
    assert reminder_kind_label(ReminderKind.DAY_BEFORE_2100) == "the day before at 21:00"
    assert reminder_kind_label("at_time") == "at the time"
