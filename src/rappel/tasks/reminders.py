# src/rappel/tasks/reminders.py

from __future__ import annotations

from datetime import datetime, timedelta
from enum import StrEnum

from .task_models import Reminder, ReminderKind
from .time_utils import DEFAULT_TIMEZONE, at_local_time, ensure_utc, local_date

PAST_REASON = "past"
DAY_BEFORE_HOUR = 21


class ReminderPolicy(StrEnum):
    DEFAULT = "default"
    EXTENDED = "extended"

    @classmethod
    def parse(cls, raw: str | None) -> ReminderPolicy:
        try:
            return cls((raw or "").strip().lower())
        except ValueError:
            return cls.DEFAULT


def compute_reminders(
    due_at: datetime,
    *,
    policy: ReminderPolicy = ReminderPolicy.DEFAULT,
    tz_name: str = DEFAULT_TIMEZONE,
) -> list[Reminder]:
    """
    Reminder instants for a due time.

    - one_hour_before: due minus 1 hour
    - at_time: the due instant itself
    - day_before_2100 (extended policy): the previous local civil day at 21:00
    """
    due = ensure_utc(due_at, tz_name)
    out: list[Reminder] = []

    if policy == ReminderPolicy.EXTENDED:
        day_before = local_date(due, tz_name) - timedelta(days=1)
        out.append(
            Reminder(
                kind=ReminderKind.DAY_BEFORE_2100,
                fire_at=at_local_time(day_before, DAY_BEFORE_HOUR, 0, tz_name),
            )
        )

    out.append(Reminder(kind=ReminderKind.ONE_HOUR_BEFORE, fire_at=due - timedelta(hours=1)))
    out.append(Reminder(kind=ReminderKind.AT_TIME, fire_at=due))
    return out


def flag_past_reminders(reminders: list[Reminder], now: datetime) -> list[ReminderKind]:
    """Mark every unsettled reminder with fire_at <= now as skipped ("past")."""
    skipped: list[ReminderKind] = []
    for r in reminders:
        if r.is_settled:
            continue
        if r.fire_at <= now:
            r.skipped_reason = PAST_REASON
            skipped.append(r.kind)
    return skipped


def reminder_text(kind: ReminderKind, message: str, *, due_label: str = "") -> str:
    """Text delivered to the chat when a reminder fires."""
    if kind == ReminderKind.DAY_BEFORE_2100:
        head = f"🔔 Tomorrow at {due_label} 🔔" if due_label else "🔔 Tomorrow 🔔"
        return f"{head}\n{message}"
    if kind == ReminderKind.ONE_HOUR_BEFORE:
        return f"🔔 In 1 hour 🔔\n{message}"
    return f"🔔 NOW 🔔\n{message}"


_KIND_LABELS = {
    ReminderKind.DAY_BEFORE_2100: "the day before at 21:00",
    ReminderKind.ONE_HOUR_BEFORE: "1 hour before",
    ReminderKind.AT_TIME: "at the time",
}


def reminder_kind_label(kind: ReminderKind) -> str:
    """Human label for a reminder kind ("1 hour before", "at the time", ...)."""
    return _KIND_LABELS[ReminderKind(kind)]
