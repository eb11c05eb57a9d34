# src/rappel/tasks/task_models.py

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from .time_utils import DEFAULT_TIMEZONE, parse_instant, to_iso

CURRENT_TASKS_VERSION = 1


class ReminderKind(StrEnum):
    """
    Reminder offsets relative to the due instant.

    DAY_BEFORE_2100 is only produced by the extended policy.
    """

    DAY_BEFORE_2100 = "day_before_2100"
    ONE_HOUR_BEFORE = "one_hour_before"
    AT_TIME = "at_time"


class TaskStatus(StrEnum):
    """
    Task lifecycle status.

    Transitions are one-way: scheduled -> cancelled, scheduled -> done.
    """

    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"
    DONE = "done"

    def can_become(self, other: TaskStatus) -> bool:
        if other == self:
            return True
        return self == TaskStatus.SCHEDULED


def new_task_id() -> str:
    return f"tsk_{uuid.uuid4().hex[:12]}"


def _opt_instant(raw: Any) -> datetime | None:
    if raw is None or raw == "":
        return None
    return parse_instant(str(raw))


@dataclass(slots=True)
class Reminder:
    kind: ReminderKind
    fire_at: datetime
    sent_at: datetime | None = None
    skipped_reason: str | None = None

    @property
    def is_settled(self) -> bool:
        """True once the reminder was sent or skipped (both are final)."""
        return self.sent_at is not None or bool(self.skipped_reason)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"kind": self.kind.value, "fire_at": to_iso(self.fire_at)}
        if self.sent_at is not None:
            out["sent_at"] = to_iso(self.sent_at)
        if self.skipped_reason:
            out["skipped_reason"] = self.skipped_reason
        return out

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Reminder:
        return cls(
            kind=ReminderKind(raw["kind"]),
            fire_at=parse_instant(raw["fire_at"]),
            sent_at=_opt_instant(raw.get("sent_at")),
            skipped_reason=raw.get("skipped_reason") or None,
        )


@dataclass(slots=True)
class Task:
    id: str
    chat_id: str
    message: str
    due_at: datetime
    created_at: datetime
    updated_at: datetime
    status: TaskStatus = TaskStatus.SCHEDULED
    reminders: list[Reminder] = field(default_factory=list)

    def get_reminder(self, kind: ReminderKind) -> Reminder | None:
        for r in self.reminders:
            if r.kind == kind:
                return r
        return None

    def pending_reminders(self) -> list[Reminder]:
        return [r for r in self.reminders if not r.is_settled]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "message": self.message,
            "due_at": to_iso(self.due_at),
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
            "status": self.status.value,
            "reminders": [r.to_dict() for r in self.reminders],
        }

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> Task:
        reminders = [Reminder.from_dict(r) for r in raw.get("reminders") or []]
        return cls(
            id=str(raw["id"]),
            chat_id=str(raw.get("chat_id") or ""),
            message=str(raw.get("message") or ""),
            due_at=parse_instant(raw["due_at"]),
            created_at=parse_instant(raw["created_at"]),
            updated_at=parse_instant(raw["updated_at"]),
            status=TaskStatus(raw.get("status") or TaskStatus.SCHEDULED),
            reminders=reminders,
        )


@dataclass(slots=True)
class TasksFile:
    version: int = CURRENT_TASKS_VERSION
    timezone: str = DEFAULT_TIMEZONE
    tasks: list[Task] = field(default_factory=list)

    def find(self, task_id: str) -> Task | None:
        for t in self.tasks:
            if t.id == task_id:
                return t
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "timezone": self.timezone,
            "tasks": [t.to_dict() for t in self.tasks],
        }

    @classmethod
    def from_dict(cls, raw: Any) -> TasksFile:
        if not isinstance(raw, dict):
            raise ValueError("tasks file root must be an object")
        tasks_raw = raw.get("tasks")
        if not isinstance(tasks_raw, list):
            raise ValueError("tasks file 'tasks' must be a list")
        return cls(
            version=int(raw.get("version", CURRENT_TASKS_VERSION)),
            timezone=str(raw.get("timezone") or DEFAULT_TIMEZONE),
            tasks=[Task.from_dict(t) for t in tasks_raw],
        )
