# src/rappel/tasks/task_store.py

from __future__ import annotations

import contextlib
import dataclasses
import json
import logging
import os
import shutil
import threading
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from ..core.errors import StoreCorruptionError, StoreIOError, ValidationError
from .reminders import PAST_REASON
from .task_models import CURRENT_TASKS_VERSION, ReminderKind, Task, TasksFile, TaskStatus
from .time_utils import DEFAULT_TIMEZONE, now_utc

logger = logging.getLogger(__name__)

_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


@dataclass(slots=True)
class CleanupResult:
    removed_task_ids: list[str] = field(default_factory=list)
    skipped: list[tuple[str, ReminderKind]] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.removed_task_ids or self.skipped)


class TaskStore:
    """
    JSON-file task store.

    The whole state lives in a single file that is rewritten on every mutation:
    - load the entire file
    - mutate in memory
    - write the entire file back (tmp file + fsync + os.replace)

    Thread-safety:
    - every public method is one critical section under a re-entrant lock,
      so two load/mutate/save sequences never interleave
    """

    def __init__(
        self,
        path: str | Path = "tasks.json",
        *,
        timezone: str = DEFAULT_TIMEZONE,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._timezone = timezone
        self._clock = clock
        self._lock = threading.RLock()
        self._corrupt_backup_done = False

        total = len(self.load().tasks)
        logger.info("TaskStore ready path=%s total=%s", self._path, total)

    @property
    def path(self) -> Path:
        return self._path

    def close(self) -> None:
        """Compatibility hook for shutdown (nothing is kept open)."""
        return

    # ---- low-level helpers ----

    def _empty(self) -> TasksFile:
        return TasksFile(version=CURRENT_TASKS_VERSION, timezone=self._timezone, tasks=[])

    def _read(self) -> TasksFile:
        """Read and parse the file. Raises StoreIOError / StoreCorruptionError."""
        try:
            content = self._path.read_text("utf-8")
        except OSError as e:
            raise StoreIOError(f"cannot read {self._path}: {e}") from e

        try:
            data = TasksFile.from_dict(json.loads(content))
        except (ValueError, KeyError, TypeError) as e:
            raise StoreCorruptionError(f"cannot parse {self._path}: {e}") from e

        if data.timezone != self._timezone:
            logger.warning(
                "Tasks file timezone=%s differs from configured timezone=%s",
                data.timezone,
                self._timezone,
            )
        return data

    def _save(self, data: TasksFile) -> None:
        content = json.dumps(data.to_dict(), ensure_ascii=False, indent=2)
        tmp = self._path.with_name(self._path.name + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self._path)
        except OSError as e:
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise StoreIOError(f"cannot write {self._path}: {e}") from e

    def _backup_corrupt_file(self) -> None:
        if self._corrupt_backup_done:
            return
        self._corrupt_backup_done = True
        stamp = self._clock().strftime("%Y%m%dT%H%M%S")
        backup = self._path.with_name(f"{self._path.name}.corrupt-{stamp}")
        try:
            shutil.copy2(self._path, backup)
            logger.warning("Copied unreadable tasks file to %s", backup)
        except OSError:
            logger.exception("Failed to back up unreadable tasks file %s", self._path)

    @contextlib.contextmanager
    def _transaction(self) -> Iterator[TasksFile]:
        """
        Critical section: load, let the caller mutate, save.

        The caller signals "nothing changed" by raising _NoChange.
        """
        with self._lock:
            data = self.load()
            try:
                yield data
            except _NoChange:
                return
            self._save(data)

    # ---- public API ----

    def load(self) -> TasksFile:
        """
        Return the current file contents.

        - missing file  -> create and persist an empty one
        - unreadable    -> log, return an empty in-memory set
        - unparseable   -> log, keep a copy of the bad file, return an empty set
        """
        with self._lock:
            if not self._path.exists():
                data = self._empty()
                try:
                    self._save(data)
                except StoreIOError:
                    logger.exception("Failed to initialize tasks file %s", self._path)
                return data

            try:
                return self._read()
            except StoreCorruptionError:
                logger.exception("Tasks file is corrupt; using an empty task set")
                self._backup_corrupt_file()
                return self._empty()
            except StoreIOError:
                logger.exception("Tasks file is unreadable; using an empty task set")
                return self._empty()

    def count_tasks(self) -> int:
        return len(self.load().tasks)

    def add_task(self, task: Task) -> None:
        if not task.message or not task.message.strip():
            raise ValidationError("message is required")

        with self._transaction() as data:
            if data.find(task.id) is not None:
                raise ValidationError(f"duplicate task id: {task.id}")
            data.tasks.append(task)

        logger.debug(
            "Task added id=%s chat_id=%s due_at=%s reminders=%s",
            task.id,
            task.chat_id,
            task.due_at,
            [r.kind.value for r in task.reminders],
        )

    def update_task(
        self, task_id: str, *, only_if_status: TaskStatus | None = None, **fields: Any
    ) -> Task | None:
        """
        Replace the given fields of a task and persist.

        `updated_at` is refreshed unless provided. Returns the updated task or
        None if it does not exist, or if `only_if_status` is given and the
        stored status differs (checked inside the same critical section).
        """
        bad = _IMMUTABLE_FIELDS.intersection(fields)
        if bad:
            raise ValidationError(f"immutable task fields: {sorted(bad)}")

        with self._transaction() as data:
            task = data.find(task_id)
            if task is None:
                raise _NoChange
            if only_if_status is not None and task.status != only_if_status:
                logger.info("Task %s is %s, not updating", task_id, task.status.value)
                raise _NoChange

            new_status = fields.get("status")
            if new_status is not None and not task.status.can_become(TaskStatus(new_status)):
                raise ValidationError(f"illegal status change {task.status.value} -> {new_status}")

            fields.setdefault("updated_at", self._clock())
            updated = dataclasses.replace(task, **fields)
            data.tasks[data.tasks.index(task)] = updated
            return updated
        return None

    def get_task(self, task_id: str) -> Task | None:
        return self.load().find(task_id)

    def get_all_tasks(self) -> list[Task]:
        return list(self.load().tasks)

    def get_scheduled_tasks(self) -> list[Task]:
        return [t for t in self.load().tasks if t.status == TaskStatus.SCHEDULED]

    def cancel_task(self, task_id: str) -> Task | None:
        """scheduled -> cancelled. None if missing or already terminal."""
        with self._transaction() as data:
            task = data.find(task_id)
            if task is None or task.status != TaskStatus.SCHEDULED:
                raise _NoChange
            task.status = TaskStatus.CANCELLED
            task.updated_at = self._clock()
            logger.info("Task %s -> cancelled", task_id)
            return task
        return None

    def remove_task(self, task_id: str, *, expected_due_at: datetime | None = None) -> bool:
        """Delete a task. With `expected_due_at`, only if the task still has that due time."""
        with self._transaction() as data:
            task = data.find(task_id)
            if task is None:
                raise _NoChange
            if expected_due_at is not None and task.due_at != expected_due_at:
                logger.info("Task %s was rescheduled, not removing", task_id)
                raise _NoChange
            data.tasks.remove(task)
            return True
        return False

    def mark_reminder_sent(
        self, task_id: str, kind: ReminderKind, *, expected_fire_at: datetime | None = None
    ) -> bool:
        return self._settle_reminder(
            task_id, kind, sent_at=self._clock(), expected_fire_at=expected_fire_at
        )

    def mark_reminder_skipped(
        self,
        task_id: str,
        kind: ReminderKind,
        reason: str,
        *,
        expected_fire_at: datetime | None = None,
    ) -> bool:
        return self._settle_reminder(task_id, kind, reason=reason, expected_fire_at=expected_fire_at)

    def _settle_reminder(
        self,
        task_id: str,
        kind: ReminderKind,
        *,
        sent_at: datetime | None = None,
        reason: str | None = None,
        expected_fire_at: datetime | None = None,
    ) -> bool:
        """
        Set sent_at or skipped_reason once; settled reminders are never rewritten.

        With `expected_fire_at`, a reminder that was replaced (different
        fire_at, e.g. after a reschedule) is left untouched.
        """
        with self._transaction() as data:
            task = data.find(task_id)
            reminder = task.get_reminder(kind) if task is not None else None
            if reminder is None:
                logger.debug("Reminder %s not found for task %s", kind, task_id)
                raise _NoChange
            if reminder.is_settled:
                raise _NoChange
            if expected_fire_at is not None and reminder.fire_at != expected_fire_at:
                logger.info("Reminder %s of task %s changed, not settling", kind.value, task_id)
                raise _NoChange
            if sent_at is not None:
                reminder.sent_at = sent_at
            else:
                reminder.skipped_reason = reason or PAST_REASON
            return True
        return False

    def cleanup_old_reminders_and_tasks(self, now: datetime) -> CleanupResult:
        """
        Startup cleanup, one load and at most one save.

        - A scheduled task whose at_time reminder is due (fire_at <= now) is
          removed, whatever its reminders' sent/skipped state.
        - Any unsettled reminder with fire_at <= now is flagged skipped="past".
        """
        result = CleanupResult()

        with self._transaction() as data:
            scheduled = [t for t in data.tasks if t.status == TaskStatus.SCHEDULED]
            logger.info(
                "Cleanup: starting at %s, processing %d scheduled tasks",
                now.isoformat(),
                len(scheduled),
            )

            for task in data.tasks:
                for reminder in task.reminders:
                    if reminder.is_settled or reminder.fire_at > now:
                        continue
                    reminder.skipped_reason = PAST_REASON
                    result.skipped.append((task.id, reminder.kind))

            for task in scheduled:
                at_time = task.get_reminder(ReminderKind.AT_TIME)
                if at_time is None or at_time.fire_at > now:
                    continue
                logger.info(
                    "Cleanup: removing task=%s due_at=%s at_time=%s",
                    task.id,
                    task.due_at.isoformat(),
                    at_time.fire_at.isoformat(),
                )
                data.tasks.remove(task)
                result.removed_task_ids.append(task.id)

            if not result.changed:
                raise _NoChange

        logger.info(
            "Cleanup: complete, removed %d tasks, skipped %d reminders",
            len(result.removed_task_ids),
            len(result.skipped),
        )
        return result


class _NoChange(Exception):
    """Raised inside TaskStore._transaction() to skip the save."""
