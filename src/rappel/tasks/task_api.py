# src/rappel/tasks/task_api.py

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from ..ai.date_snippet import generate_date_snippet
from ..ai.intent import Intent, extract_intent
from ..ai.sandbox import build_context, evaluate_snippet
from ..core.errors import NotFoundError, RappelError
from ..core.state import AppState
from ..llm.client import friendly_llm_error_message
from .reminders import ReminderPolicy, compute_reminders, flag_past_reminders, reminder_kind_label
from .task_models import Reminder, ReminderKind, Task, TaskStatus, new_task_id
from .time_utils import (
    DEFAULT_TIMEZONE,
    format_for_user,
    format_for_user_relative,
    format_time_only,
    now_utc,
    to_local,
)

logger = logging.getLogger(__name__)

NO_TIME_REPLY = "I couldn't understand the date/time. Please provide when you want to be reminded."
NO_NEW_TIME_REPLY = "I couldn't understand the new date/time. Please try again with a clearer time."
PAST_WARNING = "Can't add reminder in the past"
NOT_SCHEDULED_REPLY = "Task not found or not scheduled."


@dataclass(slots=True)
class TaskOutcome:
    ok: bool
    reply: str
    task: Task | None = None
    skipped: list[ReminderKind] = field(default_factory=list)


# ---- low-level helpers ----


def _tz(state: AppState) -> str:
    return str(getattr(state.settings, "timezone", DEFAULT_TIMEZONE) or DEFAULT_TIMEZONE)


async def _resolve_due(state: AppState, intent: Intent, now: datetime) -> datetime:
    """time instruction -> snippet (LLM, off-loop) -> sandboxed due instant."""
    settings = state.settings
    tz_name = _tz(state)
    default_hour = int(getattr(settings, "default_hour", 12))
    default_minute = int(getattr(settings, "default_minute", 0))

    code = await asyncio.to_thread(
        generate_date_snippet,
        state.llm,
        intent.time_instruction,
        now,
        tz_name=tz_name,
        default_hour=default_hour,
        default_minute=default_minute,
    )
    ctx = build_context(now, tz_name=tz_name, default_hour=default_hour, default_minute=default_minute)
    return await asyncio.to_thread(evaluate_snippet, code, ctx)


def _reminders_for(state: AppState, due_at: datetime, now: datetime) -> tuple[list[Reminder], list[ReminderKind]]:
    policy = ReminderPolicy.parse(getattr(state.settings, "reminder_policy", None))
    reminders = compute_reminders(due_at, policy=policy, tz_name=_tz(state))
    skipped = flag_past_reminders(reminders, now)
    return reminders, skipped


def _failure_text(prefix: str, err: Exception) -> str:
    if isinstance(err, RuntimeError):
        return f"{prefix}: {friendly_llm_error_message(err)}"
    return f"{prefix}: {err}"


# ---- create / reschedule ----


async def create_task_from_text(
    state: AppState,
    chat_id: str,
    raw_text: str,
    *,
    now: datetime | None = None,
) -> TaskOutcome:
    """
    Free text -> persisted, scheduled task.

    Reminders already due at creation time are stored as skipped ("past");
    the task is still created. The reply warns when even the due time is past.
    """
    text = (raw_text or "").strip()
    if not text:
        return TaskOutcome(ok=False, reply="Nothing to remind you about.")

    now = now or now_utc()
    tz_name = _tz(state)

    try:
        intent = await asyncio.to_thread(extract_intent, state.llm, text, now, tz_name=tz_name)
        if not intent.has_time:
            return TaskOutcome(ok=False, reply=NO_TIME_REPLY)

        due_at = await _resolve_due(state, intent, now)
        reminders, skipped = _reminders_for(state, due_at, now)

        task = Task(
            id=new_task_id(),
            chat_id=str(chat_id),
            message=intent.message,
            due_at=due_at,
            created_at=now,
            updated_at=now,
            reminders=reminders,
        )
        state.task_store.add_task(task)
    except (RappelError, RuntimeError) as e:
        logger.warning("Failed to create reminder from %r: %s", text, e)
        return TaskOutcome(ok=False, reply=_failure_text("Failed to create reminder", e))

    state.scheduler.reschedule_task(task)
    logger.info("Created task %s due %s (skipped=%s)", task.id, task.due_at.isoformat(), [k.value for k in skipped])

    reply = f'Ok, I\'ll remind you about "{task.message}" {_relative(task.due_at, now, tz_name)}'
    if ReminderKind.AT_TIME in skipped:
        reply += "\n\n" + PAST_WARNING
    return TaskOutcome(ok=True, reply=reply, task=task, skipped=skipped)


async def reschedule_from_text(
    state: AppState,
    task_id: str,
    raw_text: str,
    *,
    now: datetime | None = None,
) -> TaskOutcome:
    """Compute a new due time from text; keep the message, replace the reminders."""
    task = state.task_store.get_task(task_id)
    if task is None or task.status != TaskStatus.SCHEDULED:
        return TaskOutcome(ok=False, reply=NOT_SCHEDULED_REPLY)

    now = now or now_utc()
    tz_name = _tz(state)

    try:
        intent = await asyncio.to_thread(extract_intent, state.llm, raw_text, now, tz_name=tz_name)
        if not intent.has_time:
            return TaskOutcome(ok=False, reply=NO_NEW_TIME_REPLY)

        due_at = await _resolve_due(state, intent, now)
        reminders, skipped = _reminders_for(state, due_at, now)
    except (RappelError, RuntimeError) as e:
        logger.warning("Failed to reschedule %s from %r: %s", task_id, raw_text, e)
        return TaskOutcome(ok=False, reply=_failure_text("Failed to reschedule", e))

    # Cancelled while the LLM was working: refuse instead of reviving it.
    updated = state.task_store.update_task(
        task_id,
        only_if_status=TaskStatus.SCHEDULED,
        due_at=due_at,
        reminders=reminders,
        updated_at=now,
    )
    if updated is None:
        return TaskOutcome(ok=False, reply=NOT_SCHEDULED_REPLY)

    state.scheduler.reschedule_task(updated)
    logger.info("Rescheduled task %s to %s", task_id, due_at.isoformat())

    reply = f"Rescheduled: {updated.message}\nNew due: {_relative(due_at, now, tz_name)}"
    if ReminderKind.AT_TIME in skipped:
        reply += "\n\n" + PAST_WARNING
    return TaskOutcome(ok=True, reply=reply, task=updated, skipped=skipped)


def _relative(dt: datetime, now: datetime, tz_name: str) -> str:
    return format_for_user_relative(dt, now=now, tz_name=tz_name)


# ---- queries / cancel ----


def list_scheduled(state: AppState) -> list[Task]:
    return sorted(state.task_store.get_scheduled_tasks(), key=lambda t: t.due_at)


def get_task(state: AppState, task_id: str) -> Task | None:
    return state.task_store.get_task(task_id)


def resolve_task_ref(state: AppState, ref: str) -> Task:
    """
    "3" -> third task of list_scheduled() (1-based), anything else -> task id.

    Raises NotFoundError if nothing matches.
    """
    ref = (ref or "").strip()
    if ref.isdigit():
        tasks = list_scheduled(state)
        idx = int(ref) - 1
        if 0 <= idx < len(tasks):
            return tasks[idx]
        raise NotFoundError(f"No task number {ref}.")

    task = state.task_store.get_task(ref)
    if task is None:
        raise NotFoundError(f"No task with id {ref}.")
    return task


def cancel_task(state: AppState, task_id: str) -> Task | None:
    """Cancel in the store, then drop the task's timers. None if not cancellable."""
    task = state.task_store.cancel_task(task_id)
    if task is None:
        return None
    state.scheduler.cancel_timeouts_for_task(task_id)
    logger.info("Cancelled task %s", task_id)
    return task


def format_task_list(tasks: list[Task], tz_name: str = DEFAULT_TIMEZONE) -> str:
    """Tasks grouped under one header per local civil day, in due order."""
    if not tasks:
        return "No scheduled tasks."

    lines: list[str] = []
    current_day = ""
    n = 0
    for task in sorted(tasks, key=lambda t: t.due_at):
        n += 1
        day_label = to_local(task.due_at, tz_name).strftime("%A %d/%m/%Y")
        if day_label != current_day:
            current_day = day_label
            if lines:
                lines.append("")
            lines.append(day_label)
        lines.append(f"{n}) {format_time_only(task.due_at, tz_name)} - {task.message}")
    return "\n".join(lines)


def describe_task(task: Task, tz_name: str = DEFAULT_TIMEZONE) -> str:
    """One task with each reminder's label, local time and state."""
    lines = [task.message, f"Due: {format_for_user(task.due_at, tz_name)}", "Reminders:"]
    for r in sorted(task.reminders, key=lambda r: r.fire_at):
        if r.sent_at is not None:
            state = "sent"
        elif r.skipped_reason:
            state = f"skipped ({r.skipped_reason})"
        else:
            state = "pending"
        lines.append(f"  - {reminder_kind_label(r.kind)}: {format_for_user(r.fire_at, tz_name)} ({state})")
    return "\n".join(lines)
