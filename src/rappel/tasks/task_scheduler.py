# src/rappel/tasks/task_scheduler.py

from __future__ import annotations

"""
Reminder scheduler.

An explicit scheduler instance that:
- keeps one asyncio timer per (task_id, kind),
- splits long waits into bounded segments,
- re-validates every firing against the TaskStore before delivering,
- rebuilds its timers from the store on startup,
- sends a daily digest of tomorrow's tasks.

Transport (how a chat message is actually sent) belongs to the injected
Notifier, not the scheduler.
"""

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any

from ..core.ports import Notifier, TaskRepo
from .reminders import PAST_REASON, reminder_text
from .task_models import ReminderKind, Task, TaskStatus
from .time_utils import (
    DEFAULT_TIMEZONE,
    format_date_only,
    format_time_only,
    local_date,
    now_utc,
    to_local,
)

logger = logging.getLogger(__name__)

# Longest single wait; longer delays are chained segment by segment.
MAX_DELAY_SECONDS = 24 * 60 * 60
GRACE_PERIOD = timedelta(minutes=5)
LATE_REASON = "late"
DAILY_DIGEST_HOUR = 21

TimerKey = tuple[str, ReminderKind]


@dataclass(slots=True)
class ScheduledTimer:
    task_id: str
    kind: ReminderKind
    fire_at: datetime
    handle: asyncio.TimerHandle | None = None
    segments: int = 0

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()
            self.handle = None


def next_daily_digest_run(now_local: datetime, hour: int = DAILY_DIGEST_HOUR) -> datetime:
    """Next local `hour`:00 strictly after now (civil day arithmetic, DST-safe)."""
    target = now_local.replace(hour=hour, minute=0, second=0, microsecond=0)
    if now_local >= target:
        next_day = now_local.date() + timedelta(days=1)
        target = datetime.combine(next_day, time(hour), tzinfo=now_local.tzinfo)
    return target


def build_daily_digest(
    tasks: list[Task],
    now: datetime,
    tz_name: str = DEFAULT_TIMEZONE,
) -> dict[str, str]:
    """
    Group scheduled tasks due on the next local civil day by chat.

    Returns {chat_id: message}; chats with nothing due tomorrow are absent.
    """
    tomorrow = local_date(now, tz_name) + timedelta(days=1)
    grouped: dict[str, list[Task]] = {}

    for task in tasks:
        if task.status != TaskStatus.SCHEDULED or not task.chat_id:
            continue
        if local_date(task.due_at, tz_name) != tomorrow:
            continue
        grouped.setdefault(task.chat_id, []).append(task)

    out: dict[str, str] = {}
    for chat_id, items in grouped.items():
        items.sort(key=lambda t: t.due_at)
        label = format_date_only(items[0].due_at, tz_name)
        lines = [f"- {format_time_only(t.due_at, tz_name)} {t.message}" for t in items]
        out[chat_id] = f"Reminders for tomorrow ({label}):\n" + "\n".join(lines)
    return out


class ReminderScheduler:
    """
    In-memory timer registry built from TaskStore state.

    Per (task_id, kind): unscheduled -> scheduled -> fired | cancelled.
    Scheduling a key always cancels its previous handle first, so there is at
    most one live timer per key. All registry mutations happen on the event
    loop thread without an await in between.
    """

    def __init__(
        self,
        store: TaskRepo,
        notifier: Notifier | None = None,
        *,
        clock: Callable[[], datetime] = now_utc,
        tz_name: str = DEFAULT_TIMEZONE,
        grace_period: timedelta = GRACE_PERIOD,
        max_delay_seconds: float = MAX_DELAY_SECONDS,
        digest_enabled: bool = True,
        digest_hour: int = DAILY_DIGEST_HOUR,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._clock = clock
        self._tz_name = tz_name
        self._grace = grace_period
        self._max_delay = max(0.001, float(max_delay_seconds))
        self._digest_enabled = digest_enabled
        self._digest_hour = digest_hour

        self._loop: asyncio.AbstractEventLoop | None = None
        self._timers: dict[TimerKey, ScheduledTimer] = {}
        self._inflight: set[asyncio.Task[Any]] = set()
        self._digest_handle: asyncio.TimerHandle | None = None
        self._digest_target: datetime | None = None
        self._closed = False

    # ---- wiring ----

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None or self._loop.is_closed():
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        task = self._get_loop().create_task(coro)
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    # ---- timers ----

    def live_timers(self) -> dict[TimerKey, datetime]:
        """Snapshot: (task_id, kind) -> fire_at of every live timer."""
        return {key: t.fire_at for key, t in self._timers.items()}

    def schedule(self, task: Task, kind: ReminderKind, fire_at: datetime) -> bool:
        """
        Arm the timer for (task, kind).

        Returns False (and registers nothing) if fire_at is not in the future;
        the caller owns the persisted skip flag in that case.
        """
        delay = (fire_at - self._clock()).total_seconds()
        if delay <= 0:
            logger.info("Skipping past reminder: %s %s", task.id, kind.value)
            return False

        key = (task.id, kind)
        existing = self._timers.pop(key, None)
        if existing is not None:
            existing.cancel()

        timer = ScheduledTimer(task_id=task.id, kind=kind, fire_at=fire_at)
        self._timers[key] = timer
        self._arm_segment(timer, delay)

        logger.info("Scheduled %s %s in %d minutes", task.id, kind.value, round(delay / 60))
        return True

    def _arm_segment(self, timer: ScheduledTimer, remaining: float) -> None:
        timer.segments += 1
        timer.handle = self._get_loop().call_later(
            min(remaining, self._max_delay), self._on_segment_elapsed, timer
        )

    def _on_segment_elapsed(self, timer: ScheduledTimer) -> None:
        key = (timer.task_id, timer.kind)
        if self._timers.get(key) is not timer:
            # Superseded or cancelled after this callback was queued.
            return

        remaining = (timer.fire_at - self._clock()).total_seconds()
        if remaining > 0:
            self._arm_segment(timer, remaining)
            return

        del self._timers[key]
        timer.handle = None
        self._spawn(self._deliver_safely(timer.task_id, timer.kind))

    def cancel_timeouts_for_task(self, task_id: str) -> int:
        cancelled = 0
        for key in [k for k in self._timers if k[0] == task_id]:
            self._timers.pop(key).cancel()
            cancelled += 1

        logger.info("Cancelled %d timeouts for task %s", cancelled, task_id)
        return cancelled

    def reschedule_task(self, task: Task) -> int:
        """
        Cancel every timer of the task, then arm each reminder that is neither
        sent nor skipped. Reminders already due are flagged skipped ("past").

        Returns the number of armed timers.
        """
        self.cancel_timeouts_for_task(task.id)

        armed = 0
        for reminder in task.reminders:
            if reminder.is_settled:
                continue
            if self.schedule(task, reminder.kind, reminder.fire_at):
                armed += 1
            else:
                self._store.mark_reminder_skipped(
                    task.id, reminder.kind, PAST_REASON, expected_fire_at=reminder.fire_at
                )
        return armed

    # ---- delivery ----

    async def _deliver_safely(self, task_id: str, kind: ReminderKind) -> None:
        try:
            await self.deliver_reminder(task_id, kind)
        except Exception:
            logger.exception("Reminder delivery crashed task=%s kind=%s", task_id, kind.value)

    async def deliver_reminder(self, task_id: str, kind: ReminderKind) -> bool:
        """
        Deliver one reminder if it is still valid.

        Re-reads the task from the store and does nothing if the task or the
        reminder is gone, the task is not scheduled anymore, or the reminder
        was already sent or skipped. A reminder more than the grace period
        late is skipped instead of sent. Returns True if a message went out.
        """
        if self._notifier is None:
            logger.error("No notifier installed; cannot deliver %s %s", task_id, kind.value)
            return False

        task = self._store.get_task(task_id)
        if task is None:
            logger.info("Task %s not found, skipping reminder", task_id)
            return False

        if task.status != TaskStatus.SCHEDULED:
            logger.info("Task %s is %s, skipping reminder", task_id, task.status.value)
            return False

        reminder = task.get_reminder(kind)
        if reminder is None:
            logger.info("Reminder %s not found for task %s", kind.value, task_id)
            return False

        if reminder.sent_at is not None:
            logger.info("Reminder %s already sent for task %s", kind.value, task_id)
            return False

        if reminder.skipped_reason:
            logger.info(
                "Reminder %s was skipped (%s) for task %s", kind.value, reminder.skipped_reason, task_id
            )
            return False

        lateness = self._clock() - reminder.fire_at
        if lateness > self._grace:
            logger.warning(
                "Reminder %s for task %s is %d minutes late, skipping",
                kind.value,
                task_id,
                round(lateness.total_seconds() / 60),
            )
            self._store.mark_reminder_skipped(task_id, kind, LATE_REASON, expected_fire_at=reminder.fire_at)
            return False

        text = reminder_text(kind, task.message, due_label=format_time_only(task.due_at, self._tz_name))
        try:
            await self._notifier.send_message(task.chat_id, text)
        except Exception:
            logger.exception("Failed to send reminder task=%s kind=%s", task_id, kind.value)
            return False

        logger.info("Sent reminder for task %s (%s)", task_id, kind.value)

        # The task may have been rescheduled while the send was pending; only
        # the reminder this firing was armed for is settled.
        if not self._store.mark_reminder_sent(task_id, kind, expected_fire_at=reminder.fire_at):
            logger.info("Task %s changed during delivery of %s, keeping it", task_id, kind.value)
            return True

        if kind == ReminderKind.AT_TIME and self._store.remove_task(task_id, expected_due_at=task.due_at):
            self.cancel_timeouts_for_task(task_id)
            logger.info("Task %s removed after at_time reminder sent", task_id)

        return True

    # ---- startup ----

    async def initialize(self, notifier: Notifier) -> None:
        """
        Install the notifier, clean up stale state, rebuild timers for every
        scheduled task, and arm the daily digest.
        """
        self._notifier = notifier
        self._loop = asyncio.get_running_loop()

        logger.info("Running startup cleanup...")
        result = self._store.cleanup_old_reminders_and_tasks(self._clock())
        logger.info(
            "Cleanup: removed %d tasks, skipped %d reminders",
            len(result.removed_task_ids),
            len(result.skipped),
        )
        for task_id in result.removed_task_ids:
            logger.info("Removed task: %s", task_id)
        for task_id, kind in result.skipped:
            logger.info("Skipped reminder: %s %s", task_id, kind.value)

        tasks = self._store.get_scheduled_tasks()
        logger.info("Initializing with %d scheduled tasks", len(tasks))

        for task in tasks:
            if not task.chat_id:
                logger.info("Skipping task %s - no chat_id", task.id)
                continue
            self.reschedule_task(task)

        if self._digest_enabled:
            self._arm_daily_digest()

        logger.info("Initialization complete")

    # ---- daily digest ----

    def _arm_daily_digest(self) -> None:
        if self._closed:
            return
        if self._digest_handle is not None:
            self._digest_handle.cancel()

        now = self._clock()
        after = max(now, self._digest_target) if self._digest_target else now
        next_run = next_daily_digest_run(to_local(after, self._tz_name), self._digest_hour)
        self._digest_target = next_run

        delay = max(0.0, (next_run - now).total_seconds())
        self._digest_handle = self._get_loop().call_later(
            delay, lambda: self._spawn(self._run_daily_digest())
        )
        logger.info(
            "Daily digest scheduled for %s (in %d minutes)", next_run.isoformat(), round(delay / 60)
        )

    async def _run_daily_digest(self) -> None:
        try:
            await self.send_daily_digest()
        except Exception:
            logger.exception("Daily digest failed")
        finally:
            self._arm_daily_digest()

    async def send_daily_digest(self) -> int:
        """Send tomorrow's digest to every chat that has tasks. Returns messages sent."""
        if self._notifier is None:
            logger.error("No notifier installed; daily digest not sent")
            return 0

        digests = build_daily_digest(self._store.get_scheduled_tasks(), self._clock(), self._tz_name)
        if not digests:
            logger.info("No reminders due tomorrow; daily digest not sent")
            return 0

        sent = 0
        for chat_id, text in digests.items():
            try:
                await self._notifier.send_message(chat_id, text)
                sent += 1
                logger.info("Sent daily digest to chat %s", chat_id)
            except Exception:
                logger.exception("Failed to send daily digest to chat %s", chat_id)
        return sent

    # ---- shutdown ----

    def shutdown(self) -> None:
        """Cancel every timer, the digest, and in-flight deliveries."""
        self._closed = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

        if self._digest_handle is not None:
            self._digest_handle.cancel()
            self._digest_handle = None

        for task in list(self._inflight):
            task.cancel()

        logger.info("Scheduler stopped")
