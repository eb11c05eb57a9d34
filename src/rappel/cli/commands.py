# src/rappel/cli/commands.py

from __future__ import annotations

import inspect
import logging
from collections import Counter
from collections.abc import Awaitable, Callable

from ..core.errors import NotFoundError
from ..core.state import AppState
from ..tasks import task_api
from ..tasks.reminders import reminder_kind_label
from ..tasks.task_models import ReminderKind
from ..tasks.time_utils import DEFAULT_TIMEZONE, format_for_user

CommandResult = str | Awaitable[str]
CommandHandler = Callable[[AppState, list[str], str], CommandResult]

logger = logging.getLogger(__name__)


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /list, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(self, state: AppState, line: str, chat_id: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.

        Handlers may be plain functions or coroutines.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        result = handler(state, args, chat_id)
        if inspect.isawaitable(result):
            result = await result
        return result

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _tz(state: AppState) -> str:
    return str(getattr(state.settings, "timezone", DEFAULT_TIMEZONE))


def cmd_help(state: AppState, args: list[str], chat_id: str) -> str:
    return registry.build_help()


def cmd_status(state: AppState, args: list[str], chat_id: str) -> str:
    settings = state.settings
    models = ", ".join(list(getattr(settings, "llm_models", []) or []))
    timers = state.scheduler.live_timers()
    per_kind = Counter(kind for _, kind in timers)
    by_kind = "".join(
        f"    {reminder_kind_label(kind)}: {per_kind[kind]}\n" for kind in ReminderKind if per_kind[kind]
    )
    return (
        "Status:\n"
        f"  Scheduled tasks: {len(task_api.list_scheduled(state))}\n"
        f"  Live timers: {len(timers)}\n"
        f"{by_kind}"
        f"  Timezone: {_tz(state)}\n"
        f"  Reminder policy: {getattr(settings, 'reminder_policy', 'default')}\n"
        f"  LLM: {type(state.llm).__name__}\n"
        f"  Models (priority -> fallback): {models}"
    )


def cmd_list(state: AppState, args: list[str], chat_id: str) -> str:
    return task_api.format_task_list(task_api.list_scheduled(state), _tz(state))


def cmd_show(state: AppState, args: list[str], chat_id: str) -> str:
    """
    /show <n|id>  -> one task with its reminders
    """
    if not args:
        return "Usage: /show <number from /list | task id>"

    try:
        task = task_api.resolve_task_ref(state, args[0])
    except NotFoundError as e:
        return str(e)
    return task_api.describe_task(task, _tz(state))


def cmd_cancel(state: AppState, args: list[str], chat_id: str) -> str:
    """
    /cancel <n|id>  -> cancel task number n of /list, or by id
    """
    if not args:
        return "Usage: /cancel <number from /list | task id>"

    try:
        task = task_api.resolve_task_ref(state, args[0])
    except NotFoundError as e:
        return str(e)

    cancelled = task_api.cancel_task(state, task.id)
    if cancelled is None:
        return "Task not found or already cancelled."
    return f"Cancelled: {cancelled.message} (was due {format_for_user(cancelled.due_at, _tz(state))})"


async def cmd_reschedule(state: AppState, args: list[str], chat_id: str) -> str:
    """
    /reschedule <n|id> <when>  -> new due time from free text
    """
    if len(args) < 2:
        return "Usage: /reschedule <number from /list | task id> <new date/time>"

    try:
        task = task_api.resolve_task_ref(state, args[0])
    except NotFoundError as e:
        return str(e)

    outcome = await task_api.reschedule_from_text(state, task.id, " ".join(args[1:]))
    return outcome.reply


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register("status", cmd_status, help_text="Show current settings and timer counts.")
registry.register("list", cmd_list, help_text="Show all scheduled tasks.", aliases=["ls"])
registry.register("show", cmd_show, help_text="Show a task and its reminders: /show <n|id>.")
registry.register("cancel", cmd_cancel, help_text="Cancel a task: /cancel <n|id>.")
registry.register(
    "reschedule", cmd_reschedule, help_text="Reschedule a task: /reschedule <n|id> <when>."
)
