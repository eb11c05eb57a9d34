# tests/fakes.py

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from rappel.core.ports import ChatMessage
from rappel.tasks.reminders import ReminderPolicy, compute_reminders
from rappel.tasks.task_models import Task


class FakeLLMClient:
    """
    Deterministic LLM client for unit tests.

    - Captures calls for assertions
    - Answers intent and date-snippet prompts with predefined texts
    - Raises `error` instead, when set
    """

    def __init__(
        self,
        intent: str = '{"message": "Call mom", "time_instruction": "tomorrow at 9am"}',
        snippet: str = (
            "now = ctx.calendar.parse(ctx.now_iso)\n"
            "due_iso = ctx.calendar.to_iso(ctx.calendar.at(ctx.calendar.plus(now, days=1), 9, 0))"
        ),
        error: Exception | None = None,
    ) -> None:
        self.intent = intent
        self.snippet = snippet
        self.error = error
        self.calls: list[tuple[list[ChatMessage], str]] = []

    def complete(self, messages: list[ChatMessage], system_prompt: str) -> str:
        self.calls.append((messages, system_prompt))
        if self.error is not None:
            raise self.error
        if "task reminder parser" in system_prompt:
            return self.intent
        return self.snippet


@dataclass(slots=True)
class SentMessage:
    chat_id: str
    text: str


@dataclass(slots=True)
class FakeNotifier:
    """
    Fake Notifier used by scheduler tests.

    With `fail=True` every send raises, like a broken transport.
    """

    sent: list[SentMessage] = field(default_factory=list)
    fail: bool = False

    async def send_message(self, chat_id: str, text: str) -> None:
        if self.fail:
            raise ConnectionError("transport down")
        self.sent.append(SentMessage(chat_id=chat_id, text=text))


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta: float) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def make_task(
    task_id: str,
    due_at: datetime,
    *,
    chat_id: str = "chat-1",
    message: str = "Call mom",
    created_at: datetime | None = None,
    policy: ReminderPolicy = ReminderPolicy.DEFAULT,
) -> Task:
    created = created_at or due_at - timedelta(days=1)
    return Task(
        id=task_id,
        chat_id=chat_id,
        message=message,
        due_at=due_at,
        created_at=created,
        updated_at=created,
        reminders=compute_reminders(due_at, policy=policy),
    )
