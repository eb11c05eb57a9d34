# src/rappel/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The scheduler and the task API depend on Protocols instead of concrete
implementations, so transports, storage and LLM providers stay swappable and
tests can inject fakes.
"""

from datetime import datetime
from typing import Any, Awaitable, Protocol

ChatMessage = dict[str, str]
# OpenAI-style chat messages: {"role": "...", "content": "..."}.


class LLMClient(Protocol):
    """Single-shot chat completion client (OpenAI/OpenRouter-compatible)."""
    def complete(self, messages: list[ChatMessage], system_prompt: str) -> str: ...


class Notifier(Protocol):
    """
    Connector-side port: how the scheduler delivers text to a chat.

    A failed delivery raises; the scheduler logs it and does not retry.
    """

    def send_message(self, chat_id: str, text: str) -> Awaitable[None]: ...


class TaskRepo(Protocol):
    # Scheduler API
    def get_task(self, task_id: str) -> Any | None: ...
    def get_scheduled_tasks(self) -> list[Any]: ...
    def mark_reminder_sent(
        self, task_id: str, kind: Any, *, expected_fire_at: datetime | None = None
    ) -> bool: ...
    def mark_reminder_skipped(
        self, task_id: str, kind: Any, reason: str, *, expected_fire_at: datetime | None = None
    ) -> bool: ...
    def remove_task(self, task_id: str, *, expected_due_at: datetime | None = None) -> bool: ...
    def cleanup_old_reminders_and_tasks(self, now: datetime) -> Any: ...

    # Task API
    def add_task(self, task: Any) -> None: ...
    def update_task(
        self, task_id: str, *, only_if_status: Any | None = None, **fields: Any
    ) -> Any | None: ...
    def cancel_task(self, task_id: str) -> Any | None: ...
