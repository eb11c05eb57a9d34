# src/rappel/core/state.py

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .ports import LLMClient

if TYPE_CHECKING:
    from ..tasks.task_scheduler import ReminderScheduler
    from ..tasks.task_store import TaskStore


@dataclass(slots=True)
class AppState:
    """
    Shared runtime state.

    Built once by the composition root (cli/bootstrap.py) and passed to
    commands, connectors and the task API.
    """

    settings: Any
    llm: LLMClient
    task_store: TaskStore
    scheduler: ReminderScheduler
