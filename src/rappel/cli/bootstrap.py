# src/rappel/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires concrete implementations into AppState (LLM/store/scheduler).
"""

from __future__ import annotations

import logging
from datetime import timedelta

from ..config import get_settings
from ..core.ports import LLMClient
from ..core.state import AppState
from ..llm.client import OpenRouterLLMClient
from ..llm.offline import OfflineLLMClient
from ..tasks.task_scheduler import ReminderScheduler
from ..tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_path.parent.mkdir(parents=True, exist_ok=True)


def create_initial_state(*, settings=None, llm: LLMClient | None = None) -> AppState:
    """
    Create AppState from the provided settings.

    If settings is None, falls back to get_settings(). Without an API key the
    offline client is used, so the app still runs end to end.
    """
    if settings is None:
        settings = get_settings()

    _ensure_local_dirs(settings)

    if llm is None:
        try:
            llm = OpenRouterLLMClient(settings)
        except RuntimeError as e:
            logger.warning("LLM not configured (%s). Using offline client.", e)
            llm = OfflineLLMClient()

    store = TaskStore(settings.tasks_path, timezone=settings.timezone)
    scheduler = ReminderScheduler(
        store,
        tz_name=settings.timezone,
        grace_period=timedelta(minutes=settings.grace_minutes),
        max_delay_seconds=settings.max_timer_delay_seconds,
        digest_enabled=settings.digest_enabled,
        digest_hour=settings.digest_hour,
    )

    return AppState(settings=settings, llm=llm, task_store=store, scheduler=scheduler)
