# tests/conftest.py

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from types import SimpleNamespace

import pytest

from rappel.core.state import AppState
from rappel.tasks.task_scheduler import ReminderScheduler
from rappel.tasks.task_store import TaskStore

from .fakes import FakeClock, FakeLLMClient, FakeNotifier

# Sunday 2024-03-10, 09:00 in Paris.
NOW = datetime(2024, 3, 10, 8, 0, tzinfo=timezone.utc)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(NOW)


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with AppState and core modules.

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="rappel-test",
        data_dir=tmp_path,
        tasks_path=tmp_path / "tasks.json",
        timezone="Europe/Paris",
        default_hour=12,
        default_minute=0,
        reminder_policy="default",
        grace_minutes=5,
        max_timer_delay_seconds=24 * 60 * 60,
        digest_enabled=False,
        digest_hour=21,
        llm_models=["test/model"],
        console_enabled=False,
        console_chat_id="console",
    )


@pytest.fixture()
def store(settings: SimpleNamespace, clock: FakeClock) -> TaskStore:
    return TaskStore(settings.tasks_path, timezone=settings.timezone, clock=clock)


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def scheduler(store: TaskStore, notifier: FakeNotifier, clock: FakeClock) -> Iterator[ReminderScheduler]:
    sched = ReminderScheduler(
        store,
        notifier,
        clock=clock,
        grace_period=timedelta(minutes=5),
        digest_enabled=False,
    )
    yield sched
    sched.shutdown()


@pytest.fixture()
def llm() -> FakeLLMClient:
    return FakeLLMClient()


@pytest.fixture()
def state(
    settings: SimpleNamespace,
    llm: FakeLLMClient,
    store: TaskStore,
    scheduler: ReminderScheduler,
) -> AppState:
    """
    AppState wired with deterministic fakes.

    NOTE: We keep the real JSON TaskStore here because its persistence is part
    of what we want to test.
    """
    return AppState(settings=settings, llm=llm, task_store=store, scheduler=scheduler)
