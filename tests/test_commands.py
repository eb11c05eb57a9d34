# tests/test_commands.py

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from rappel.cli.commands import CommandRegistry, registry
from rappel.core.state import AppState
from rappel.tasks.task_models import TaskStatus

from .fakes import make_task

MONDAY_9 = datetime(2024, 3, 11, 8, 0, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_command_registry_routes_sync_and_async_handlers(state: AppState) -> None:
    reg = CommandRegistry()
    called = {"sync": 0, "async": 0}

    def h_sync(state, args, chat_id):
        called["sync"] += 1
        return f"sync {args} {chat_id}"

    async def h_async(state, args, chat_id):
        called["async"] += 1
        return "async"

    reg.register("a", h_sync, "a", aliases=["aa"])
    reg.register("b", h_async, "b")

    assert await reg.handle(state, "/a x", "c1") == "sync ['x'] c1"
    assert await reg.handle(state, "/AA", "c1") == "sync [] c1"
    assert await reg.handle(state, "/b y", "c1") == "async"
    assert called == {"sync": 2, "async": 1}


@pytest.mark.asyncio
async def test_command_registry_unknown_and_non_command(state: AppState) -> None:
    reg = CommandRegistry()
    assert await reg.handle(state, "hello", "c1") is None
    assert "Unknown command" in (await reg.handle(state, "/nope", "c1") or "")
    assert "Empty command" in (await reg.handle(state, "/", "c1") or "")


@pytest.mark.asyncio
async def test_help_and_status(state: AppState) -> None:
    help_text = await registry.handle(state, "/help", "c1") or ""
    for name in ("/help", "/status", "/list", "/show", "/cancel", "/reschedule"):
        assert name in help_text

    status = await registry.handle(state, "/status", "c1") or ""
    assert "Scheduled tasks: 0" in status
    assert "FakeLLMClient" in status


@pytest.mark.asyncio
async def test_list_and_cancel_by_number(state: AppState) -> None:
    assert await registry.handle(state, "/list", "c1") == "No scheduled tasks."

    state.task_store.add_task(make_task("tsk_a", MONDAY_9))
    listing = await registry.handle(state, "/list", "c1") or ""
    assert "1) 09:00 - Call mom" in listing

    reply = await registry.handle(state, "/cancel 1", "c1")
    assert reply == "Cancelled: Call mom (was due Monday 11/03/2024 09:00)"
    task = state.task_store.get_task("tsk_a")
    assert task is not None and task.status == TaskStatus.CANCELLED

    assert await registry.handle(state, "/cancel tsk_a", "c1") == "Task not found or already cancelled."
    assert await registry.handle(state, "/cancel 5", "c1") == "No task number 5."
    assert (await registry.handle(state, "/cancel", "c1") or "").startswith("Usage:")


@pytest.mark.asyncio
async def test_reschedule_command(state: AppState) -> None:
    state.task_store.add_task(make_task("tsk_a", MONDAY_9))

    assert (await registry.handle(state, "/reschedule 1", "c1") or "").startswith("Usage:")

    reply = await registry.handle(state, "/reschedule tsk_a tomorrow at 9", "c1") or ""
    assert reply.startswith("Rescheduled: Call mom\nNew due: ")


@pytest.mark.asyncio
async def test_show_and_status_name_reminder_kinds(state: AppState) -> None:
    task = make_task("tsk_a", MONDAY_9)
    state.task_store.add_task(task)
    state.scheduler.reschedule_task(task)

    shown = await registry.handle(state, "/show 1", "c1") or ""
    assert "  - 1 hour before: Monday 11/03/2024 08:00 (pending)" in shown
    assert "  - at the time: Monday 11/03/2024 09:00 (pending)" in shown
    assert await registry.handle(state, "/show tsk_missing", "c1") == "No task with id tsk_missing."
    assert (await registry.handle(state, "/show", "c1") or "").startswith("Usage:")

    status = await registry.handle(state, "/status", "c1") or ""
    assert "Live timers: 2" in status
    assert "    1 hour before: 1" in status
    assert "    at the time: 1" in status
