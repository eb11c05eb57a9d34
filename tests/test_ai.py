# tests/test_ai.py

from __future__ import annotations

import pytest

from rappel.ai.date_snippet import generate_date_snippet, strip_code_fences
from rappel.ai.intent import extract_intent, parse_intent_json
from rappel.ai.sandbox import build_context, evaluate_snippet
from rappel.core.errors import ValidationError
from rappel.core.state import AppState
from rappel.llm.offline import OfflineLLMClient
from rappel.tasks import task_api
from rappel.tasks.task_models import ReminderKind

from .conftest import NOW
from .fakes import FakeLLMClient


def test_parse_intent_json_tolerates_chatter_and_camel_case() -> None:
    intent = parse_intent_json('Here you go:\n{"message": " Dentist ", "timeInstruction": "friday 3pm"}')

    assert intent.message == "Dentist"
    assert intent.time_instruction == "friday 3pm"
    assert intent.has_time


@pytest.mark.parametrize(
    "raw",
    [
        "no json here",
        '{"message": "Dentist"',
        '{"message": "", "time_instruction": "friday"}',
        '{"message": "Dentist"}',
        '{"message": "Dentist", "time_instruction": 3}',
    ],
)
def test_parse_intent_json_rejects_malformed_replies(raw: str) -> None:
    with pytest.raises(ValidationError):
        parse_intent_json(raw)


def test_extract_intent_sends_now_and_text() -> None:
    llm = FakeLLMClient(intent='{"message": "Call mom", "time_instruction": "unspecified"}')

    intent = extract_intent(llm, "call mom", NOW)

    assert not intent.has_time
    messages, system_prompt = llm.calls[0]
    assert "task reminder parser" in system_prompt
    assert "2024-03-10T08:00:00.000Z" in messages[0]["content"]
    assert "User text: call mom" in messages[0]["content"]


def test_generate_date_snippet_strips_fences() -> None:
    llm = FakeLLMClient(snippet="```python\ndue_iso = ctx.now_iso\n```")

    assert generate_date_snippet(llm, "now", NOW) == "due_iso = ctx.now_iso"
    assert "Europe/Paris" in llm.calls[0][1]
    assert strip_code_fences("```py\nx = 1\n```") == "x = 1"


def test_generate_date_snippet_requires_output_variable() -> None:
    llm = FakeLLMClient(snippet="result = ctx.now_iso")

    with pytest.raises(ValidationError):
        generate_date_snippet(llm, "now", NOW)


def test_offline_snippet_passes_the_sandbox() -> None:
    llm = OfflineLLMClient()
    code = generate_date_snippet(llm, "in 1 hour", NOW)

    due = evaluate_snippet(code, build_context(NOW))

    assert (due - NOW).total_seconds() == 3600


@pytest.mark.asyncio
async def test_offline_client_end_to_end(state: AppState) -> None:
    state.llm = OfflineLLMClient()

    outcome = await task_api.create_task_from_text(state, "chat-1", "water the plants", now=NOW)

    assert outcome.ok
    assert outcome.reply == 'Ok, I\'ll remind you about "water the plants" today at 10:00'
    # one_hour_before lands exactly on "now" and is skipped without a past warning
    assert outcome.skipped == [ReminderKind.ONE_HOUR_BEFORE]
