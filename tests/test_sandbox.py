# tests/test_sandbox.py

from __future__ import annotations

import ast

import pytest

from rappel.ai.sandbox import SnippetContext, build_context, evaluate_snippet, normalize_output_contract
from rappel.core.errors import InvalidResult, SandboxError, SandboxViolation, ValidationError
from rappel.tasks.time_utils import to_iso

from .conftest import NOW

TOMORROW_9 = "2024-03-11T08:00:00.000Z"


@pytest.fixture()
def ctx() -> SnippetContext:
    return build_context(NOW, tz_name="Europe/Paris")


def test_context_fields(ctx: SnippetContext) -> None:
    assert ctx.now_iso == "2024-03-10T08:00:00.000Z"
    assert ctx.time_zone == "Europe/Paris"
    assert (ctx.default_hour, ctx.default_minute) == (12, 0)


def test_assigned_only_equals_declared(ctx: SnippetContext) -> None:
    assigned = (
        "now = ctx.calendar.parse(ctx.now_iso)\n"
        "due_iso = ctx.calendar.to_iso(ctx.calendar.at(ctx.calendar.plus(now, days=1), 9))"
    )
    declared = (
        "now = ctx.calendar.parse(ctx.now_iso)\n"
        "due_iso: str = ctx.calendar.to_iso(ctx.calendar.at(ctx.calendar.plus(now, days=1), 9))\n"
        "return due_iso"
    )

    a = evaluate_snippet(assigned, ctx)
    d = evaluate_snippet(declared, ctx)

    assert a == d
    assert to_iso(a) == TOMORROW_9


def test_weekday_and_defaults(ctx: SnippetContext) -> None:
    code = (
        "now = ctx.calendar.parse(ctx.now_iso)\n"
        "day = ctx.calendar.plus(now, weekday=ctx.calendar.FR(+1))\n"
        "due_iso = ctx.calendar.to_iso(ctx.calendar.at(day, ctx.default_hour, ctx.default_minute))"
    )
    # Friday 2024-03-15 12:00 Paris
    assert to_iso(evaluate_snippet(code, ctx)) == "2024-03-15T11:00:00.000Z"


def test_conditional_and_week_start(ctx: SnippetContext) -> None:
    code = (
        "now = ctx.calendar.parse(ctx.now_iso)\n"
        "monday = ctx.start_of_week_monday(now)\n"
        "if monday < now:\n"
        "    due_iso = ctx.calendar.to_iso(ctx.calendar.plus(monday, weeks=1, hours=8))\n"
        "else:\n"
        "    due_iso = ctx.calendar.to_iso(now)\n"
    )
    assert to_iso(evaluate_snippet(code, ctx)) == "2024-03-11T07:00:00.000Z"


def test_plain_iso_literal_is_accepted(ctx: SnippetContext) -> None:
    assert to_iso(evaluate_snippet('due_iso = "2024-03-12T18:30:00+01:00"', ctx)) == "2024-03-12T17:30:00.000Z"


@pytest.mark.parametrize(
    ("code", "label"),
    [
        ("import os\ndue_iso = ctx.now_iso", "import"),
        ("due_iso = ctx.now_iso\nopen('/etc/passwd')", "open("),
        ("x = requests\ndue_iso = ctx.now_iso", "requests"),
        ("due_iso = ctx.now_iso  # os.system", "os."),
        ("print(1)\ndue_iso = ctx.now_iso", "print("),
        ("x = ctx.__class__\ndue_iso = ctx.now_iso", "dunder"),
        ("due_iso = eval('ctx.now_iso')", "eval("),
    ],
)
def test_denylist_rejects_even_when_result_is_valid(ctx: SnippetContext, code: str, label: str) -> None:
    with pytest.raises(SandboxViolation) as ei:
        evaluate_snippet(code, ctx)
    assert ei.value.pattern == label


@pytest.mark.parametrize(
    "code",
    [
        "for i in [1]:\n    pass\ndue_iso = ctx.now_iso",
        "f = lambda: 1\ndue_iso = ctx.now_iso",
        "def f():\n    return 1\ndue_iso = ctx.now_iso",
        "x = ctx._private\ndue_iso = ctx.now_iso",
        "ctx.now_iso = 'x'\ndue_iso = ctx.now_iso",
        "due_iso = '{}'.format(ctx.now_iso)",
        "x = [i for i in 'ab']\ndue_iso = ctx.now_iso",
        "x = 9 ** 9\ndue_iso = ctx.now_iso",
        "x = 4000000000\ndue_iso = ctx.now_iso",
        "pad = 'x' * 40\ndue_iso = ctx.now_iso",
        "pad = [0] * 40\ndue_iso = ctx.now_iso",
    ],
)
def test_grammar_rejects_constructs_outside_the_allowlist(ctx: SnippetContext, code: str) -> None:
    with pytest.raises(SandboxViolation):
        evaluate_snippet(code, ctx)


def test_runtime_failure_is_sandbox_error(ctx: SnippetContext) -> None:
    with pytest.raises(SandboxError):
        evaluate_snippet("due_iso = ctx.calendar.parse('not a date')", ctx)

    with pytest.raises(SandboxError):
        evaluate_snippet("due_iso = ctx.missing", ctx)


def test_syntax_error_is_sandbox_error(ctx: SnippetContext) -> None:
    with pytest.raises(SandboxError):
        evaluate_snippet("due_iso = (", ctx)


def test_unknown_builtin_is_sandbox_error(ctx: SnippetContext) -> None:
    with pytest.raises(SandboxError):
        evaluate_snippet("due_iso = sorted(ctx.now_iso)", ctx)


@pytest.mark.parametrize(
    "code",
    [
        "x = ctx.now_iso",  # never binds the output variable
        "due_iso = 42",
        "due_iso = 'tomorrow at 9'",
        "   ",
    ],
)
def test_invalid_results(ctx: SnippetContext, code: str) -> None:
    with pytest.raises(InvalidResult) as ei:
        evaluate_snippet(code, ctx)
    assert isinstance(ei.value, ValidationError)


def test_context_is_read_only(ctx: SnippetContext) -> None:
    with pytest.raises(AttributeError):
        ctx.now_iso = "2030-01-01T00:00:00Z"  # type: ignore[misc]
    with pytest.raises(AttributeError):
        ctx.calendar.timedelta = None  # type: ignore[misc]


def test_calendar_sized_numbers_are_still_allowed(ctx: SnippetContext) -> None:
    code = (
        "now = ctx.calendar.parse(ctx.now_iso)\n"
        "later = ctx.calendar.plus(now, seconds=86400 * 3650)\n"
        "due_iso = ctx.calendar.to_iso(ctx.calendar.at(ctx.calendar.plus(now, days=1), 9, 0))"
    )
    assert to_iso(evaluate_snippet(code, ctx)) == TOMORROW_9


def test_normalize_rejects_unwrapped_module() -> None:
    with pytest.raises(SandboxError):
        normalize_output_contract(ast.parse("due_iso = 'x'"))
