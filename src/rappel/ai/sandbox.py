# src/rappel/ai/sandbox.py

from __future__ import annotations

"""
Snippet sandbox.

Turns a short model-generated Python snippet into a due instant:
1) denylist scan over the raw text
2) wrap the snippet into a function and check its AST against a small grammar
3) normalize the `due_iso` output contract (declare / return)
4) run it against a frozen, read-only context with a tiny builtin allowlist
5) validate that the result is an ISO-8601 instant

The denylist is defense in depth. The grammar check is what keeps host objects
out of reach: no imports, no loops, no definitions, no attribute writes, and no
name or attribute that starts with an underscore.
"""

import ast
import logging
import re
import textwrap
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from dateutil.relativedelta import FR, MO, SA, SU, TH, TU, WE, relativedelta

from ..core.errors import InvalidResult, SandboxError, SandboxViolation
from ..tasks.time_utils import DEFAULT_TIMEZONE, get_zone, parse_instant, to_iso

logger = logging.getLogger(__name__)

OUTPUT_VAR = "due_iso"
ENTRYPOINT = "compute_due"

# (label, pattern) pairs; the label is what SandboxViolation reports.
DENYLIST_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    # network
    ("socket", re.compile(r"\bsocket\b")),
    ("urllib", re.compile(r"\burllib\d?\b")),
    ("requests", re.compile(r"\brequests\b")),
    ("httpx", re.compile(r"\bhttpx\b")),
    ("aiohttp", re.compile(r"\baiohttp\b")),
    ("http.", re.compile(r"\bhttp\.")),
    # filesystem
    ("open(", re.compile(r"\bopen\s*\(")),
    ("pathlib", re.compile(r"\bpathlib\b")),
    ("Path(", re.compile(r"\bPath\s*\(")),
    ("shutil", re.compile(r"\bshutil\b")),
    # process / OS
    ("os.", re.compile(r"\bos\.")),
    ("sys.", re.compile(r"\bsys\.")),
    ("subprocess", re.compile(r"\bsubprocess\b")),
    ("signal", re.compile(r"\bsignal\b")),
    ("ctypes", re.compile(r"\bctypes\b")),
    # dynamic import / reflection
    ("import", re.compile(r"\bimport\b")),
    ("getattr(", re.compile(r"\bgetattr\s*\(")),
    ("setattr(", re.compile(r"\bsetattr\s*\(")),
    ("delattr(", re.compile(r"\bdelattr\s*\(")),
    ("globals(", re.compile(r"\bglobals\s*\(")),
    ("locals(", re.compile(r"\blocals\s*\(")),
    ("vars(", re.compile(r"\bvars\s*\(")),
    ("dir(", re.compile(r"\bdir\s*\(")),
    ("type(", re.compile(r"\btype\s*\(")),
    ("builtins", re.compile(r"\bbuiltins\b")),
    ("dunder", re.compile(r"__\w*")),
    # nested dynamic code
    ("eval(", re.compile(r"\beval\s*\(")),
    ("exec(", re.compile(r"\bexec\s*\(")),
    ("compile(", re.compile(r"\bcompile\s*\(")),
    # timers / scheduling
    ("time.sleep", re.compile(r"\btime\.sleep\b")),
    ("threading", re.compile(r"\bthreading\b")),
    ("asyncio", re.compile(r"\basyncio\b")),
    ("sched", re.compile(r"\bsched\b")),
    # console / logging
    ("print(", re.compile(r"\bprint\s*\(")),
    ("input(", re.compile(r"\binput\s*\(")),
    ("logging", re.compile(r"\blogging\b")),
    ("breakpoint(", re.compile(r"\bbreakpoint\s*\(")),
]

_ALLOWED_NODES: tuple[type[ast.AST], ...] = (
    ast.Module,
    ast.FunctionDef,  # only the wrapper; checked separately
    ast.arguments,
    ast.arg,
    ast.Assign,
    ast.AnnAssign,
    ast.AugAssign,
    ast.Expr,
    ast.If,
    ast.IfExp,
    ast.Return,
    ast.Pass,
    ast.Name,
    ast.Load,
    ast.Store,
    ast.Attribute,
    ast.Call,
    ast.keyword,
    ast.Constant,
    ast.BinOp,
    ast.UnaryOp,
    ast.BoolOp,
    ast.Compare,
    ast.Subscript,
    ast.Slice,
    ast.Tuple,
    ast.List,
    ast.Dict,
    ast.JoinedStr,
    ast.FormattedValue,
    ast.operator,
    ast.unaryop,
    ast.boolop,
    ast.cmpop,
)

_FORBIDDEN_ATTRS = frozenset({"format", "format_map"})
_FORBIDDEN_OPS: tuple[type[ast.AST], ...] = (ast.Pow, ast.LShift)
# Literal bounds; calendar math stays far below them.
MAX_NUMERIC_CONSTANT = 10_000_000
MAX_STRING_CONSTANT = 1_000

_SAFE_BUILTINS: dict[str, Any] = {
    "abs": abs,
    "min": min,
    "max": max,
    "round": round,
    "int": int,
    "float": float,
    "str": str,
    "len": len,
    "bool": bool,
}


class Calendar:
    """
    Pure calendar arithmetic handle exposed to snippets as `ctx.calendar`.

    Datetimes handed out are aware and expressed in the configured zone, so
    `plus(days=1)` and `.replace(hour=...)` work on local wall-clock time.
    """

    __slots__ = ("_zone",)

    relativedelta = relativedelta
    timedelta = timedelta
    MO, TU, WE, TH, FR, SA, SU = MO, TU, WE, TH, FR, SA, SU

    def __init__(self, tz_name: str = DEFAULT_TIMEZONE) -> None:
        object.__setattr__(self, "_zone", get_zone(tz_name))

    def __setattr__(self, name: str, value: Any) -> None:
        raise AttributeError("Calendar is read-only")

    @property
    def zone(self):
        return self._zone

    def parse(self, iso: str) -> datetime:
        """ISO string -> aware datetime in the configured zone."""
        return parse_instant(iso, self._zone.key).astimezone(self._zone)

    def local(self, dt: datetime) -> datetime:
        if dt.tzinfo is None:
            return dt.replace(tzinfo=self._zone)
        return dt.astimezone(self._zone)

    def plus(self, dt: datetime, **delta: Any) -> datetime:
        """Civil arithmetic: years/months/weeks/days/hours/minutes, weekday=MO(+1), ..."""
        return self.local(dt) + relativedelta(**delta)

    def minus(self, dt: datetime, **delta: Any) -> datetime:
        return self.local(dt) - relativedelta(**delta)

    def at(self, dt: datetime, hour: int, minute: int = 0) -> datetime:
        return self.local(dt).replace(hour=hour, minute=minute, second=0, microsecond=0)

    def next_weekday(self, dt: datetime, weekday: int) -> datetime:
        """Next occurrence (strictly after dt's day) of weekday, 0=Monday."""
        local = self.local(dt)
        days = (weekday - local.weekday()) % 7 or 7
        return local + timedelta(days=days)

    def to_iso(self, dt: datetime) -> str:
        return to_iso(self.local(dt))


def start_of_week_monday(dt: datetime) -> datetime:
    """Monday 00:00 of dt's week, same tzinfo."""
    monday = dt - timedelta(days=dt.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


@dataclass(frozen=True, slots=True)
class SnippetContext:
    now_iso: str
    calendar: Calendar
    time_zone: str
    default_hour: int
    default_minute: int
    start_of_week_monday: Callable[[datetime], datetime]


def build_context(
    now: datetime,
    *,
    tz_name: str = DEFAULT_TIMEZONE,
    default_hour: int = 12,
    default_minute: int = 0,
) -> SnippetContext:
    return SnippetContext(
        now_iso=to_iso(now),
        calendar=Calendar(tz_name),
        time_zone=tz_name,
        default_hour=default_hour,
        default_minute=default_minute,
        start_of_week_monday=start_of_week_monday,
    )


# ---- validation steps ----


def scan_denylist(code: str) -> None:
    for label, pattern in DENYLIST_PATTERNS:
        if pattern.search(code):
            raise SandboxViolation(label)


def _wrap(code: str) -> str:
    body = textwrap.indent(textwrap.dedent(code).strip("\n"), "    ")
    return f"def {ENTRYPOINT}(ctx):\n{body or '    pass'}\n"


def _parse_wrapped(code: str) -> ast.Module:
    try:
        tree = ast.parse(_wrap(code), mode="exec")
    except SyntaxError as e:
        raise SandboxError(f"Snippet is not valid Python: {e.msg} (line {e.lineno})") from e

    if len(tree.body) != 1 or not isinstance(tree.body[0], ast.FunctionDef):
        raise SandboxError("Snippet must be a plain statement sequence")
    return tree


def check_grammar(tree: ast.Module) -> None:
    wrapper = tree.body[0]
    for node in ast.walk(tree):
        if not isinstance(node, _ALLOWED_NODES):
            raise SandboxViolation(type(node).__name__, "construct not allowed")
        if isinstance(node, _FORBIDDEN_OPS):
            raise SandboxViolation(type(node).__name__, "operator not allowed")
        if isinstance(node, ast.FunctionDef) and node is not wrapper:
            raise SandboxViolation("def", "nested definitions are not allowed")
        if isinstance(node, ast.Name) and node.id.startswith("_"):
            raise SandboxViolation(node.id, "private names are not allowed")
        if isinstance(node, ast.Attribute):
            if node.attr.startswith("_"):
                raise SandboxViolation(node.attr, "private attributes are not allowed")
            if node.attr in _FORBIDDEN_ATTRS:
                raise SandboxViolation(node.attr, "string formatting by attribute is not allowed")
            if isinstance(node.ctx, ast.Store):
                raise SandboxViolation("attribute assignment", "context objects are read-only")
        if isinstance(node, ast.Subscript) and isinstance(node.ctx, ast.Store):
            raise SandboxViolation("item assignment", "context objects are read-only")
        if isinstance(node, ast.Constant):
            _check_constant(node.value)
        if isinstance(node, ast.BinOp) and isinstance(node.op, ast.Mult):
            if _is_sequence_literal(node.left) or _is_sequence_literal(node.right):
                raise SandboxViolation("sequence repetition", "repeating literals is not allowed")


def _is_sequence_literal(node: ast.expr) -> bool:
    if isinstance(node, (ast.List, ast.Tuple, ast.JoinedStr)):
        return True
    return isinstance(node, ast.Constant) and isinstance(node.value, (str, bytes))


def _check_constant(value: Any) -> None:
    if isinstance(value, bool) or value is None:
        return
    if isinstance(value, (int, float)) and abs(value) > MAX_NUMERIC_CONSTANT:
        raise SandboxViolation(repr(value), "numeric literal too large")
    if isinstance(value, (str, bytes)) and len(value) > MAX_STRING_CONSTANT:
        raise SandboxViolation("string literal", "literal too long")


def _binds_output(stmt: ast.stmt) -> tuple[bool, bool]:
    """(declared, assigned) for one top-level statement."""
    if isinstance(stmt, ast.AnnAssign):
        if isinstance(stmt.target, ast.Name) and stmt.target.id == OUTPUT_VAR:
            return True, stmt.value is not None
        return False, False

    targets: list[ast.expr] = []
    if isinstance(stmt, ast.Assign):
        targets = list(stmt.targets)
    elif isinstance(stmt, ast.AugAssign):
        targets = [stmt.target]

    for t in targets:
        for sub in ast.walk(t):
            if isinstance(sub, ast.Name) and sub.id == OUTPUT_VAR:
                return False, True
    return False, False


def normalize_output_contract(tree: ast.Module) -> ast.Module:
    """
    Make the wrapper return `due_iso`.

    - declared (annotated binding)   -> left unchanged
    - assigned only                  -> prepend `due_iso: str | None = None`
    - neither                        -> InvalidResult
    - no trailing return             -> append `return due_iso`
    """
    fn = tree.body[0]
    if not isinstance(fn, ast.FunctionDef):
        raise SandboxError("Snippet must be a plain statement sequence")

    declared = assigned = False
    for stmt in ast.walk(fn):
        if isinstance(stmt, ast.stmt) and stmt is not fn:
            d, a = _binds_output(stmt)
            declared = declared or d
            assigned = assigned or a

    if not declared and not assigned:
        raise InvalidResult(
            f"Snippet must either declare '{OUTPUT_VAR}' ({OUTPUT_VAR}: str = ...) "
            f"or assign to it ({OUTPUT_VAR} = ...)."
        )

    if not declared:
        decl = ast.parse(f"{OUTPUT_VAR}: str | None = None").body[0]
        fn.body.insert(0, decl)

    if not isinstance(fn.body[-1], ast.Return):
        fn.body.append(ast.Return(value=ast.Name(id=OUTPUT_VAR, ctx=ast.Load())))

    return ast.fix_missing_locations(tree)


def _run(tree: ast.Module, ctx: SnippetContext) -> Any:
    namespace: dict[str, Any] = {"__builtins__": dict(_SAFE_BUILTINS)}
    try:
        compiled = compile(tree, filename="<snippet>", mode="exec")
        exec(compiled, namespace)
        return namespace[ENTRYPOINT](ctx)
    except Exception as e:
        raise SandboxError(f"Snippet raised {type(e).__name__}: {e}") from e


def validate_result(result: Any, tz_name: str = DEFAULT_TIMEZONE) -> datetime:
    if not isinstance(result, str):
        raise InvalidResult(
            f"Snippet must return a string, got: {type(result).__name__}. "
            f"The snippet must assign '{OUTPUT_VAR}'."
        )
    try:
        return parse_instant(result, tz_name)
    except ValueError as e:
        raise InvalidResult(f"Result is not a valid ISO datetime: {result!r}") from e


def evaluate_snippet(code: str, ctx: SnippetContext) -> datetime:
    """
    Evaluate a snippet and return the due instant (aware, UTC).

    Raises SandboxViolation, SandboxError or InvalidResult.
    """
    if not isinstance(code, str) or not code.strip():
        raise InvalidResult("Snippet is empty")

    scan_denylist(code)
    tree = _parse_wrapped(code)
    check_grammar(tree)
    tree = normalize_output_contract(tree)

    result = _run(tree, ctx)
    due = validate_result(result, ctx.time_zone)
    logger.debug("Snippet evaluated to %s", due.isoformat())
    return due
