# src/rappel/ai/date_snippet.py

from __future__ import annotations

import logging
import re
from datetime import datetime

from ..core.errors import ValidationError
from ..core.ports import LLMClient
from ..tasks.time_utils import DEFAULT_TIMEZONE, to_iso
from .sandbox import OUTPUT_VAR

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:python|py)?", re.IGNORECASE)


def build_snippet_prompt(
    now: datetime,
    *,
    tz_name: str = DEFAULT_TIMEZONE,
    default_hour: int = 12,
    default_minute: int = 0,
) -> str:
    return f"""You are a date computation assistant.

Write a short Python snippet that computes an ISO datetime from a time instruction.

Context:
- Now is "{to_iso(now)}".
- Timezone is {tz_name}.
- Week starts on Monday.
- If time is missing, default to {default_hour:02d}:{default_minute:02d}.

The code MUST:
- assign the result to a variable named `{OUTPUT_VAR}` (a string)
- use only plain statements: assignments, if/else, function calls on `ctx`
- NOT import anything, NOT define functions, NOT use loops

Use the provided `ctx` object which has:
- `ctx.now_iso`: current ISO string (UTC)
- `ctx.time_zone`: '{tz_name}'
- `ctx.default_hour`: {default_hour}
- `ctx.default_minute`: {default_minute}
- `ctx.start_of_week_monday(dt)`: Monday 00:00 of dt's week
- `ctx.calendar.parse(iso)`: aware datetime in the local zone
- `ctx.calendar.plus(dt, days=1, hours=2, weekday=ctx.calendar.MO(+1), ...)`: civil arithmetic
- `ctx.calendar.minus(dt, ...)`, `ctx.calendar.at(dt, hour, minute)`
- `ctx.calendar.next_weekday(dt, weekday)`: 0=Monday ... 6=Sunday, strictly after dt's day
- `ctx.calendar.to_iso(dt)`: ISO string in UTC

Example:
now = ctx.calendar.parse(ctx.now_iso)
due = ctx.calendar.at(ctx.calendar.plus(now, days=1), 21, 0)
{OUTPUT_VAR} = ctx.calendar.to_iso(due)

Only return the code. No markdown. No explanation."""


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def generate_date_snippet(
    llm: LLMClient,
    time_instruction: str,
    now: datetime,
    *,
    tz_name: str = DEFAULT_TIMEZONE,
    default_hour: int = 12,
    default_minute: int = 0,
) -> str:
    """Ask the model for a snippet computing the due instant (blocking LLM call)."""
    system_prompt = build_snippet_prompt(
        now, tz_name=tz_name, default_hour=default_hour, default_minute=default_minute
    )
    user_prompt = f'Here is the user\'s time instruction:\n"{time_instruction}"'

    reply = llm.complete([{"role": "user", "content": user_prompt}], system_prompt)
    code = strip_code_fences(reply)

    if OUTPUT_VAR not in code:
        raise ValidationError(f"Generated code does not contain {OUTPUT_VAR}: {code!r}")

    logger.debug("Date snippet for %r:\n%s", time_instruction, code)
    return code
