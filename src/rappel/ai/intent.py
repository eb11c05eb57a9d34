# src/rappel/ai/intent.py

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime

from ..core.errors import ValidationError
from ..core.ports import LLMClient
from ..tasks.time_utils import DEFAULT_TIMEZONE, to_iso

logger = logging.getLogger(__name__)

UNSPECIFIED = "unspecified"

INTENT_SYSTEM_PROMPT = """You are a task reminder parser.

Given a user's sentence, extract:
1) message: what the user wants to be reminded about (imperative, no date/time words)
2) time_instruction: the date/time instruction portion (relative or absolute)

Rules:
- If the user includes no time at all, set time_instruction to "unspecified".
- Do NOT guess specific dates.
- Keep message short and title-like.
- Return STRICT JSON only, no markdown, no extra text.

Example:
Input: "Lena's driving class tomorrow at 9PM"
Output: {"message":"Lena's driving class","time_instruction":"tomorrow at 9PM"}"""

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


@dataclass(frozen=True, slots=True)
class Intent:
    message: str
    time_instruction: str

    @property
    def has_time(self) -> bool:
        return self.time_instruction.strip().lower() != UNSPECIFIED


def parse_intent_json(raw: str) -> Intent:
    """
    Pull the first JSON object out of a model reply and validate it.

    Accepts `timeInstruction` as an alias of `time_instruction`.
    """
    m = _JSON_OBJECT_RE.search(raw or "")
    if not m:
        raise ValidationError(f"Could not parse intent JSON from: {raw!r}")

    try:
        data = json.loads(m.group(0))
    except json.JSONDecodeError as e:
        raise ValidationError(f"Failed to parse intent JSON: {e}") from e

    if not isinstance(data, dict):
        raise ValidationError("Intent JSON must be an object")

    message = data.get("message")
    instruction = data.get("time_instruction", data.get("timeInstruction"))

    if not isinstance(message, str) or not message.strip():
        raise ValidationError("Missing or invalid 'message' field")
    if not isinstance(instruction, str) or not instruction.strip():
        raise ValidationError("Missing or invalid 'time_instruction' field")

    return Intent(message=message.strip(), time_instruction=instruction.strip())


def extract_intent(
    llm: LLMClient,
    raw_text: str,
    now: datetime,
    *,
    tz_name: str = DEFAULT_TIMEZONE,
) -> Intent:
    """Split free text into what to remind about and when (blocking LLM call)."""
    user_prompt = f"Today is: {to_iso(now)}\nTimezone: {tz_name}\nUser text: {raw_text}"
    reply = llm.complete([{"role": "user", "content": user_prompt}], INTENT_SYSTEM_PROMPT)

    intent = parse_intent_json(reply)
    logger.debug("Intent: message=%r time_instruction=%r", intent.message, intent.time_instruction)
    return intent
