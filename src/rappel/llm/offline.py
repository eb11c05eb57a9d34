# src/rappel/llm/offline.py

from __future__ import annotations

import json
import re

from ..core.ports import ChatMessage

_USER_TEXT_RE = re.compile(r"User text:\s*(.*)", re.DOTALL)


class OfflineLLMClient:
    """
    Offline deterministic LLM client used for demos when no external API is configured.

    Behavior:
    - Intent prompts -> the whole text is the message, due "in 1 hour"
    - Date snippet prompts -> a snippet computing now + 1 hour
    - Anything else -> a short offline notice
    """

    def complete(self, messages: list[ChatMessage], system_prompt: str) -> str:
        sp = (system_prompt or "").lower()

        user_text = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_text = m["content"]
                break

        if "task reminder parser" in sp:
            m = _USER_TEXT_RE.search(user_text)
            message = (m.group(1) if m else user_text).strip() or "Reminder"
            return json.dumps({"message": message, "time_instruction": "in 1 hour"})

        if "date computation assistant" in sp:
            return (
                "now = ctx.calendar.parse(ctx.now_iso)\n"
                "due_iso = ctx.calendar.to_iso(ctx.calendar.plus(now, hours=1))"
            )

        return (
            "Offline demo mode: no external LLM is configured.\n"
            "Set RAPPEL_OPENROUTER_API_KEY (and RAPPEL_LLM_MODELS) to enable real parsing."
        )
