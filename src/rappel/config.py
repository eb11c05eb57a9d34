# src/rappel/config.py

"""Centralized settings loaded from environment variables (+ optional .env).

Design goals:
- One Settings object for the whole app.
- No secrets required at import time (the LLM client checks its own key).
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

ENV_PREFIX = "RAPPEL"


def _k(suffix: str) -> str:
    """Build env var name with the project prefix."""
    return f"{ENV_PREFIX}_{suffix}"


def _load_dotenv_if_available() -> None:
    """Load .env locally if python-dotenv is installed. Safe no-op otherwise."""
    try:
        from dotenv import load_dotenv  # type: ignore
    except ImportError:
        return
    load_dotenv(override=False)


_load_dotenv_if_available()


def _env(name: str, default: str = "") -> str:
    v = os.getenv(name)
    return default if v is None else v


def _first_env(*names: str, default: str | None = None) -> str | None:
    for n in names:
        v = os.getenv(n)
        if v is not None and v.strip() != "":
            return v
    return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return list(default)
    return [p.strip() for p in raw.replace(",", " ").split() if p.strip()]


def _env_path(name: str, default: Path) -> Path:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return Path(raw).expanduser()


@dataclass(frozen=True, slots=True)
class Settings:
    # ---- App / logging ----
    app_name: str
    log_level: str

    # ---- Local data paths (ignored by git) ----
    data_dir: Path
    tasks_path: Path

    # ---- Time ----
    timezone: str
    default_hour: int
    default_minute: int

    # ---- Reminders ----
    reminder_policy: str
    grace_minutes: int
    max_timer_delay_seconds: int
    digest_enabled: bool
    digest_hour: int

    # ---- LLM / OpenRouter ----
    openrouter_api_key: str | None
    openrouter_base_url: str
    llm_models: list[str]
    extra_headers: dict[str, str]

    # ---- Console connector ----
    console_enabled: bool
    console_chat_id: str

    @staticmethod
    def from_env() -> "Settings":
        app_name = _env(_k("APP_NAME"), "rappel")
        log_level = _env(_k("LOG_LEVEL"), "INFO")

        data_dir = _env_path(_k("DATA_DIR"), Path(".local/rappel"))
        tasks_path = _env_path(_k("TASKS_PATH"), data_dir / "tasks.json")

        timezone = _env(_k("TIMEZONE"), "Europe/Paris")
        default_hour = _env_int(_k("DEFAULT_HOUR"), 12)
        default_minute = _env_int(_k("DEFAULT_MINUTE"), 0)

        reminder_policy = _env(_k("REMINDER_POLICY"), "default").strip().lower()
        grace_minutes = _env_int(_k("GRACE_MINUTES"), 5)
        max_timer_delay_seconds = _env_int(_k("MAX_TIMER_DELAY_SECONDS"), 24 * 60 * 60)
        digest_enabled = _env_bool(_k("DIGEST_ENABLED"), True)
        digest_hour = _env_int(_k("DIGEST_HOUR"), 21)

        openrouter_api_key = _first_env(_k("OPENROUTER_API_KEY"), "OPENROUTER_API_KEY", default=None)
        openrouter_base_url = _env(_k("OPENROUTER_BASE_URL"), "https://openrouter.ai/api/v1")

        extra_headers = {
            "HTTP-Referer": _env(_k("HTTP_REFERER"), "https://example.com"),
            "X-Title": _env(_k("APP_TITLE"), app_name),
        }

        llm_models = _env_list(
            _k("LLM_MODELS"),
            [
                "google/gemini-2.0-flash-001",
                "openai/gpt-4.1-nano",
            ],
        )

        console_enabled = _env_bool(_k("CONSOLE_ENABLED"), True)
        console_chat_id = _env(_k("CONSOLE_CHAT_ID"), "console").strip() or "console"

        return Settings(
            app_name=app_name,
            log_level=log_level,
            data_dir=data_dir,
            tasks_path=tasks_path,
            timezone=timezone,
            default_hour=default_hour,
            default_minute=default_minute,
            reminder_policy=reminder_policy,
            grace_minutes=grace_minutes,
            max_timer_delay_seconds=max_timer_delay_seconds,
            digest_enabled=digest_enabled,
            digest_hour=digest_hour,
            openrouter_api_key=openrouter_api_key,
            openrouter_base_url=openrouter_base_url,
            llm_models=llm_models,
            extra_headers=extra_headers,
            console_enabled=console_enabled,
            console_chat_id=console_chat_id,
        )


SETTINGS = Settings.from_env()


def get_settings() -> Settings:
    return SETTINGS
