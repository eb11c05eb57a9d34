# src/rappel/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FILE_NAME = "rappel.log"
LOG_FORMAT = "%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Loggers that are only interesting at WARNING+ on the terminal. Timer
# arming and snippet evaluation happen on every task and would bury replies.
_CHATTY_PREFIXES = (
    "rappel.tasks.task_scheduler",
    "rappel.ai.sandbox",
)

_THIRD_PARTY = ("httpx", "httpcore", "openai")


def level_from_name(name: str | None, default: int = logging.INFO) -> int:
    """'debug' / 'INFO' / '20' -> logging level; unknown names give `default`."""
    if not name:
        return default
    name = str(name).strip()
    if name.isdigit():
        return int(name)
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else default


class _ConsoleNoiseFilter(logging.Filter):
    """
    Terminal filter:
    rappel records pass, except timer and sandbox chatter below WARNING.
    Everything else (libraries, py.warnings) needs ERROR.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name
        if name == "rappel" or name.startswith("rappel."):
            if name.startswith(_CHATTY_PREFIXES):
                return record.levelno >= logging.WARNING
            return True
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/rappel",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Configure the root logger once, before anything logs.

    The console gets filtered output on stderr (stdout belongs to the REPL).
    The file under `log_dir` keeps everything at `file_level`.
    Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATEFMT)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    for name in _THIRD_PARTY:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.captureWarnings(True)
    return log_file
