# src/rappel/connectors/console_connector.py

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from datetime import datetime

from ..cli.commands import registry as command_registry
from ..core.state import AppState
from ..tasks.task_api import create_task_from_text

logger = logging.getLogger(__name__)

EXIT_COMMANDS = ("/exit", "/quit")


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _print_ts(text: str) -> None:
    print(f"[{_ts_local()}] {text}", flush=True)


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    if sys.stdout.isatty():
        sys.stdout.write("\033[1A\033[2K\r")
        sys.stdout.write(line + "\n")
        sys.stdout.flush()
    else:
        print(line)


class ConsoleNotifier:
    """Notifier that prints reminders to stdout (single local chat)."""

    def __init__(self, chat_id: str = "console") -> None:
        self.chat_id = chat_id

    async def send_message(self, chat_id: str, text: str) -> None:
        prefix = "" if chat_id == self.chat_id else f"(chat {chat_id}) "
        _print_ts(f"<<< {prefix}{text}")


async def handle_console_line(state: AppState, line: str, chat_id: str) -> str | None:
    """One line of input -> reply text (None for an empty line)."""
    line = line.strip()
    if not line:
        return None

    try:
        reply = await command_registry.handle(state, line, chat_id)
    except Exception:
        logger.exception("Command handler crashed.")
        return "Internal error while handling a command."
    if reply is not None:
        return reply

    outcome = await create_task_from_text(state, chat_id, line)
    return outcome.reply


def _start_reader(
    loop: asyncio.AbstractEventLoop,
    lines: asyncio.Queue[str | None],
    ready: threading.Event,
) -> threading.Thread:
    """
    Read stdin in a daemon thread and hand lines to the loop (None on EOF).
    A pending input() must not block interpreter exit.

    The next prompt is shown only once `ready` is set (previous line handled).
    """

    def _push(item: str | None) -> bool:
        try:
            loop.call_soon_threadsafe(lines.put_nowait, item)
        except RuntimeError:
            # Loop already closed.
            return False
        return item is not None

    def _reader() -> None:
        while True:
            ready.wait()
            ready.clear()
            try:
                line = input(">>> You: ")
            except (EOFError, KeyboardInterrupt):
                _push(None)
                return
            if not _push(line):
                return

    t = threading.Thread(target=_reader, name="console-input", daemon=True)
    t.start()
    return t


async def run_console_loop(state: AppState, stop: asyncio.Event | None = None) -> None:
    """
    Interactive REPL on the running event loop.

    Timers keep firing while the prompt waits for input.
    """
    chat_id = str(getattr(state.settings, "console_chat_id", "console"))
    stop = stop or asyncio.Event()
    lines: asyncio.Queue[str | None] = asyncio.Queue()
    ready = threading.Event()

    logger.info("Console connector started (chat_id=%s).", chat_id)
    _print_ts("[CONSOLE] Tell me what to remind you about. Use /help for commands. Use /exit to quit.\n")
    _start_reader(asyncio.get_running_loop(), lines, ready)

    while not stop.is_set():
        ready.set()
        read = asyncio.ensure_future(lines.get())
        stopped = asyncio.ensure_future(stop.wait())
        done, _ = await asyncio.wait({read, stopped}, return_when=asyncio.FIRST_COMPLETED)

        if read not in done:
            read.cancel()
            break
        stopped.cancel()

        raw = read.result()
        if raw is None:
            logger.info("Console EOF received, exiting.")
            break

        user_input = raw.strip()
        _rewrite_prev_line(f"[{_ts_local()}] >>> You: {user_input}")

        if user_input.lower() in EXIT_COMMANDS:
            logger.info("Console exit command received.")
            break

        reply = await handle_console_line(state, user_input, chat_id)
        if reply is not None:
            _print_ts(reply)

    logger.info("Console connector finished.")
