# src/rappel/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, rebuilds reminder timers from the task
file, then runs the console REPL on the same event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import ConsoleNotifier, run_console_loop
from ..core.state import AppState
from ..logging_setup import level_from_name, setup_logging

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _handle_signal(signum: int) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        # add_signal_handler is not available on every platform (e.g. Windows).
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, _handle_signal, sig)


async def run(state: AppState) -> None:
    settings = state.settings
    stop = asyncio.Event()
    _install_signal_handlers(stop)

    notifier = ConsoleNotifier(chat_id=settings.console_chat_id)
    await state.scheduler.initialize(notifier)

    try:
        if settings.console_enabled:
            await run_console_loop(state, stop)
        else:
            logger.info("Console disabled. Running scheduler only. Press Ctrl+C to stop.")
            await stop.wait()
    finally:
        state.scheduler.shutdown()
        state.task_store.close()


def main() -> None:
    settings = get_settings()

    log_file = setup_logging(
        log_dir=settings.data_dir,
        console_level=level_from_name(getattr(settings, "log_level", None)),
    )
    logger.info("Starting %s (log file: %s)...", settings.app_name, log_file)

    # IMPORTANT: reuse same settings object
    state = create_initial_state(settings=settings)

    with contextlib.suppress(KeyboardInterrupt):
        asyncio.run(run(state))

    logger.info("Bye.")


if __name__ == "__main__":
    main()
