"""Dispatch main entry point.

``python -m dispatch.main``        start the admin API, Telegram bot and scheduler
``python -m dispatch.main --now``  run a single processing pass and exit
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import os
import signal
import sys
import threading

import uvicorn

from dispatch.core.config import get_settings
from dispatch.core.logging import get_logger, setup_logging
from dispatch.core.runtime import Runtime, build_runtime


def _validate(logger) -> bool:
    missing = get_settings().missing_required()
    if missing:
        logger.error("Missing required configuration: %s", ", ".join(missing))
        return False
    return True


async def _run_once(runtime: Runtime) -> bool:
    """Run one pass with the Telegram bot up so escalations can be answered."""
    from dispatch.telegram.bot import run_telegram_bot

    bot = asyncio.create_task(run_telegram_bot(runtime))
    try:
        return await asyncio.to_thread(runtime.scheduler.run_pass)
    finally:
        bot.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await bot


def run_now() -> int:
    setup_logging()
    logger = get_logger("main")
    if not _validate(logger):
        return 1

    runtime = build_runtime()
    try:
        ran = asyncio.run(_run_once(runtime))
    except Exception as exc:
        logger.error("Manual pass failed: %s", exc, exc_info=True)
        return 1
    logger.info("Manual pass finished")
    return 0 if ran else 1


def main() -> int:
    """Entry point: starts all services."""
    setup_logging()
    logger = get_logger("main")
    settings = get_settings()

    logger.info("=" * 60)
    logger.info("Dispatch starting")
    logger.info("=" * 60)

    if not _validate(logger):
        return 1

    runtime = build_runtime(settings)

    from dispatch.telegram.bot import run_telegram_bot
    from dispatch.web.server import set_runtime

    set_runtime(runtime)
    logger.info("Admin API: http://%s:%d", settings.web_host, settings.web_port)
    logger.info("Check interval: %ds", settings.check_interval_seconds)

    config = uvicorn.Config(
        "dispatch.web.server:app",
        host=settings.web_host,
        port=settings.web_port,
        log_level=settings.log_level.lower(),
        reload=False,
    )
    server = uvicorn.Server(config)

    _signal_count = 0

    def _force_exit_after(seconds: float) -> None:
        """Force-kill the process after a grace period."""
        threading.Event().wait(seconds)
        logger.warning("Grace period expired — forcing exit")
        os._exit(1)

    def _handle_signal(signum, frame):
        nonlocal _signal_count
        _signal_count += 1
        runtime.scheduler.stop()

        if _signal_count == 1:
            logger.info("Signal %d received — stopping after the current pass (send again to force)", signum)
            threading.Thread(target=_force_exit_after, args=(15,), daemon=True).start()
            server.should_exit = True
        else:
            logger.warning("Second signal — forcing immediate exit")
            os._exit(1)

    signal.signal(signal.SIGINT, _handle_signal)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_signal)

    async def _run_all():
        """Run the web server, telegram bot and scheduler concurrently."""
        bot = asyncio.create_task(run_telegram_bot(runtime))
        scheduler = asyncio.create_task(runtime.scheduler.run_forever(settings.check_interval_seconds))
        try:
            await server.serve()
        finally:
            runtime.scheduler.stop()
            bot.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await bot
            await scheduler

    try:
        asyncio.run(_run_all())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    return 0


def cli() -> None:
    parser = argparse.ArgumentParser(prog="dispatch", description="Autonomous work-dispatch orchestrator")
    parser.add_argument("--now", action="store_true", help="run a single processing pass and exit")
    args = parser.parse_args()
    sys.exit(run_now() if args.now else main())


if __name__ == "__main__":
    cli()
