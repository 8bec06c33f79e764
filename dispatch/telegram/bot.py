"""Telegram interface for dispatch — the human side of every escalation.

Commands:
  /status       — list tracked projects and their progress
  /logs         — show recent log entries (last 20)
  /now          — trigger a processing pass immediately
  /pause <id>   — pause a project
  /resume <id>  — resume a paused or waiting project

Plain-text messages answer the outstanding question if the core is waiting
for one; otherwise they are routed as direction (or a new goal) by the
``HumanReplyRouter``.
"""

from __future__ import annotations

import asyncio
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import TYPE_CHECKING, Optional

from telegram import Update
from telegram.ext import Application, CommandHandler, ContextTypes, MessageHandler, filters

from dispatch.core.config import get_settings
from dispatch.core.errors import HumanReplyTimeout, ProjectNotFound
from dispatch.core.escalation import format_question
from dispatch.core.logging import get_logger, tail_log
from dispatch.core.reply_registry import ReplyRegistry
from dispatch.core.reply_registry import registry as reply_registry
from dispatch.core.scheduler import ProjectUpdate
from dispatch.core.state import ProjectStatus

if TYPE_CHECKING:
    from dispatch.core.runtime import Runtime

logger = get_logger("telegram.bot")

# ── Module-level state ───────────────────────────────────────────────────
_telegram_app: Application | None = None   # set by create_telegram_app()
_bot_loop: asyncio.AbstractEventLoop | None = None   # set by run_telegram_bot()
_runtime: Runtime | None = None

_SEND_TIMEOUT_SECONDS = 30

# ── Helpers ──────────────────────────────────────────────────────────────


def _is_allowed(user_id: int) -> bool:
    """Return True if the user is in the allow-list (empty list = allow all)."""
    settings = get_settings()
    allowed = settings.allowed_telegram_ids
    return not allowed or user_id in allowed


def _allowed_chat_ids() -> list[int]:
    return get_settings().allowed_telegram_ids


async def _notify_all(text: str) -> None:
    """Send a message to every allowed Telegram user."""
    if _telegram_app is None:
        return
    for uid in _allowed_chat_ids():
        try:
            await _telegram_app.bot.send_message(chat_id=uid, text=text, parse_mode="Markdown")
        except Exception as exc:
            logger.warning("Failed to notify Telegram user %d: %s", uid, exc)


# ── Messaging channel used by the core ───────────────────────────────────

class TelegramChannel:
    """``MessagingChannel`` backed by the running bot.

    Called from the core's worker thread: outgoing messages are scheduled on
    the bot's event loop, and replies arrive through the shared reply registry.
    """

    def __init__(self, replies: ReplyRegistry | None = None) -> None:
        self.replies = replies or reply_registry

    def notify(self, text: str) -> None:
        if _telegram_app is None or _bot_loop is None or _bot_loop.is_closed():
            logger.info("Telegram not running, message not sent:\n%s", text)
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is _bot_loop:
            _bot_loop.create_task(_notify_all(text))
            return

        future = asyncio.run_coroutine_threadsafe(_notify_all(text), _bot_loop)
        try:
            future.result(timeout=_SEND_TIMEOUT_SECONDS)
        except FutureTimeoutError:
            logger.warning("Telegram send timed out after %ds", _SEND_TIMEOUT_SECONDS)

    def ask_human(self, question: str, context: str = "") -> None:
        logger.info("Asking human: %s", question)
        self.notify(format_question(question, context))

    def wait_for_reply(self, timeout_seconds: float) -> str:
        wait_id, future = self.replies.open_wait()
        logger.info("Waiting up to %.0fs for a human reply (wait %s)", timeout_seconds, wait_id)
        try:
            return future.result(timeout=timeout_seconds)
        except FutureTimeoutError:
            self.replies.cancel(wait_id)
            raise HumanReplyTimeout(timeout_seconds) from None


# ── Command handlers ─────────────────────────────────────────────────────

async def cmd_status(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /status — list tracked projects."""
    if not _is_allowed(update.effective_user.id):
        await update.message.reply_text("⛔ Not authorized.")
        return
    if _runtime is None:
        await update.message.reply_text("Dispatch is not running.")
        return

    projects = await asyncio.to_thread(_runtime.store.list_all)
    if not projects:
        await update.message.reply_text("\U0001f4a4 No projects yet. Send me a goal to start one.")
        return

    lines = ["\U0001f4ca *Projects*", ""]
    for state in projects:
        lines.append(f"*{state.name}* (`{state.project_id}`)")
        lines.append(f"  Goal: {state.current_goal or 'n/a'}")
        lines.append(f"  {state.get_progress_summary()}")
    if reply_registry.is_waiting:
        lines += ["", "❓ I'm waiting for your reply to my last question."]
    if _runtime.scheduler.in_flight:
        lines += ["", "⚙️ A pass is running right now."]
    await update.message.reply_text("\n".join(lines), parse_mode="Markdown")


async def cmd_logs(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /logs — show recent log file entries."""
    if not _is_allowed(update.effective_user.id):
        await update.message.reply_text("⛔ Not authorized.")
        return

    lines = tail_log(20)
    if not lines:
        await update.message.reply_text("No log file found.")
        return
    text = "\n".join(lines)
    if len(text) > 3800:
        text = text[-3800:]
    await update.message.reply_text(f"\U0001f4dc Recent logs:\n```\n{text}\n```", parse_mode="Markdown")


async def cmd_now(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /now — run a pass immediately."""
    if not _is_allowed(update.effective_user.id):
        await update.message.reply_text("⛔ Not authorized.")
        return
    if _runtime is None:
        await update.message.reply_text("Dispatch is not running.")
        return

    if _runtime.scheduler.in_flight:
        await update.message.reply_text("⚙️ A pass is already running.")
        return
    _runtime.scheduler.trigger()
    await update.message.reply_text("\U0001f680 Starting a pass now.")


async def _set_status(update: Update, context: ContextTypes.DEFAULT_TYPE, status: ProjectStatus) -> None:
    if not _is_allowed(update.effective_user.id):
        await update.message.reply_text("⛔ Not authorized.")
        return
    if _runtime is None:
        await update.message.reply_text("Dispatch is not running.")
        return

    project_id = " ".join(context.args).strip() if context.args else ""
    if not project_id:
        verb = "pause" if status == ProjectStatus.PAUSED else "resume"
        await update.message.reply_text(f"Usage: /{verb} <project-id>")
        return

    try:
        state = await asyncio.to_thread(_runtime.store.load, project_id)
    except ProjectNotFound:
        await update.message.reply_text(f"⚠️ Unknown project: {project_id}")
        return

    applied = await asyncio.to_thread(
        _runtime.scheduler.submit_update, ProjectUpdate(project_id, status=status, reason="telegram"),
    )
    when = "" if applied else " (takes effect when the current pass finishes)"

    if status == ProjectStatus.ACTIVE:
        _runtime.scheduler.trigger()
        await update.message.reply_text(f"▶️ Resumed *{state.name}*{when}.", parse_mode="Markdown")
    else:
        await update.message.reply_text(f"⏸ Paused *{state.name}*{when}.", parse_mode="Markdown")


async def cmd_pause(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /pause <id>."""
    await _set_status(update, context, ProjectStatus.PAUSED)


async def cmd_resume(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Handle /resume <id>."""
    await _set_status(update, context, ProjectStatus.ACTIVE)


async def handle_message(update: Update, context: ContextTypes.DEFAULT_TYPE) -> None:
    """Answer the outstanding question, or route the text as direction / a new goal."""
    if not _is_allowed(update.effective_user.id):
        return
    text = (update.message.text or "").strip()
    if not text:
        return

    if reply_registry.deliver(text):
        await update.message.reply_text("Got it, on it.")
        return

    if _runtime is None:
        await update.message.reply_text("Dispatch is not running.")
        return
    ack = await asyncio.to_thread(_runtime.router.route, text)
    await update.message.reply_text(ack, parse_mode="Markdown")


# ── App factory ──────────────────────────────────────────────────────────

def create_telegram_app(runtime: Runtime | None = None) -> Optional[Application]:
    """Build and configure the Telegram Application.  Returns None if no token."""
    global _telegram_app, _runtime

    _runtime = runtime
    settings = get_settings()
    if not settings.telegram_bot_token:
        logger.info("Telegram bot token not set — skipping Telegram integration")
        return None

    app = Application.builder().token(settings.telegram_bot_token).build()

    app.add_handler(CommandHandler("status", cmd_status))
    app.add_handler(CommandHandler("logs",   cmd_logs))
    app.add_handler(CommandHandler("now",    cmd_now))
    app.add_handler(CommandHandler("pause",  cmd_pause))
    app.add_handler(CommandHandler("resume", cmd_resume))
    app.add_handler(MessageHandler(filters.TEXT & ~filters.COMMAND, handle_message))

    _telegram_app = app
    logger.info("Telegram bot configured — commands: /status /logs /now /pause /resume")
    return app


# ── Runner ───────────────────────────────────────────────────────────────

async def run_telegram_bot(runtime: Runtime | None = None) -> None:
    """Start the Telegram bot polling loop (runs until cancelled)."""
    global _bot_loop

    telegram_app = create_telegram_app(runtime)
    if telegram_app is None:
        return

    logger.info("Starting Telegram bot polling…")
    await telegram_app.initialize()
    await telegram_app.start()
    await telegram_app.updater.start_polling(drop_pending_updates=True)
    _bot_loop = asyncio.get_running_loop()

    try:
        while True:
            await asyncio.sleep(1)
    except asyncio.CancelledError:
        pass
    finally:
        _bot_loop = None
        await telegram_app.updater.stop()
        await telegram_app.stop()
        await telegram_app.shutdown()
