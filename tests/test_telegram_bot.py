"""Tests for the Telegram bot handlers and the messaging channel.

Handlers are exercised directly with minimal Update/Context mocks; no real
Telegram connection is made.
"""

from __future__ import annotations

import threading
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import make_state
from dispatch.core.errors import HumanReplyTimeout
from dispatch.core.reply_registry import ReplyRegistry
from dispatch.core.scheduler import ProjectUpdate
from dispatch.core.state import ProjectStatus
from dispatch.core.store import JsonProjectStore


# ── Fixtures ──────────────────────────────────────────────────────────────

def _make_update(user_id: int = 1, text: str = ""):
    """Build a minimal mock Update object."""
    update = MagicMock()
    update.effective_user.id = user_id
    update.message = AsyncMock()
    update.message.text = text
    return update


def _make_context(args: list | None = None):
    ctx = MagicMock()
    ctx.args = args or []
    return ctx


def _reply(update) -> str:
    return update.message.reply_text.call_args[0][0]


@pytest.fixture
def runtime(settings):
    store = JsonProjectStore(settings.data_dir)
    router = MagicMock()
    router.route.return_value = "Noted. I'll take that into account."
    return SimpleNamespace(store=store, scheduler=MagicMock(in_flight=False), router=router)


@pytest.fixture
def bot(runtime):
    from dispatch.telegram import bot
    with patch.object(bot, "_runtime", runtime), patch.object(bot, "reply_registry", ReplyRegistry()):
        yield bot


# ── Authorisation ─────────────────────────────────────────────────────────

class TestAuthorisation:
    @pytest.mark.asyncio
    async def test_commands_blocked_for_unauthorized(self, bot, settings):
        settings.telegram_allowed_user_ids = "42"
        update = _make_update(user_id=999)
        await bot.cmd_now(update, _make_context())
        assert "Not authorized" in _reply(update)
        bot._runtime.scheduler.trigger.assert_not_called()

    @pytest.mark.asyncio
    async def test_messages_from_strangers_are_ignored(self, bot, settings):
        settings.telegram_allowed_user_ids = "42"
        update = _make_update(user_id=999, text="Build me a blog")
        await bot.handle_message(update, _make_context())
        update.message.reply_text.assert_not_called()
        bot._runtime.router.route.assert_not_called()

    def test_empty_allow_list_allows_everyone(self, bot):
        assert bot._is_allowed(12345)


# ── Plain messages ────────────────────────────────────────────────────────

class TestHandleMessage:
    @pytest.mark.asyncio
    async def test_answers_outstanding_question(self, bot):
        _, future = bot.reply_registry.open_wait()
        update = _make_update(text="  Use PostgreSQL  ")
        await bot.handle_message(update, _make_context())

        assert future.result(timeout=1) == "Use PostgreSQL"
        assert _reply(update) == "Got it, on it."
        bot._runtime.router.route.assert_not_called()

    @pytest.mark.asyncio
    async def test_routes_unsolicited_text(self, bot):
        update = _make_update(text="Focus on tests")
        await bot.handle_message(update, _make_context())

        bot._runtime.router.route.assert_called_once_with("Focus on tests")
        assert _reply(update).startswith("Noted.")

    @pytest.mark.asyncio
    async def test_not_running(self, bot):
        with patch.object(bot, "_runtime", None):
            update = _make_update(text="hello")
            await bot.handle_message(update, _make_context())
        assert _reply(update) == "Dispatch is not running."


# ── Commands ──────────────────────────────────────────────────────────────

class TestCommands:
    @pytest.mark.asyncio
    async def test_now_triggers_pass(self, bot):
        update = _make_update()
        await bot.cmd_now(update, _make_context())
        bot._runtime.scheduler.trigger.assert_called_once()
        assert "Starting a pass" in _reply(update)

    @pytest.mark.asyncio
    async def test_now_when_busy(self, bot):
        bot._runtime.scheduler.in_flight = True
        update = _make_update()
        await bot.cmd_now(update, _make_context())
        bot._runtime.scheduler.trigger.assert_not_called()
        assert "already running" in _reply(update)

    @pytest.mark.asyncio
    async def test_status_lists_projects(self, bot, runtime):
        runtime.store.create(make_state(project_id="csv", name="CSV Importer"))
        update = _make_update()
        await bot.cmd_status(update, _make_context())
        text = _reply(update)
        assert "*CSV Importer* (`csv`)" in text
        assert "Goal: Build the CSV importer" in text

    @pytest.mark.asyncio
    async def test_status_without_projects(self, bot):
        update = _make_update()
        await bot.cmd_status(update, _make_context())
        assert "No projects yet" in _reply(update)

    @pytest.mark.asyncio
    async def test_pause_and_resume(self, bot, runtime):
        runtime.store.create(make_state(project_id="csv"))

        runtime.scheduler.submit_update.return_value = True

        update = _make_update()
        await bot.cmd_pause(update, _make_context(["csv"]))
        runtime.scheduler.submit_update.assert_called_once_with(
            ProjectUpdate("csv", status=ProjectStatus.PAUSED, reason="telegram"),
        )
        assert _reply(update) == "⏸ Paused *Demo*."
        runtime.scheduler.trigger.assert_not_called()

        update = _make_update()
        await bot.cmd_resume(update, _make_context(["csv"]))
        assert runtime.scheduler.submit_update.call_args[0][0].status == ProjectStatus.ACTIVE
        runtime.scheduler.trigger.assert_called_once()

    @pytest.mark.asyncio
    async def test_pause_during_pass_is_deferred(self, bot, runtime):
        runtime.store.create(make_state(project_id="csv"))
        runtime.scheduler.submit_update.return_value = False

        update = _make_update()
        await bot.cmd_pause(update, _make_context(["csv"]))
        assert "when the current pass finishes" in _reply(update)
        assert runtime.store.load("csv").status == ProjectStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_pause_unknown_project(self, bot):
        update = _make_update()
        await bot.cmd_pause(update, _make_context(["ghost"]))
        assert "Unknown project: ghost" in _reply(update)

    @pytest.mark.asyncio
    async def test_pause_requires_id(self, bot):
        update = _make_update()
        await bot.cmd_pause(update, _make_context())
        assert _reply(update) == "Usage: /pause <project-id>"

    @pytest.mark.asyncio
    async def test_logs_without_file(self, bot):
        update = _make_update()
        await bot.cmd_logs(update, _make_context())
        assert _reply(update) == "No log file found."


# ── Messaging channel ─────────────────────────────────────────────────────

class TestTelegramChannel:
    def test_notify_is_skipped_when_bot_not_running(self):
        from dispatch.telegram import bot
        with patch.object(bot, "_telegram_app", None):
            bot.TelegramChannel(ReplyRegistry()).notify("hello")

    def test_wait_for_reply_returns_delivered_text(self):
        from dispatch.telegram import bot
        replies = ReplyRegistry()
        channel = bot.TelegramChannel(replies)

        def answer():
            while not replies.is_waiting:
                threading.Event().wait(0.01)
            replies.deliver("ship it")

        thread = threading.Thread(target=answer)
        thread.start()
        assert channel.wait_for_reply(5) == "ship it"
        thread.join()

    def test_wait_for_reply_times_out(self):
        from dispatch.telegram import bot
        replies = ReplyRegistry()
        with pytest.raises(HumanReplyTimeout):
            bot.TelegramChannel(replies).wait_for_reply(0.05)
        assert not replies.is_waiting

    def test_create_app_without_token(self):
        from dispatch.telegram import bot
        assert bot.create_telegram_app() is None
