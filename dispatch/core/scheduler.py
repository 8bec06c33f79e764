"""Cycle scheduler — runs processing passes on an interval, one at a time.

A pass holds a single-slot token for its whole duration.  A second pass
requested while the token is held is a no-op: it logs and returns ``False``
instead of queueing or blocking.

Project records are written by the pass that holds the token.  Changes that
arrive from outside (human replies, /pause, /resume) go through
``submit_update``: applied at once when no pass runs, otherwise queued and
applied when the running pass finishes.

The core is synchronous; ``run_forever`` executes each pass in a worker thread
via ``asyncio.to_thread`` so the Telegram bot and the web API keep serving
while a pass blocks on an agent or on a human reply.
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from dispatch.core.config import Settings, get_settings
from dispatch.core.errors import ProjectNotFound
from dispatch.core.escalation import Escalator, format_goal_request
from dispatch.core.events import emit_cycle, emit_status
from dispatch.core.interfaces import DecisionMaker, MessagingChannel, ProjectStore, VersionControl
from dispatch.core.logging import get_logger
from dispatch.core.state import ProjectContext, ProjectState, ProjectStatus, utcnow
from dispatch.core.state_machine import ProjectProcessor

logger = get_logger("core.scheduler")


@dataclass
class ProjectUpdate:
    """A change to a project record requested from outside the pass (human reply, /pause, /resume)."""
    project_id: str
    status: ProjectStatus | None = None
    direction: str | None = None
    reason: str = ""


class CycleScheduler:
    def __init__(
        self,
        store: ProjectStore,
        processor: ProjectProcessor,
        decision_maker: DecisionMaker,
        vcs: VersionControl,
        channel: MessagingChannel,
        settings: Settings | None = None,
    ) -> None:
        self.store = store
        self.processor = processor
        self.decision_maker = decision_maker
        self.vcs = vcs
        self.channel = channel
        self.settings = settings or get_settings()
        self.escalator = Escalator(channel, store)

        self._token = threading.Lock()
        self._requests_lock = threading.Lock()
        self._onboarding_requests: deque[str] = deque()
        self._updates: deque[ProjectUpdate] = deque()

        self._loop: asyncio.AbstractEventLoop | None = None
        self._wake: asyncio.Event | None = None
        self._stopping = False

    # ── Public API ────────────────────────────────────────────────────

    @property
    def in_flight(self) -> bool:
        return self._token.locked()

    def request_onboarding(self, text: str = "") -> None:
        """Queue an onboarding exchange for the next pass (*text* is the goal, if already known)."""
        with self._requests_lock:
            self._onboarding_requests.append(text)
        logger.info("Onboarding request queued%s", f": {text[:80]}" if text else "")

    @contextmanager
    def exclusive(self) -> Iterator[bool]:
        """Hold the pass token if it is free. Yields whether it was acquired.

        Anything that writes a project record outside a pass does so inside
        this block, so it never races the pass's own copy of the record.
        """
        acquired = self._token.acquire(blocking=False)
        try:
            yield acquired
        finally:
            if acquired:
                self._token.release()

    def submit_update(self, update: ProjectUpdate) -> bool:
        """Apply *update* now, or queue it for the end of the running pass.

        Returns ``True`` if it was applied immediately.
        """
        with self.exclusive() as free:
            if free:
                self._apply_update(update)
                return True

        with self._requests_lock:
            self._updates.append(update)
        logger.info("Pass in flight, queued update for %s", update.project_id)

        # the pass may have finished between the two checks
        with self.exclusive() as free:
            if free:
                self._drain_updates()
        return False

    def run_pass(self) -> bool:
        """Run one processing pass. Returns ``False`` if another pass holds the token."""
        if not self._token.acquire(blocking=False):
            logger.info("A pass is already in flight, skipping")
            emit_cycle("Pass skipped: already running")
            return False
        try:
            self._drain_updates()
            self._run_pass()
        finally:
            try:
                self._drain_updates()
            finally:
                self._token.release()
        return True

    def trigger(self) -> None:
        """Schedule an immediate pass. Safe to call from any thread."""
        if self._loop is not None and self._wake is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._wake.set)
            return
        threading.Thread(target=self.run_pass, name="dispatch-pass", daemon=True).start()

    async def run_forever(self, interval: float | None = None) -> None:
        interval = interval or self.settings.check_interval_seconds
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self._stopping = False
        logger.info("Scheduler started (interval=%ss)", interval)

        try:
            while not self._stopping:
                await asyncio.to_thread(self.run_pass)
                if self._stopping:
                    break
                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
                self._wake.clear()
        finally:
            self._loop = None
            self._wake = None
            logger.info("Scheduler stopped")

    def stop(self) -> None:
        """Stop after the current pass. Safe to call from any thread."""
        self._stopping = True
        if self._loop is not None and self._wake is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._wake.set)

    # ── Pass ──────────────────────────────────────────────────────────

    def _pop_onboarding_request(self) -> str | None:
        with self._requests_lock:
            return self._onboarding_requests.popleft() if self._onboarding_requests else None

    def _run_pass(self) -> None:
        logger.info("=== Starting dispatch pass ===")
        emit_cycle("Pass started")

        try:
            active = self.store.list_by_status(ProjectStatus.ACTIVE)
            waiting = self.store.list_by_status(ProjectStatus.WAITING_INPUT)
            completed = self.store.list_by_status(ProjectStatus.COMPLETED)
        except Exception as exc:
            logger.exception("Failed to load projects")
            self.escalator.report_error(exc, phase="load_projects")
            emit_cycle("Pass aborted", reason=str(exc))
            return

        processed: list[str] = []
        request = self._pop_onboarding_request()
        if request is not None or not (active or waiting or completed):
            try:
                new_id = self.onboard(request or "")
            except Exception as exc:
                logger.exception("Onboarding failed")
                self.escalator.report_error(exc, phase="onboarding")
            else:
                self._process_safely(new_id)
                processed.append(new_id)

        for project_id in completed + active:
            if project_id in processed:
                continue
            self._process_safely(project_id)
            processed.append(project_id)

        logger.info("=== Dispatch pass complete (%d project(s)) ===", len(processed))
        emit_cycle("Pass finished", projects=processed)

    def _process_safely(self, project_id: str) -> None:
        try:
            self.processor.process(project_id)
        except Exception as exc:
            logger.exception("Error processing project %s", project_id)
            self.escalator.report_error(exc, project_id, "process_project")

    # ── Project updates ───────────────────────────────────────────────

    def _drain_updates(self) -> None:
        """Apply queued updates. Caller holds the pass token."""
        while True:
            with self._requests_lock:
                if not self._updates:
                    return
                update = self._updates.popleft()
            try:
                self._apply_update(update)
            except Exception as exc:
                logger.exception("Failed to apply update for %s", update.project_id)
                self.escalator.report_error(exc, update.project_id, "apply_update")

    def _apply_update(self, update: ProjectUpdate) -> None:
        try:
            state = self.store.load(update.project_id)
        except ProjectNotFound:
            logger.warning("Dropping update for unknown project %s", update.project_id)
            return

        previous = state.status
        if update.status is not None:
            state.status = update.status
            if update.status == ProjectStatus.PAUSED:
                state.in_progress = None
        if update.direction is not None:
            state.pending_direction = update.direction
        state.last_activity = utcnow()
        self.store.save(state)

        if state.status != previous:
            emit_status(state.project_id, state.status.value, reason=update.reason)
        logger.info("Applied update to %s (status=%s)", state.project_id, state.status.value)

    # ── Onboarding ────────────────────────────────────────────────────

    def _unique_id(self, project_id: str) -> str:
        candidate, suffix = project_id, 2
        while self.store.exists(candidate):
            candidate = f"{project_id}-{suffix}"
            suffix += 1
        return candidate

    def onboard(self, text: str = "") -> str:
        """Turn a free-text goal into a new active project. Returns its id.

        Without *text*, the human is asked for a goal first and the call blocks
        until they reply (``HumanReplyTimeout`` after the configured wait).
        """
        if not text.strip():
            self.channel.notify(format_goal_request())
            text = self.channel.wait_for_reply(self.settings.human_reply_timeout_seconds)

        goal = self.decision_maker.parse_goal(text)
        project_id = self._unique_id(goal.project_id)
        repo_name = goal.repo_name if project_id == goal.project_id else project_id
        repo_path = Path(self.settings.workspace_dir) / repo_name
        self.vcs.init(str(repo_path))

        state = ProjectState(
            project_id=project_id,
            name=goal.name,
            repo_path=str(repo_path),
            current_goal=goal.current_goal,
            context=ProjectContext(tech_stack=goal.tech_stack, preferences=goal.preferences),
        )
        self.store.create(state)
        emit_status(project_id, ProjectStatus.ACTIVE.value, reason="onboarded")
        logger.info("Onboarded %s at %s", project_id, repo_path)

        self.channel.notify(
            f"🚀 *New project: {state.name}*\n\n"
            f"*Goal:* {state.current_goal}\n"
            f"*Repo:* `{repo_path}`\n"
            f"*Tech stack:* {', '.join(state.context.tech_stack) or 'to be decided'}\n\n"
            "Starting work now."
        )
        return project_id
