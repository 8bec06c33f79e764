"""Shared reply registry — pairs a blocking human-reply wait with the channel that delivers it.

The core runs in a worker thread and blocks on a ``concurrent.futures.Future``
while the Telegram handler (on the event loop thread) delivers the text.

Usage
-----
::

    # the messaging channel opens a wait and blocks on it:
    wait_id, future = registry.open_wait()
    text = future.result(timeout)

    # the Telegram message handler resolves it:
    registry.deliver("Build the CSV importer first")
"""

from __future__ import annotations

import threading
import uuid
from concurrent.futures import Future

from dispatch.core.errors import WaitAlreadyPending
from dispatch.core.logging import get_logger

logger = get_logger("core.reply_registry")


class ReplyRegistry:
    """Thread-safe holder of the single outstanding human-reply wait.

    At most one wait may be open at a time: the core processes projects one
    after another, so a second concurrent wait means two flows are asking the
    human at once.  ``open_wait`` refuses it instead of silently replacing the
    first future.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._wait_id: str | None = None
        self._future: Future[str] | None = None

    # ── Write side (messaging channel, worker thread) ─────────────────

    def open_wait(self) -> tuple[str, Future[str]]:
        """Register a new wait and return its id and future.

        Raises:
            WaitAlreadyPending: if another wait has not been resolved or cancelled.
        """
        with self._lock:
            if self._future is not None and not self._future.done():
                raise WaitAlreadyPending(f"Reply wait {self._wait_id} is still outstanding")
            wait_id = uuid.uuid4().hex[:8]
            future: Future[str] = Future()
            self._wait_id = wait_id
            self._future = future
        logger.info("Reply wait opened — %s", wait_id)
        return wait_id, future

    def cancel(self, wait_id: str) -> bool:
        """Drop the wait *wait_id* if it is still the current one."""
        with self._lock:
            if self._wait_id != wait_id or self._future is None:
                return False
            future = self._future
            self._wait_id = None
            self._future = None
        future.cancel()
        logger.info("Reply wait cancelled — %s", wait_id)
        return True

    # ── Read side ─────────────────────────────────────────────────────

    @property
    def is_waiting(self) -> bool:
        with self._lock:
            return self._future is not None and not self._future.done()

    @property
    def wait_id(self) -> str | None:
        with self._lock:
            return self._wait_id

    # ── Resolution (Telegram handler, event loop thread) ──────────────

    def deliver(self, text: str) -> bool:
        """Resolve the outstanding wait with *text*.

        Returns:
            ``True`` if a wait was resolved, ``False`` if nothing was waiting
            (the caller should then route the text as an unsolicited reply).
        """
        with self._lock:
            future = self._future
            wait_id = self._wait_id
            if future is None or future.done():
                return False
            self._future = None
            self._wait_id = None

        if not future.set_running_or_notify_cancel():
            return False
        future.set_result(text)
        logger.info("Reply delivered to wait %s", wait_id)
        return True


# Module-level singleton shared by the Telegram channel and bot handlers
registry = ReplyRegistry()
