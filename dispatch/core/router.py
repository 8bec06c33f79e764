"""Routes human messages that do not answer an outstanding reply wait."""

from __future__ import annotations

from typing import Protocol

from dispatch.core.interfaces import ProjectStore
from dispatch.core.logging import get_logger
from dispatch.core.scheduler import ProjectUpdate
from dispatch.core.state import ProjectState, ProjectStatus

logger = get_logger("core.router")


class PassTrigger(Protocol):
    def request_onboarding(self, text: str = "") -> None: ...

    def submit_update(self, update: ProjectUpdate) -> bool: ...

    def trigger(self) -> None: ...


class HumanReplyRouter:
    """Priority order: resume a waiting project, steer an active one, else onboard.

    The router only reads records; every write goes through the scheduler so
    it cannot clobber, or be clobbered by, a pass in flight.
    """

    def __init__(self, store: ProjectStore, scheduler: PassTrigger) -> None:
        self.store = store
        self.scheduler = scheduler

    def _most_recent(self, status: ProjectStatus) -> ProjectState | None:
        candidates = [state for state in self.store.list_all() if state.status == status]
        if not candidates:
            return None
        return max(candidates, key=lambda state: state.last_activity)

    def route(self, text: str) -> str:
        text = text.strip()

        waiting = self._most_recent(ProjectStatus.WAITING_INPUT)
        if waiting is not None:
            self.scheduler.submit_update(ProjectUpdate(
                waiting.project_id, status=ProjectStatus.ACTIVE, direction=text, reason="human replied",
            ))
            logger.info("Resuming %s with human direction", waiting.project_id)
            self.scheduler.trigger()
            return f"Got it. Resuming *{waiting.name}* with your direction."

        active = self._most_recent(ProjectStatus.ACTIVE)
        if active is not None:
            self.scheduler.submit_update(ProjectUpdate(active.project_id, direction=text))
            logger.info("Attached direction to %s", active.project_id)
            self.scheduler.trigger()
            return f"Noted. I'll factor that into the next step for *{active.name}*."

        self.scheduler.request_onboarding(text)
        self.scheduler.trigger()
        logger.info("No active project, queued onboarding")
        return "Starting a new project from that. I'll check in shortly."
