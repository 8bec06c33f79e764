"""Event bus for dispatch activity — decouples the core from the UI layer.

The scheduler, state machine and revision loop call ``emit(...)`` to publish
structured events.  The web API reads the bounded history; other listeners
(tests, future UIs) subscribe via ``subscribe()``.

Event categories:
  cycle           — a scheduler pass started / finished / was skipped
  status          — a project changed status
  decision        — the decision agent proposed a task
  execution       — the execution agent reported a result
  review          — the review agent returned a verdict
  escalation      — a human was asked for input
  task_completed  — a task was accepted and recorded
  iteration       — an iteration was preserved on its own branch
  error           — something went wrong
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from dispatch.core.logging import get_logger

logger = get_logger("core.events")


class EventCategory(str, Enum):
    CYCLE = "cycle"
    STATUS = "status"
    DECISION = "decision"
    EXECUTION = "execution"
    REVIEW = "review"
    ESCALATION = "escalation"
    TASK_COMPLETED = "task_completed"
    ITERATION = "iteration"
    ERROR = "error"


@dataclass
class DispatchEvent:
    """A single event emitted while processing projects."""
    category: EventCategory
    title: str
    project_id: str = ""
    detail: str = ""
    metadata: dict = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "category": self.category.value,
            "project_id": self.project_id,
            "title": self.title,
            "detail": self.detail,
            "metadata": self.metadata,
            "ts": self.timestamp,
        }


# ── Singleton event bus ──────────────────────────────────────────────────

_listeners: list[Callable[[DispatchEvent], Any]] = []
_history: deque[DispatchEvent] = deque(maxlen=1000)


def emit(event: DispatchEvent) -> None:
    """Emit an event synchronously. Safe to call from any thread."""
    _history.append(event)
    logger.debug("EVENT | %s | %s | %s", event.category.value, event.project_id or "-", event.title)

    for listener in list(_listeners):
        try:
            listener(event)
        except Exception as e:
            logger.warning("Event listener error: %s", e)


def subscribe(listener: Callable[[DispatchEvent], Any]) -> None:
    _listeners.append(listener)


def unsubscribe(listener: Callable[[DispatchEvent], Any]) -> None:
    if listener in _listeners:
        _listeners.remove(listener)


def get_history(limit: int = 200) -> list[dict]:
    """Return recent events as dicts."""
    items = list(_history)
    return [e.to_dict() for e in items[-limit:]]


def clear_history() -> None:
    _history.clear()


def clear_listeners() -> None:
    """Remove all listeners (useful for testing)."""
    _listeners.clear()


# ── Convenience emitters ─────────────────────────────────────────────────

def emit_cycle(title: str, **metadata) -> None:
    emit(DispatchEvent(category=EventCategory.CYCLE, title=title, metadata=metadata))


def emit_status(project_id: str, status: str, reason: str = "") -> None:
    emit(DispatchEvent(
        category=EventCategory.STATUS,
        project_id=project_id,
        title=f"{project_id} → {status}",
        detail=reason,
        metadata={"status": status},
    ))


def emit_decision(project_id: str, task: str, confidence: str, needs_human: bool) -> None:
    emit(DispatchEvent(
        category=EventCategory.DECISION,
        project_id=project_id,
        title=f"🧭 Next step: {task[:120]}",
        metadata={"task": task, "confidence": confidence, "needs_human": needs_human},
    ))


def emit_execution(project_id: str, status: str, summary: str, commit_hash: str | None = None) -> None:
    emit(DispatchEvent(
        category=EventCategory.EXECUTION,
        project_id=project_id,
        title=f"🛠 Execution {status}",
        detail=summary[:2000],
        metadata={"status": status, "commit_hash": commit_hash},
    ))


def emit_review(project_id: str, decision: str, summary: str, round_number: int) -> None:
    icon = {"approve": "✅", "revise": "🔄", "escalate": "🙋"}.get(decision, "❓")
    emit(DispatchEvent(
        category=EventCategory.REVIEW,
        project_id=project_id,
        title=f"{icon} Review: {decision}",
        detail=summary[:1500],
        metadata={"decision": decision, "round": round_number},
    ))


def emit_escalation(project_id: str, question: str) -> None:
    emit(DispatchEvent(
        category=EventCategory.ESCALATION,
        project_id=project_id,
        title="🚦 Human input requested",
        detail=question,
    ))


def emit_task_completed(project_id: str, task: str, commit_hash: str | None, revisions: int) -> None:
    emit(DispatchEvent(
        category=EventCategory.TASK_COMPLETED,
        project_id=project_id,
        title=f"📦 Completed: {task[:120]}",
        metadata={"commit_hash": commit_hash, "revisions": revisions},
    ))


def emit_iteration(project_id: str, branch: str, iteration: int) -> None:
    emit(DispatchEvent(
        category=EventCategory.ITERATION,
        project_id=project_id,
        title=f"🌿 Iteration {iteration} saved to {branch}",
        metadata={"branch": branch, "iteration": iteration},
    ))


def emit_error(project_id: str, error: str, phase: str = "") -> None:
    emit(DispatchEvent(
        category=EventCategory.ERROR,
        project_id=project_id,
        title=f"❌ Error{f' during {phase}' if phase else ''}",
        detail=error,
        metadata={"phase": phase},
    ))
