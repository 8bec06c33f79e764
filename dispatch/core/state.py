"""Persisted project records and the transient per-session bookkeeping."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    return datetime.now(UTC)


class ProjectStatus(StrEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    WAITING_INPUT = "waiting_input"


class TaskRecord(BaseModel):
    """A task that went through execution and review and was accepted."""
    task: str
    completed_at: datetime = Field(default_factory=utcnow)
    commit_hash: str | None = None
    revisions: int = 0
    iteration: int | None = None  # only set for multi-iteration projects


class InProgressTask(BaseModel):
    task: str
    started_at: datetime = Field(default_factory=utcnow)
    assigned_to: str = "execution"


class Blocker(BaseModel):
    description: str
    added_at: datetime = Field(default_factory=utcnow)


def _dedupe(values: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        value = value.strip()
        if value and value not in seen:
            seen.add(value)
            result.append(value)
    return result


class ProjectContext(BaseModel):
    tech_stack: list[str] = Field(default_factory=list)
    preferences: list[str] = Field(default_factory=list)
    availability: str = "Business hours weekdays, limited weekends"

    @field_validator("tech_stack", "preferences")
    @classmethod
    def _as_set(cls, value: list[str]) -> list[str]:
        return _dedupe(value)


class ProjectState(BaseModel):
    """The complete persisted record of one tracked project."""

    project_id: str
    name: str
    repo_path: str
    current_goal: str = ""
    status: ProjectStatus = ProjectStatus.ACTIVE

    # ── Progress ──────────────────────────────────────────────────────
    completed: list[TaskRecord] = Field(default_factory=list)
    in_progress: InProgressTask | None = None
    blockers: list[Blocker] = Field(default_factory=list)

    context: ProjectContext = Field(default_factory=ProjectContext)

    # ── Session limits ────────────────────────────────────────────────
    # Minutes; 0 means a session runs a single iteration.
    time_budget: int = Field(default=0, ge=0)
    max_iterations: int = Field(default=1, ge=1)

    # ── Human steering ────────────────────────────────────────────────
    # Single-slot mailbox: filled by a human reply, cleared by the
    # decision step that consumes it.
    pending_direction: str | None = None

    last_checked: datetime = Field(default_factory=utcnow)
    last_activity: datetime = Field(default_factory=utcnow)

    @field_validator("project_id", "name", "repo_path")
    @classmethod
    def _required(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("must not be empty")
        return value.strip()

    def recent_tasks(self, count: int = 3) -> list[str]:
        return [record.task for record in self.completed[-count:]]

    def record_completion(self, record: TaskRecord) -> None:
        self.completed.append(record)
        self.in_progress = None
        self.last_activity = utcnow()

    def add_blocker(self, description: str) -> Blocker:
        blocker = Blocker(description=description)
        self.blockers.append(blocker)
        return blocker

    def get_progress_summary(self) -> str:
        current = self.in_progress.task if self.in_progress else "none"
        return (
            f"Status: {self.status.value} | "
            f"Completed: {len(self.completed)} tasks | "
            f"In progress: {current} | "
            f"Blockers: {len(self.blockers)}"
        )


@dataclass
class IterationBranch:
    """An iteration's result preserved on its own branch for comparison."""
    name: str
    summary: str
    commit_hash: str
