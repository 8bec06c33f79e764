"""Shared fixtures: isolated settings and in-memory fakes for the core collaborators."""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from dispatch.agents.schemas import (
    CommitInfo,
    Decision,
    ExecutionResult,
    GoalDefinition,
    ProposedTask,
    RepoSummary,
    Review,
)
from dispatch.core import config as config_module
from dispatch.core import events
from dispatch.core.config import Settings
from dispatch.core.errors import HumanReplyTimeout, ProjectNotFound
from dispatch.core.state import ProjectState, ProjectStatus


@pytest.fixture(autouse=True)
def settings(tmp_path, monkeypatch):
    """A Settings instance pointing at tmp_path, installed as the process singleton."""
    test_settings = Settings(
        _env_file=None,
        data_dir=str(tmp_path / "data"),
        workspace_dir=str(tmp_path / "workspace"),
        log_file=str(tmp_path / "logs" / "dispatch.log"),
        agent_backoff_seconds=0,
        telegram_bot_token="",
        telegram_allowed_user_ids="",
        human_reply_timeout_seconds=5,
    )
    monkeypatch.setattr(config_module, "_settings", test_settings)
    events.clear_history()
    events.clear_listeners()
    yield test_settings
    events.clear_history()
    events.clear_listeners()


# ── Builders ──────────────────────────────────────────────────────────────

def make_state(**overrides) -> ProjectState:
    data = {
        "project_id": "demo",
        "name": "Demo",
        "repo_path": "/tmp/demo",
        "current_goal": "Build the CSV importer",
    }
    data.update(overrides)
    return ProjectState(**data)


def make_decision(
    task: str = "Add the CSV parser",
    confidence: str = "high",
    needs_human: bool = False,
    question: str | None = None,
    is_prerequisite: bool = False,
) -> Decision:
    return Decision(
        next_step=ProposedTask(task=task, reasoning="it is next", details="", is_prerequisite=is_prerequisite),
        confidence=confidence,
        needs_human=needs_human,
        question=question,
    )


def completed(commit: str | None = "c1", summary: str = "Did the work", files: list[str] | None = None) -> ExecutionResult:
    return ExecutionResult(status="completed", summary=summary, commit_hash=commit, files_changed=files or ["a.py"])


def review(decision: str, feedback: str = "", question: str | None = None) -> Review:
    return Review(decision=decision, summary=f"review: {decision}", feedback=feedback, question=question)


# ── Fakes ─────────────────────────────────────────────────────────────────

class FakeStore:
    """In-memory ProjectStore that keeps a copy of every save."""

    def __init__(self, *states: ProjectState) -> None:
        self.projects: dict[str, ProjectState] = {}
        self.saves: list[ProjectState] = []
        for state in states:
            self.projects[state.project_id] = state.model_copy(deep=True)
        self.fail_listing = False

    def load(self, project_id: str) -> ProjectState:
        if project_id not in self.projects:
            raise ProjectNotFound(project_id)
        return self.projects[project_id].model_copy(deep=True)

    def save(self, state: ProjectState) -> None:
        self.projects[state.project_id] = state.model_copy(deep=True)
        self.saves.append(state.model_copy(deep=True))

    def create(self, state: ProjectState) -> ProjectState:
        if state.project_id in self.projects:
            raise FileExistsError(state.project_id)
        self.save(state)
        return state

    def exists(self, project_id: str) -> bool:
        return project_id in self.projects

    def delete(self, project_id: str) -> None:
        if project_id not in self.projects:
            raise ProjectNotFound(project_id)
        del self.projects[project_id]

    def list_all(self) -> list[ProjectState]:
        return [state.model_copy(deep=True) for state in self.projects.values()]

    def list_by_status(self, status: ProjectStatus) -> list[str]:
        if self.fail_listing:
            raise OSError("disk unavailable")
        return [pid for pid, state in self.projects.items() if state.status == status]


class FakeInspector:
    def __init__(self) -> None:
        self.diffs: list[str] = []

    def summarize(self, path: str) -> RepoSummary:
        return RepoSummary(branch="main", recent_commits=["init"], summary='On branch "main". Working tree is clean.')

    def diff(self, path: str, commit_hash: str) -> CommitInfo:
        self.diffs.append(commit_hash)
        return CommitInfo(commit_hash=commit_hash, diff=f"diff of {commit_hash}", files_changed=["a.py"])


class FakeVersionControl:
    def __init__(self, head: str | None = "base0") -> None:
        self.current = head
        self.branches: list[tuple[str, str]] = []
        self.resets: list[str] = []
        self.inits: list[str] = []

    def head(self, path: str) -> str | None:
        return self.current

    def create_branch(self, path: str, name: str, commit_hash: str) -> str:
        self.branches.append((name, commit_hash))
        return name

    def reset_hard(self, path: str, commit_hash: str) -> None:
        self.resets.append(commit_hash)
        self.current = commit_hash

    def init(self, path: str) -> None:
        self.inits.append(path)


class ScriptedDecisionMaker:
    """Returns decisions in order, repeating the last one once the script runs out."""

    def __init__(self, *decisions: Decision | Exception, goal: GoalDefinition | None = None) -> None:
        self.script = list(decisions) or [make_decision()]
        self.calls: list[dict] = []
        self.goal = goal
        self.goal_messages: list[str] = []

    def decide(self, state: ProjectState, repo_summary: RepoSummary, direction: str | None = None) -> Decision:
        self.calls.append({"state": state.model_copy(deep=True), "repo": repo_summary, "direction": direction})
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item

    def parse_goal(self, message: str) -> GoalDefinition:
        self.goal_messages.append(message)
        if self.goal is None:
            return GoalDefinition(project_id="new-project", current_goal=message)
        return self.goal


class ScriptedExecutor:
    def __init__(self, results: list | None = None, revisions: list | None = None) -> None:
        self.results = list(results or [])
        self.revisions = list(revisions or [])
        self.executed: list[ProposedTask] = []
        self.revised: list[Review] = []

    @staticmethod
    def _next(queue: list, default):
        item = queue.pop(0) if queue else default
        if isinstance(item, Exception):
            raise item
        return item

    def execute(self, task: ProposedTask, state: ProjectState, repo_path: str) -> ExecutionResult:
        self.executed.append(task)
        return self._next(self.results, completed(f"c{len(self.executed)}"))

    def revise_execution(self, review: Review, original_task: str, state: ProjectState, repo_path: str) -> ExecutionResult:
        self.revised.append(review)
        return self._next(self.revisions, completed(f"r{len(self.revised)}"))


class ScriptedReviewer:
    def __init__(self, *reviews: Review | Exception) -> None:
        self.script = list(reviews) or [review("approve")]
        self.histories: list[list[dict]] = []

    def review(self, state, task_description, commit_info, history) -> Review:
        self.histories.append([dict(entry) for entry in history])
        item = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(item, Exception):
            raise item
        return item


@dataclass
class RecordingChannel:
    replies: list[str] = field(default_factory=list)
    notifications: list[str] = field(default_factory=list)
    questions: list[tuple[str, str]] = field(default_factory=list)
    waits: list[float] = field(default_factory=list)

    def notify(self, text: str) -> None:
        self.notifications.append(text)

    def ask_human(self, question: str, context: str = "") -> None:
        self.questions.append((question, context))

    def wait_for_reply(self, timeout_seconds: float) -> str:
        self.waits.append(timeout_seconds)
        if not self.replies:
            raise HumanReplyTimeout(timeout_seconds)
        return self.replies.pop(0)


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()
