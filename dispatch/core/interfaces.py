"""Contracts the core consumes from its collaborators.

The state machine, revision loop and scheduler only talk to these protocols;
the concrete git, LLM, CLI, Telegram and JSON-file implementations are wired
together in ``dispatch.core.runtime``.
"""

from __future__ import annotations

from typing import Protocol

from dispatch.agents.schemas import (
    CommitInfo,
    Decision,
    ExecutionResult,
    GoalDefinition,
    ProposedTask,
    RepoSummary,
    Review,
)
from dispatch.core.state import ProjectState, ProjectStatus


class RepositoryInspector(Protocol):
    def summarize(self, path: str) -> RepoSummary: ...

    def diff(self, path: str, commit_hash: str) -> CommitInfo: ...


class VersionControl(Protocol):
    def head(self, path: str) -> str | None: ...

    def create_branch(self, path: str, name: str, commit_hash: str) -> str: ...

    def reset_hard(self, path: str, commit_hash: str) -> None: ...

    def init(self, path: str) -> None: ...


class DecisionMaker(Protocol):
    def decide(
        self, state: ProjectState, repo_summary: RepoSummary, direction: str | None = None
    ) -> Decision: ...

    def parse_goal(self, message: str) -> GoalDefinition: ...


class Executor(Protocol):
    def execute(self, task: ProposedTask, state: ProjectState, repo_path: str) -> ExecutionResult: ...

    def revise_execution(
        self, review: Review, original_task: str, state: ProjectState, repo_path: str
    ) -> ExecutionResult: ...


class Reviewer(Protocol):
    def review(
        self,
        state: ProjectState,
        task_description: str,
        commit_info: CommitInfo,
        history: list[dict],
    ) -> Review: ...


class MessagingChannel(Protocol):
    def notify(self, text: str) -> None: ...

    def ask_human(self, question: str, context: str = "") -> None: ...

    def wait_for_reply(self, timeout_seconds: float) -> str: ...


class ProjectStore(Protocol):
    def load(self, project_id: str) -> ProjectState: ...

    def save(self, state: ProjectState) -> None: ...

    def create(self, state: ProjectState) -> ProjectState: ...

    def exists(self, project_id: str) -> bool: ...

    def delete(self, project_id: str) -> None: ...

    def list_by_status(self, status: ProjectStatus) -> list[str]: ...

    def list_all(self) -> list[ProjectState]: ...
