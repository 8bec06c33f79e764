"""Review/revision negotiation for a single committed task.

The loop is bounded by ``review_max_rounds``.  It always ends with either an
approved outcome (the caller records the task) or an escalation that has
already moved the project to ``waiting_input``.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from dispatch.agents.schemas import ExecutionResult, Review
from dispatch.core.config import Settings, get_settings
from dispatch.core.errors import SafetyCapExceeded, TransientAgentError
from dispatch.core.escalation import Escalator, format_question_context, format_revision_notice
from dispatch.core.events import emit_execution, emit_review
from dispatch.core.interfaces import (
    Executor,
    MessagingChannel,
    ProjectStore,
    RepositoryInspector,
    Reviewer,
)
from dispatch.core.logging import get_logger
from dispatch.core.state import ProjectState

logger = get_logger("core.revision_loop")


@dataclass
class RevisionOutcome:
    approved: bool
    commit_hash: str | None = None
    summary: str = ""
    files_changed: list[str] = field(default_factory=list)
    revisions: int = 0

    @classmethod
    def escalated(cls) -> RevisionOutcome:
        return cls(approved=False)


class RevisionLoop:
    def __init__(
        self,
        inspector: RepositoryInspector,
        reviewer: Reviewer,
        executor: Executor,
        channel: MessagingChannel,
        store: ProjectStore,
        settings: Settings | None = None,
    ) -> None:
        self.inspector = inspector
        self.reviewer = reviewer
        self.executor = executor
        self.channel = channel
        self.escalator = Escalator(channel, store)
        settings = settings or get_settings()
        self.max_rounds = settings.review_max_rounds
        self.failure_policy = settings.review_failure_policy

    def _review(self, state: ProjectState, task: str, commit_hash: str, history: list[dict]) -> Review | None:
        """Ask the reviewer; on persistent failure apply the configured policy.

        Returns ``None`` when the policy escalated to the human.
        """
        commit_info = self.inspector.diff(state.repo_path, commit_hash)
        try:
            return self.reviewer.review(state, task, commit_info, history)
        except TransientAgentError as exc:
            if self.failure_policy == "escalate":
                self.escalator.escalate(
                    state,
                    f"The review agent is unavailable ({exc.last_error}). "
                    f"Should I accept commit {commit_hash[:7]} for \"{task}\" without review?",
                )
                return None
            logger.warning("Review of %s failed, auto-approving: %s", state.project_id, exc)
            return Review(decision="approve", summary="Review failed, auto-approved")

    def run(self, state: ProjectState, task: str, execution: ExecutionResult) -> RevisionOutcome:
        history: list[dict] = []
        try:
            return self._negotiate(state, task, execution, history)
        except SafetyCapExceeded as exc:
            logger.warning("%s: %s", state.project_id, exc)
            self.escalator.escalate(
                state,
                f"\"{task}\" went through {exc.rounds} revision rounds without approval. "
                "Should I accept the current state, or do you want to give direction?",
                self._history_context(state, history, exc.last_result),
            )
            return RevisionOutcome.escalated()

    def _negotiate(
        self, state: ProjectState, task: str, execution: ExecutionResult, history: list[dict]
    ) -> RevisionOutcome:
        """Review rounds until approval or escalation. Raises ``SafetyCapExceeded`` at the cap."""
        current = execution
        rounds = 0

        while rounds < self.max_rounds:
            review = self._review(state, task, current.commit_hash, history)
            if review is None:
                return RevisionOutcome.escalated()
            emit_review(state.project_id, review.decision, review.summary, rounds + 1)

            if review.decision == "approve":
                logger.info("%s approved after %d revision round(s)", state.project_id, rounds)
                return RevisionOutcome(
                    approved=True,
                    commit_hash=current.commit_hash,
                    summary=current.summary,
                    files_changed=list(current.files_changed),
                    revisions=rounds,
                )

            if review.decision == "escalate":
                question = review.question or f"The reviewer wants your call on: {task}"
                context = format_question_context(state, execution=current)
                if review.summary:
                    context += f"\n*Review:* {review.summary}"
                self.escalator.escalate(state, question, context)
                return RevisionOutcome.escalated()

            rounds += 1
            history.append({
                "round": rounds,
                "feedback": review.feedback or review.summary,
                "revisions": [item.model_dump() for item in review.revisions],
            })
            logger.info("%s revision round %d/%d", state.project_id, rounds, self.max_rounds)
            self.channel.notify(format_revision_notice(state, rounds, review))

            try:
                current = self.executor.revise_execution(review, task, state, state.repo_path)
            except TransientAgentError as exc:
                self.escalator.escalate(
                    state,
                    f"The execution agent failed while revising \"{task}\": {exc.last_error}. How should I proceed?",
                    self._history_context(state, history),
                )
                return RevisionOutcome.escalated()
            emit_execution(state.project_id, current.status, current.summary, current.commit_hash)

            if current.status != "completed" or not current.commit_hash:
                questions = "; ".join(current.questions)
                self.escalator.escalate(
                    state,
                    questions or f"Revision {rounds} of \"{task}\" did not produce a commit ({current.status}). "
                    "How should I proceed?",
                    self._history_context(state, history, current),
                )
                return RevisionOutcome.escalated()

        raise SafetyCapExceeded(rounds, current)

    @staticmethod
    def _history_context(
        state: ProjectState, history: list[dict], execution: ExecutionResult | None = None
    ) -> str:
        lines = [format_question_context(state, execution=execution)]
        for entry in history:
            lines.append(f"Round {entry['round']}: {entry['feedback'] or '(no feedback)'}")
        if execution is not None and execution.issues:
            lines.append(f"*Issues:* {'; '.join(execution.issues)}")
        return "\n".join(lines)
