"""Per-project processing: one session of decide → execute → review iterations.

Status edges the processor can take:
  active → waiting_input   (escalation)
  active → active          (iteration continues)
  completed → active       (human supplied the next goal)

``waiting_input → active`` belongs to the human-reply router; paused and
waiting projects are skipped here.
"""

from __future__ import annotations

import time
from enum import StrEnum
from typing import Callable

from dispatch.agents.schemas import Decision, ProposedTask
from dispatch.core.config import Settings, get_settings
from dispatch.core.errors import ExecutionFailure
from dispatch.core.escalation import (
    Escalator,
    format_next_goal_request,
    format_progress,
    format_question_context,
    format_session_summary,
)
from dispatch.core.events import (
    emit_decision,
    emit_execution,
    emit_iteration,
    emit_status,
    emit_task_completed,
)
from dispatch.core.interfaces import (
    DecisionMaker,
    Executor,
    MessagingChannel,
    ProjectStore,
    RepositoryInspector,
    Reviewer,
    VersionControl,
)
from dispatch.core.logging import get_logger
from dispatch.core.revision_loop import RevisionLoop, RevisionOutcome
from dispatch.core.state import (
    InProgressTask,
    IterationBranch,
    ProjectState,
    ProjectStatus,
    TaskRecord,
    utcnow,
)

logger = get_logger("core.state_machine")


class IterationResult(StrEnum):
    COUNTED = "counted"
    PREREQUISITE = "prerequisite"
    STOP = "stop"


def build_iteration_note(branches: list[IterationBranch]) -> str:
    lines = [f"- {branch.name}: {branch.summary}" for branch in branches]
    return (
        "Earlier iterations of this session, each preserved on its own branch:\n"
        + "\n".join(lines)
        + "\n\nPropose an approach that is structurally different from every earlier iteration. "
        "Do not repeat or refine them."
    )


class ProjectProcessor:
    """Drives one project through a processing session.

    All collaborators are injected; the processor persists every state
    mutation through the store before moving on to the next step.
    """

    def __init__(
        self,
        store: ProjectStore,
        inspector: RepositoryInspector,
        vcs: VersionControl,
        decision_maker: DecisionMaker,
        executor: Executor,
        reviewer: Reviewer,
        channel: MessagingChannel,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.store = store
        self.inspector = inspector
        self.vcs = vcs
        self.decision_maker = decision_maker
        self.executor = executor
        self.channel = channel
        self.settings = settings or get_settings()
        self.clock = clock
        self.escalator = Escalator(channel, store)
        self.revision_loop = RevisionLoop(inspector, reviewer, executor, channel, store, self.settings)

    # ── Entry point ───────────────────────────────────────────────────

    def process(self, project_id: str) -> None:
        state = self.store.load(project_id)
        logger.info("Processing %s (status=%s)", project_id, state.status.value)

        if state.status == ProjectStatus.PAUSED:
            logger.info("%s is paused, skipping", project_id)
            return
        if state.status == ProjectStatus.WAITING_INPUT:
            logger.info("%s is waiting for human input, skipping", project_id)
            return
        if state.status == ProjectStatus.COMPLETED:
            state = self.request_next_goal(state)

        self._run_session(state)

    def request_next_goal(self, state: ProjectState) -> ProjectState:
        """Ask the human what a completed project should do next and reactivate it.

        Raises ``HumanReplyTimeout`` if no reply arrives in time.
        """
        self.channel.notify(format_next_goal_request(state))
        reply = self.channel.wait_for_reply(self.settings.human_reply_timeout_seconds).strip()

        state.current_goal = reply
        state.in_progress = None
        state.status = ProjectStatus.ACTIVE
        state.last_activity = utcnow()
        self.store.save(state)
        emit_status(state.project_id, ProjectStatus.ACTIVE.value, reason="new goal")
        logger.info("%s reactivated with goal: %s", state.project_id, reply[:120])
        return state

    # ── Session ───────────────────────────────────────────────────────

    def _run_session(self, state: ProjectState) -> None:
        started = self.clock()
        budget_seconds = state.time_budget * 60
        margin = self.settings.time_budget_margin_seconds

        def time_remains() -> bool:
            if budget_seconds == 0:
                return True
            return budget_seconds - (self.clock() - started) >= margin

        branches: list[IterationBranch] = []
        iteration = 0
        prerequisites = 0

        while iteration < state.max_iterations:
            if not time_remains():
                logger.info("%s: time budget of %d min used up", state.project_id, state.time_budget)
                break

            iteration += 1
            logger.info("%s: iteration %d/%d", state.project_id, iteration, state.max_iterations)
            result = self._run_iteration(state, iteration, branches, time_remains)

            if result == IterationResult.STOP:
                break
            if result == IterationResult.PREREQUISITE:
                iteration -= 1
                prerequisites += 1
                if prerequisites >= self.settings.max_prerequisite_tasks:
                    logger.warning("%s: prerequisite cap reached (%d)", state.project_id, prerequisites)
                    self.channel.notify(
                        f"⚠️ *{state.name}*: {prerequisites} prerequisite tasks in a row this session. "
                        "Stopping here until the next cycle."
                    )
                    break
                continue
            if state.time_budget == 0:
                break

        if len(branches) > 1:
            self.channel.notify(format_session_summary(state, branches))

    def _direction(self, state: ProjectState, iteration: int, branches: list[IterationBranch]) -> str | None:
        parts: list[str] = []
        if state.pending_direction:
            parts.append(state.pending_direction)
        if iteration > 1 and branches:
            parts.append(build_iteration_note(branches))
        return "\n\n".join(parts) or None

    def _escalate_decision(self, state: ProjectState, decision: Decision) -> None:
        question = decision.question or f"Should I proceed with: {decision.next_step.task}?"
        self.escalator.escalate(state, question, format_question_context(state, decision=decision))

    def _run_iteration(
        self,
        state: ProjectState,
        iteration: int,
        branches: list[IterationBranch],
        time_remains: Callable[[], bool],
    ) -> IterationResult:
        base = self.vcs.head(state.repo_path)
        repo_summary = self.inspector.summarize(state.repo_path)
        logger.info("%s repo: %s", state.project_id, repo_summary.summary)

        decision = self.decision_maker.decide(state, repo_summary, self._direction(state, iteration, branches))
        if state.pending_direction is not None:
            state.pending_direction = None
            self.store.save(state)

        task: ProposedTask = decision.next_step
        emit_decision(state.project_id, task.task, decision.confidence, decision.needs_human)

        if decision.should_escalate:
            self._escalate_decision(state, decision)
            return IterationResult.STOP

        state.in_progress = InProgressTask(task=task.task)
        state.last_activity = utcnow()
        self.store.save(state)

        try:
            outcome = self._execute_and_review(state, task)
            if outcome is None or not outcome.approved:
                return IterationResult.STOP

            multi = state.max_iterations > 1
            continues = state.time_budget > 0 and iteration < state.max_iterations and time_remains()
            if not task.is_prerequisite and multi and continues:
                self._branch_iteration(state, iteration, base, outcome.commit_hash, outcome.summary, branches)
        except ExecutionFailure as exc:
            logger.warning("%s: %s", state.project_id, exc)
            self.escalator.escalate(
                state,
                f"The execution agent reported \"{task.task}\" as completed but made no commit "
                f"({exc.result.summary}). Was the work already done, or should I take a different approach?",
                format_question_context(state, execution=exc.result),
            )
            return IterationResult.STOP
        except Exception:
            state.in_progress = None
            self.store.save(state)
            raise

        record = TaskRecord(
            task=task.task,
            commit_hash=outcome.commit_hash,
            revisions=outcome.revisions,
            iteration=iteration if multi else None,
        )
        state.record_completion(record)
        self.store.save(state)
        emit_task_completed(state.project_id, task.task, outcome.commit_hash, outcome.revisions)
        self.channel.notify(format_progress(state, outcome.summary, outcome.files_changed, outcome.commit_hash))

        return IterationResult.PREREQUISITE if task.is_prerequisite else IterationResult.COUNTED

    def _execute_and_review(self, state: ProjectState, task: ProposedTask) -> RevisionOutcome | None:
        """Run the task and its review rounds. ``None`` means the session stops here.

        Raises ``ExecutionFailure`` when the agent reports success without a commit.
        """
        execution = self.executor.execute(task, state, state.repo_path)
        emit_execution(state.project_id, execution.status, execution.summary, execution.commit_hash)

        if execution.status == "needs_input":
            question = "\n".join(execution.questions) or execution.summary
            self.escalator.escalate(state, question, format_question_context(state, execution=execution))
            return None

        if execution.status == "failed":
            issues = f" Issues: {'; '.join(execution.issues)}" if execution.issues else ""
            self.escalator.report_error(f"Task failed: {execution.summary}.{issues}", state.project_id, "execution")
            state.in_progress = None
            self.store.save(state)
            return None

        if not execution.commit_hash:
            raise ExecutionFailure(task.task, execution)

        return self.revision_loop.run(state, task.task, execution)

    def _branch_iteration(
        self,
        state: ProjectState,
        iteration: int,
        base: str | None,
        commit_hash: str,
        summary: str,
        branches: list[IterationBranch],
    ) -> None:
        if base is None:
            logger.warning("%s: no commit before iteration %d, keeping work on the main line", state.project_id, iteration)
            return
        name = self.vcs.create_branch(state.repo_path, f"dispatch/{state.project_id}/iteration-{iteration}", commit_hash)
        self.vcs.reset_hard(state.repo_path, base)
        branches.append(IterationBranch(name=name, summary=summary, commit_hash=commit_hash))
        emit_iteration(state.project_id, name, iteration)
        logger.info("%s: iteration %d saved to %s, main line reset to %s", state.project_id, iteration, name, base[:12])
