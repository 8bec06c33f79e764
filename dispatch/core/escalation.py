"""Human-facing message formatting and the escalation step shared by the core.

Every escalation leaves the project in ``waiting_input`` with no task in
progress, persisted before the question goes out.
"""

from __future__ import annotations

from dispatch.agents.schemas import Decision, ExecutionResult, Review
from dispatch.core.events import emit_error, emit_escalation, emit_status
from dispatch.core.interfaces import MessagingChannel, ProjectStore
from dispatch.core.logging import get_logger
from dispatch.core.state import IterationBranch, ProjectState, ProjectStatus, utcnow

logger = get_logger("core.escalation")


GOAL_REQUEST = "\n".join([
    "👋 *What should we work on?*",
    "",
    "Tell me what you'd like to build or work on next. Be as brief or detailed as you like, for example:",
    "",
    "› _Build a payroll system using Next.js and PostgreSQL_",
    "› _Add dark mode to the dashboard app_",
    "› _Fix the bug in the employee import CSV parser_",
    "",
    "I'll break it down and start building, and check in when we need decisions.",
])


def format_goal_request() -> str:
    return GOAL_REQUEST


def format_next_goal_request(state: ProjectState) -> str:
    return "\n".join([
        f"🏁 *{state.name}* is marked as completed.",
        "",
        f"*Last goal:* {state.current_goal or 'n/a'}",
        f"*Tasks completed:* {len(state.completed)}",
        "",
        "What should the next goal for this project be?",
    ])


def format_question_context(
    state: ProjectState,
    decision: Decision | None = None,
    execution: ExecutionResult | None = None,
) -> str:
    """Context block sent alongside a question so the human can answer without digging."""
    last_completed = state.completed[-1].task if state.completed else "Nothing yet"
    if decision is not None:
        proposed = decision.next_step.task
    elif execution is not None:
        proposed = execution.summary
    else:
        proposed = "N/A"
    lines = [
        f"*Project:* {state.name}",
        f"Recently completed: {last_completed}",
        f"Proposed next step: {proposed}",
    ]
    if decision is not None and decision.next_step.reasoning:
        lines.append(f"*Reasoning:* {decision.next_step.reasoning}")
    return "\n".join(lines)


def format_question(question: str, context: str = "") -> str:
    lines = ["🚦 *Dispatch needs your input*", "", f"*Question:* {question}"]
    if context:
        lines += ["", "*Context:*", context]
    lines += ["", "Reply here with your direction."]
    return "\n".join(lines)


def format_progress(state: ProjectState, summary: str, files_changed: list[str], commit_hash: str | None) -> str:
    lines = [
        "✅ *Task completed autonomously*",
        "",
        f"*Project:* {state.name}",
        f"*Completed:* {summary}",
        f"*Files changed:* {len(files_changed)}",
    ]
    if commit_hash:
        lines.append(f"*Commit:* {commit_hash[:7]}")
    return "\n".join(lines)


def format_revision_notice(state: ProjectState, round_number: int, review: Review) -> str:
    lines = [f"🔄 *Revision round {round_number}* for {state.name}", ""]
    if review.feedback or review.summary:
        lines.append(review.feedback or review.summary)
    for item in review.revisions[:5]:
        lines.append(f"• `{item.file}`: {item.issue}")
    if len(review.revisions) > 5:
        lines.append(f"…and {len(review.revisions) - 5} more")
    return "\n".join(lines)


def format_error(error: BaseException | str, project_id: str = "", phase: str = "") -> str:
    lines = ["❌ *Dispatch encountered an error*", "", f"*Error:* {error}"]
    if project_id:
        lines.append(f"*Project:* {project_id}")
    if phase:
        lines.append(f"*Phase:* {phase}")
    lines += ["", "Manual intervention may be required."]
    return "\n".join(lines)


def format_session_summary(state: ProjectState, branches: list[IterationBranch]) -> str:
    lines = [f"🌿 *{state.name}*: {len(branches)} iterations ready to compare", ""]
    for index, branch in enumerate(branches, start=1):
        lines.append(f"{index}. `{branch.name}` ({branch.commit_hash[:7]}): {branch.summary}")
    lines += ["", "Check out each branch and tell me which direction to keep."]
    return "\n".join(lines)


class Escalator:
    """Hands control of a project to the human."""

    def __init__(self, channel: MessagingChannel, store: ProjectStore) -> None:
        self.channel = channel
        self.store = store

    def escalate(self, state: ProjectState, question: str, context: str = "") -> None:
        state.in_progress = None
        state.status = ProjectStatus.WAITING_INPUT
        state.last_activity = utcnow()
        self.store.save(state)

        logger.info("Escalating %s: %s", state.project_id, question)
        emit_status(state.project_id, ProjectStatus.WAITING_INPUT.value, reason=question)
        emit_escalation(state.project_id, question)
        self.channel.ask_human(question, context or format_question_context(state))

    def report_error(self, error: BaseException | str, project_id: str = "", phase: str = "") -> None:
        """Tell the human about a hard failure. Never raises."""
        logger.error("Error | project=%s | phase=%s | %s", project_id or "-", phase or "-", error)
        emit_error(project_id, str(error), phase)
        try:
            self.channel.notify(format_error(error, project_id, phase))
        except Exception as exc:
            logger.error("Could not deliver error notification: %s", exc)
