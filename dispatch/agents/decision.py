"""Decision agent — proposes the next task and parses onboarding goals."""

from __future__ import annotations

from langchain_core.messages import HumanMessage, SystemMessage

from dispatch.agents.models import get_llm, load_system_prompt
from dispatch.agents.retry import call_with_retry
from dispatch.agents.schemas import Decision, GoalDefinition, RepoSummary, extract_json
from dispatch.core.logging import get_logger
from dispatch.core.state import ProjectState

logger = get_logger("agents.decision")


def _bullets(values: list[str], empty: str = "None") -> str:
    return "\n".join(f"- {v}" for v in values) if values else empty


def build_decision_prompt(state: ProjectState, repo: RepoSummary, direction: str | None = None) -> str:
    """Render the user prompt for a decision request. Pure, so it is reproducible."""
    blockers = [b.description for b in state.blockers]
    in_progress = (
        f"Currently in progress: {state.in_progress.task}"
        if state.in_progress
        else "Nothing currently in progress."
    )

    sections = [
        f"Project: {state.name}",
        f"Current goal: {state.current_goal}",
        "",
        "Recently completed:",
        _bullets(state.recent_tasks(3), "- None yet"),
        "",
        in_progress,
        "",
        "Blockers:",
        _bullets(blockers),
        "",
        "Current repository state:",
        repo.summary,
        f"Recent commits: {', '.join(repo.recent_commits[:5]) or 'None'}",
        f"Changed files: {', '.join(repo.changed_files[:10]) or 'None'}",
        "",
        "Context:",
        f"- Tech stack: {', '.join(state.context.tech_stack) or 'Not specified'}",
        f"- Preferences: {', '.join(state.context.preferences) or 'None'}",
        f"- Human availability: {state.context.availability}",
    ]
    if direction:
        sections += ["", f"Latest direction from the human:\n{direction}"]
    sections += ["", "What should we work on next?"]
    return "\n".join(sections)


class LLMDecisionAgent:
    """Chat-model backed decision agent (model chosen by DECISION_MODEL)."""

    def __init__(self, llm=None, goal_llm=None) -> None:
        self._llm = llm
        self._goal_llm = goal_llm

    @property
    def llm(self):
        if self._llm is None:
            self._llm = get_llm("decision")
        return self._llm

    @property
    def goal_llm(self):
        if self._goal_llm is None:
            self._goal_llm = get_llm("onboarding")
        return self._goal_llm

    def _ask(self, llm, role: str, prompt: str) -> dict:
        response = llm.invoke([
            SystemMessage(content=load_system_prompt(role)),
            HumanMessage(content=prompt),
        ])
        content = response.content if isinstance(response.content, str) else str(response.content)
        logger.debug("%s raw response: %s", role, content[:2000])
        return extract_json(content)

    def decide(self, state: ProjectState, repo_summary: RepoSummary, direction: str | None = None) -> Decision:
        prompt = build_decision_prompt(state, repo_summary, direction)
        logger.debug("Decision prompt for %s:\n%s", state.project_id, prompt)

        def _attempt() -> Decision:
            return Decision.model_validate(self._ask(self.llm, "decision", prompt))

        decision = call_with_retry("decision agent", _attempt)
        logger.info(
            "Decision for %s | task=%s | confidence=%s | needs_human=%s | prerequisite=%s",
            state.project_id,
            decision.next_step.task[:100],
            decision.confidence,
            decision.needs_human,
            decision.next_step.is_prerequisite,
        )
        return decision

    def parse_goal(self, message: str) -> GoalDefinition:
        prompt = f'The human says: "{message.strip()}"'

        def _attempt() -> GoalDefinition:
            return GoalDefinition.model_validate(self._ask(self.goal_llm, "onboarding", prompt))

        goal = call_with_retry("goal parser", _attempt)
        logger.info("Parsed goal | project=%s | goal=%s", goal.project_id, goal.current_goal[:100])
        return goal
