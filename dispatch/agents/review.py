"""Review agent — judges a commit and returns approve / revise / escalate."""

from __future__ import annotations

from langchain_core.messages import HumanMessage, SystemMessage

from dispatch.agents.models import get_llm, load_system_prompt
from dispatch.agents.retry import call_with_retry
from dispatch.agents.schemas import CommitInfo, Review, extract_json
from dispatch.core.logging import get_logger
from dispatch.core.state import ProjectState

logger = get_logger("agents.review")


def _format_history(history: list[dict]) -> str:
    if not history:
        return ""
    rounds = "\n".join(
        f"  Round {i + 1}: {entry.get('feedback') or entry.get('summary') or '(no feedback)'}"
        for i, entry in enumerate(history)
    )
    return (
        f"\n\nPrevious revision rounds ({len(history)} so far):\n{rounds}\n\n"
        "If the same issues keep coming back, escalate to the human instead of asking for another revision."
    )


def build_review_prompt(
    state: ProjectState, task_description: str, commit_info: CommitInfo, history: list[dict]
) -> str:
    file_contents = "\n\n".join(
        f"=== {path} ===\n{content}" for path, content in commit_info.file_contents.items()
    )
    return (
        f"Project: {state.name}\n"
        f"Goal: {state.current_goal}\n"
        f"Task that was completed: {task_description}\n"
        f"Commit: {commit_info.commit_hash}\n\n"
        f"Files changed: {', '.join(commit_info.files_changed) or 'none'}"
        f"{_format_history(history)}\n\n"
        f"--- DIFF ---\n{commit_info.diff}\n\n"
        f"--- FILE CONTENTS ---\n{file_contents}\n\n"
        "Review this work and decide: approve, revise, or escalate."
    )


class LLMReviewAgent:
    """Chat-model backed reviewer (model chosen by REVIEW_MODEL).

    Persistent failures surface as ``TransientAgentError``; the revision loop
    decides what that means for the task.
    """

    def __init__(self, llm=None) -> None:
        self._llm = llm

    @property
    def llm(self):
        if self._llm is None:
            self._llm = get_llm("review")
        return self._llm

    def review(
        self,
        state: ProjectState,
        task_description: str,
        commit_info: CommitInfo,
        history: list[dict],
    ) -> Review:
        prompt = build_review_prompt(state, task_description, commit_info, history)

        def _attempt() -> Review:
            response = self.llm.invoke([
                SystemMessage(content=load_system_prompt("review")),
                HumanMessage(content=prompt),
            ])
            content = response.content if isinstance(response.content, str) else str(response.content)
            logger.debug("review raw response: %s", content[:2000])
            return Review.model_validate(extract_json(content))

        review = call_with_retry("review agent", _attempt)
        logger.info(
            "Review for %s | decision=%s | revisions=%d | %s",
            state.project_id,
            review.decision,
            len(review.revisions),
            review.summary[:120],
        )
        return review
