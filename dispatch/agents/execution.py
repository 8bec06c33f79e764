"""Execution agent — drives a code-writing CLI inside the project repository.

The CLI (``EXECUTION_COMMAND``, ``claude`` by default) is run in print mode
with the full prompt as its argument.  It edits files, commits, and finishes
with a fenced JSON block that is parsed into an ``ExecutionResult``.
"""

from __future__ import annotations

import os
import shlex
import subprocess
from pathlib import Path

from dispatch.agents.models import load_system_prompt
from dispatch.agents.retry import call_with_retry
from dispatch.agents.schemas import ExecutionResult, ProposedTask, Review, extract_json
from dispatch.core.config import get_settings
from dispatch.core.logging import get_logger
from dispatch.core.state import ProjectState

logger = get_logger("agents.execution")


def _context_block(state: ProjectState) -> str:
    return (
        "Context:\n"
        f"- Tech stack: {', '.join(state.context.tech_stack) or 'Not specified'}\n"
        f"- Preferences: {', '.join(state.context.preferences) or 'None'}\n"
        f"- Recent work: {', '.join(state.recent_tasks(2)) or 'None'}"
    )


def build_task_prompt(task: ProposedTask, state: ProjectState) -> str:
    return (
        f"{load_system_prompt('execution')}\n\n"
        f"Project: {state.name}\n\n"
        f"Task to execute:\n{task.task}\n\n"
        f"Implementation details:\n{task.details or 'None given'}\n\n"
        f"{_context_block(state)}\n\n"
        "Execute this task. Write the code, check that it works, and commit your changes.\n"
        "When done, output the JSON result block described above."
    )


def build_revision_prompt(review: Review, original_task: str, state: ProjectState) -> str:
    items = "\n".join(
        f"{i + 1}. [{item.file}] {item.issue}" + (f"\n   Suggestion: {item.suggestion}" if item.suggestion else "")
        for i, item in enumerate(review.revisions)
    ) or "(no itemised revisions)"
    return (
        f"{load_system_prompt('execution')}\n\n"
        f"Project: {state.name}\n\n"
        f"Original task:\n{original_task}\n\n"
        "The reviewer asked for revisions to your last commit.\n\n"
        f"Review summary: {review.summary or 'n/a'}\n"
        f"Feedback: {review.feedback or 'n/a'}\n\n"
        f"Revisions:\n{items}\n\n"
        f"{_context_block(state)}\n\n"
        "Address every revision, commit the fixes as a new commit, and output the JSON result block."
    )


class CLIExecutionAgent:
    """Runs the configured execution CLI and parses its final JSON report."""

    def __init__(self, command: str | None = None, timeout_seconds: int | None = None) -> None:
        settings = get_settings()
        self.command = shlex.split(command or settings.execution_command)
        self.timeout_seconds = timeout_seconds or settings.execution_timeout_seconds

    def _run_cli(self, prompt: str, repo_path: str) -> str:
        cwd = Path(repo_path).expanduser().resolve()
        if not cwd.is_dir():
            raise FileNotFoundError(f"Repository path does not exist: {cwd}")

        settings = get_settings()
        args = [*self.command, "-p", "--output-format", "text", prompt]
        logger.info("execution | cwd=%s | cmd=%s | prompt_len=%d", cwd, self.command[0], len(prompt))

        result = subprocess.run(
            args,
            shell=False,
            cwd=str(cwd),
            capture_output=True,
            text=True,
            timeout=self.timeout_seconds,
            env={
                **dict(os.environ),
                "GIT_AUTHOR_NAME": settings.git_author_name,
                "GIT_AUTHOR_EMAIL": settings.git_author_email,
                "GIT_COMMITTER_NAME": settings.git_author_name,
                "GIT_COMMITTER_EMAIL": settings.git_author_email,
            },
            encoding="utf-8",
            errors="replace",
        )
        if result.returncode != 0:
            stderr = (result.stderr or "").strip()[:500]
            raise RuntimeError(f"{self.command[0]} exited with {result.returncode}: {stderr}")
        logger.debug("execution | output_len=%d", len(result.stdout or ""))
        return result.stdout or ""

    def _run(self, prompt: str, repo_path: str) -> ExecutionResult:
        def _attempt() -> ExecutionResult:
            return ExecutionResult.model_validate(extract_json(self._run_cli(prompt, repo_path)))

        result = call_with_retry("execution agent", _attempt)
        logger.info(
            "Execution result | status=%s | files=%d | commit=%s | %s",
            result.status,
            len(result.files_changed),
            (result.commit_hash or "none")[:12],
            result.summary[:120],
        )
        return result

    def execute(self, task: ProposedTask, state: ProjectState, repo_path: str) -> ExecutionResult:
        return self._run(build_task_prompt(task, state), repo_path)

    def revise_execution(
        self, review: Review, original_task: str, state: ProjectState, repo_path: str
    ) -> ExecutionResult:
        return self._run(build_revision_prompt(review, original_task, state), repo_path)
