"""Error taxonomy shared by the agents, the core and the interfaces."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from dispatch.agents.schemas import ExecutionResult


class DispatchError(Exception):
    """Base class for every error raised by dispatch itself."""


class TransientAgentError(DispatchError):
    """An agent call kept failing after the retry budget was spent."""

    def __init__(self, agent: str, attempts: int, last_error: BaseException | None = None) -> None:
        self.agent = agent
        self.attempts = attempts
        self.last_error = last_error
        detail = f": {last_error}" if last_error is not None else ""
        super().__init__(f"{agent} failed after {attempts} attempts{detail}")


class AgentValidationError(DispatchError):
    """An agent's structured response did not pass schema checks.

    Raised inside a single attempt; the retry policy treats it as transient.
    """


class ExecutionFailure(DispatchError):
    """The execution agent ran but left no commit behind."""

    def __init__(self, task: str, result: ExecutionResult) -> None:
        self.task = task
        self.result = result
        super().__init__(f"Execution of '{task}' finished without a commit: {result.summary}")


class HumanReplyTimeout(DispatchError, TimeoutError):
    """No human reply arrived before the wait expired."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Timed out after {timeout_seconds:.0f}s waiting for a human reply")


class WaitAlreadyPending(DispatchError):
    """A second human-reply wait was opened while one is outstanding."""


class SafetyCapExceeded(DispatchError):
    """The revision loop used all of its rounds without approval."""

    def __init__(self, rounds: int, last_result: ExecutionResult | None = None) -> None:
        self.rounds = rounds
        self.last_result = last_result
        super().__init__(f"Revision loop reached its safety cap of {rounds} rounds")


class ProjectNotFound(DispatchError, KeyError):
    """No persisted record exists for the requested project id."""

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")

    def __str__(self) -> str:
        return f"Project not found: {self.project_id}"
