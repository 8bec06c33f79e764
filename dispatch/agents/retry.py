"""Retry policy shared by every agent client."""

from __future__ import annotations

import json
import time
from typing import Callable, TypeVar

from pydantic import ValidationError

from dispatch.core.config import get_settings
from dispatch.core.errors import AgentValidationError, TransientAgentError
from dispatch.core.logging import get_logger

logger = get_logger("agents.retry")

T = TypeVar("T")


def call_with_retry(
    agent: str,
    fn: Callable[[], T],
    attempts: int | None = None,
    backoff_seconds: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Call *fn* until it succeeds or the attempt budget is spent.

    Every exception counts as transient.  Schema failures (``ValidationError``,
    ``AgentValidationError``, malformed JSON) are retried against the same
    agent like any other failure.  Between attempts the policy sleeps
    ``backoff_seconds * 2**attempt``.

    Raises:
        TransientAgentError: wrapping the last failure once all attempts failed.
    """
    settings = get_settings()
    attempts = attempts or settings.agent_max_attempts
    backoff = settings.agent_backoff_seconds if backoff_seconds is None else backoff_seconds

    last_error: BaseException | None = None
    for attempt in range(1, attempts + 1):
        try:
            return fn()
        except (ValidationError, AgentValidationError, json.JSONDecodeError, ValueError) as exc:
            last_error = exc
            logger.warning("%s returned an invalid response (attempt %d/%d): %s", agent, attempt, attempts, exc)
        except Exception as exc:
            last_error = exc
            logger.warning("%s attempt %d/%d failed: %s", agent, attempt, attempts, exc)
        if attempt < attempts:
            sleep(backoff * (2 ** attempt))

    logger.error("%s failed after %d attempts: %s", agent, attempts, last_error)
    raise TransientAgentError(agent, attempts, last_error) from last_error
