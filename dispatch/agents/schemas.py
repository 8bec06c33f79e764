"""Structured agent inputs and outputs.

Agents answer in JSON; these models are the schema checks applied to every
response.  A ``pydantic.ValidationError`` raised here is treated by the retry
policy as a transient failure of the agent that produced the payload.
"""

from __future__ import annotations

import json
import re
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class ProposedTask(BaseModel):
    task: str
    reasoning: str = ""
    details: str = ""
    is_prerequisite: bool = False

    @field_validator("task")
    @classmethod
    def _task_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("next_step.task is required")
        return value.strip()


class Decision(BaseModel):
    """The decision agent's proposal for the next unit of work."""
    next_step: ProposedTask
    confidence: Literal["high", "medium", "low"]
    needs_human: bool
    question: str | None = None
    estimated_complexity: str = ""
    dependencies: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if "needs_human" not in data and "needsGreg" in data:
                data["needs_human"] = data.pop("needsGreg")
            if "question" not in data and "questionForGreg" in data:
                data["question"] = data.pop("questionForGreg")
            if "next_step" not in data and "nextStep" in data:
                data["next_step"] = data.pop("nextStep")
            step = data.get("next_step")
            if isinstance(step, dict) and "is_prerequisite" not in step and "isPrerequisite" in step:
                data["next_step"] = {**step, "is_prerequisite": step["isPrerequisite"]}
        return data

    @property
    def should_escalate(self) -> bool:
        return self.needs_human or self.confidence == "low"


class ExecutionResult(BaseModel):
    """What the execution agent reports after working in the repository."""
    status: Literal["completed", "needs_input", "failed"]
    summary: str
    commit_hash: str | None = None
    files_changed: list[str] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)
    questions: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            for legacy, key in (
                ("commitHash", "commit_hash"),
                ("filesChanged", "files_changed"),
                ("questionsForGreg", "questions"),
                ("nextSteps", "next_steps"),
            ):
                if key not in data and legacy in data:
                    data[key] = data.pop(legacy)
        return data

    @field_validator("summary")
    @classmethod
    def _summary_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("summary is required")
        return value.strip()

    @field_validator("commit_hash")
    @classmethod
    def _normalize_commit(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value or value.lower() in ("null", "none"):
            return None
        return value


class RevisionItem(BaseModel):
    file: str = "general"
    issue: str
    suggestion: str = ""


class Review(BaseModel):
    """The review agent's verdict on a commit."""
    decision: Literal["approve", "revise", "escalate"]
    summary: str = ""
    revisions: list[RevisionItem] = Field(default_factory=list)
    feedback: str = ""
    question: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _normalize_decision(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if "question" not in data and "questionForGreg" in data:
                data["question"] = data.pop("questionForGreg")
            decision = data.get("decision")
            if not decision and "approved" in data:
                decision = "approve" if data["approved"] else "revise"
            if isinstance(decision, str):
                decision = decision.strip().lower()
                if decision in ("ask_greg", "ask_human"):
                    decision = "escalate"
            data["decision"] = decision
        return data


class GoalDefinition(BaseModel):
    """A free-text goal parsed into a new project definition."""
    project_id: str
    name: str = ""
    current_goal: str
    tech_stack: list[str] = Field(default_factory=list)
    preferences: list[str] = Field(default_factory=list)
    repo_name: str = ""

    @field_validator("project_id")
    @classmethod
    def _kebab(cls, value: str) -> str:
        slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
        if not slug:
            raise ValueError("project_id is required")
        return slug

    @field_validator("current_goal")
    @classmethod
    def _goal_required(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("current_goal is required")
        return value.strip()

    @model_validator(mode="after")
    def _defaults(self) -> GoalDefinition:
        if not self.name.strip():
            self.name = self.project_id
        if not self.repo_name.strip():
            self.repo_name = self.project_id
        return self


class RepoSummary(BaseModel):
    """Point-in-time view of a repository."""
    branch: str = "unknown"
    recent_commits: list[str] = Field(default_factory=list)
    changed_files: list[str] = Field(default_factory=list)
    is_dirty: bool = False
    last_commit_time: str | None = None
    summary: str = ""


class CommitInfo(BaseModel):
    commit_hash: str
    diff: str = ""
    files_changed: list[str] = Field(default_factory=list)
    file_contents: dict[str, str] = Field(default_factory=dict)


def extract_json(raw: str) -> dict:
    """Pull the JSON object out of an agent response.

    Accepts a ```json fenced block, a bare object, or an object surrounded by
    prose.  Raises ``ValueError`` when nothing parseable is found.
    """
    text = raw.strip()
    fenced = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", text, re.DOTALL)
    if fenced:
        candidate = fenced.group(1)
    else:
        start, end = text.find("{"), text.rfind("}")
        if start == -1 or end <= start:
            raise ValueError("No JSON object found in agent output")
        candidate = text[start:end + 1]

    payload = json.loads(candidate)
    if not isinstance(payload, dict):
        raise ValueError("Agent output JSON is not an object")
    return payload
