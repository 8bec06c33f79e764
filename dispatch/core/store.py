"""JSON-file project store under ``<data_dir>/projects``."""

from __future__ import annotations

import json
import shutil
from pathlib import Path

from pydantic import ValidationError

from dispatch.core.config import get_settings
from dispatch.core.errors import ProjectNotFound
from dispatch.core.logging import get_logger
from dispatch.core.state import ProjectState, ProjectStatus, utcnow

logger = get_logger("core.store")


class JsonProjectStore:
    """One ``<project_id>.json`` file per project plus a ``.backup.json`` of the previous save."""

    def __init__(self, data_dir: str | Path | None = None) -> None:
        base = Path(data_dir or get_settings().data_dir)
        self.projects_dir = base / "projects"

    def _ensure_dir(self) -> Path:
        self.projects_dir.mkdir(parents=True, exist_ok=True)
        return self.projects_dir

    def _path(self, project_id: str) -> Path:
        return self._ensure_dir() / f"{project_id}.json"

    def _backup_path(self, project_id: str) -> Path:
        return self._ensure_dir() / f"{project_id}.backup.json"

    def _ids(self) -> list[str]:
        return sorted(
            path.name[: -len(".json")]
            for path in self._ensure_dir().glob("*.json")
            if not path.name.endswith(".backup.json")
        )

    def exists(self, project_id: str) -> bool:
        return self._path(project_id).exists()

    def load(self, project_id: str) -> ProjectState:
        path = self._path(project_id)
        if not path.exists():
            raise ProjectNotFound(project_id)
        payload = json.loads(path.read_text(encoding="utf-8"))
        return ProjectState.model_validate(payload)

    def save(self, state: ProjectState) -> None:
        # Re-validate so an in-place mutation that broke an invariant never reaches disk.
        ProjectState.model_validate(state.model_dump())

        path = self._path(state.project_id)
        if path.exists():
            shutil.copyfile(path, self._backup_path(state.project_id))

        state.last_checked = utcnow()
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(path)
        logger.debug("Saved project %s (status=%s)", state.project_id, state.status.value)

    def create(self, state: ProjectState) -> ProjectState:
        if self.exists(state.project_id):
            raise FileExistsError(f"Project already exists: {state.project_id}")
        self.save(state)
        logger.info("Created project %s", state.project_id)
        return state

    def delete(self, project_id: str) -> None:
        path = self._path(project_id)
        if not path.exists():
            raise ProjectNotFound(project_id)
        path.unlink()
        self._backup_path(project_id).unlink(missing_ok=True)
        logger.info("Deleted project %s", project_id)

    def list_all(self) -> list[ProjectState]:
        projects: list[ProjectState] = []
        for project_id in self._ids():
            try:
                projects.append(self.load(project_id))
            except (ValidationError, json.JSONDecodeError, OSError) as exc:
                logger.warning("Skipping project %s: %s", project_id, exc)
        return projects

    def list_by_status(self, status: ProjectStatus) -> list[str]:
        return [state.project_id for state in self.list_all() if state.status == status]
