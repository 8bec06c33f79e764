"""FastAPI admin API — manage project records and watch dispatch work.

The daemon registers its runtime with ``set_runtime`` before uvicorn starts;
without one, the API still manages project files in ``DATA_DIR`` but cannot
trigger passes.
"""

from __future__ import annotations

import asyncio
import os
from contextlib import asynccontextmanager, nullcontext
from pathlib import Path
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, ValidationError

from dispatch.core.config import get_settings
from dispatch.core.errors import ProjectNotFound
from dispatch.core.events import emit_status, get_history
from dispatch.core.logging import get_logger, tail_log
from dispatch.core.state import ProjectContext, ProjectState, ProjectStatus
from dispatch.core.store import JsonProjectStore

if TYPE_CHECKING:
    from dispatch.core.runtime import Runtime

logger = get_logger("web.server")

# ── Runtime wiring ────────────────────────────────────────────────────────
_runtime: Runtime | None = None


def set_runtime(runtime: Runtime | None) -> None:
    global _runtime
    _runtime = runtime


def _store() -> JsonProjectStore:
    if _runtime is not None:
        return _runtime.store
    return JsonProjectStore(get_settings().data_dir)


def _exclusive():
    """Hold the pass token while editing a record. Without a runtime there is no pass to race."""
    if _runtime is None:
        return nullcontext(True)
    return _runtime.scheduler.exclusive()


_BUSY = {"error": "A pass is in flight, retry when it finishes"}


def _validation_message(exc: ValidationError) -> str:
    return ", ".join(
        f"{'.'.join(str(part) for part in err['loc']) or 'body'}: {err['msg']}" for err in exc.errors()
    )


# ── Models ────────────────────────────────────────────────────────────────

class ProjectCreate(BaseModel):
    project_id: str = ""
    name: str = ""
    repo_path: str = ""
    current_goal: str = ""
    status: ProjectStatus = ProjectStatus.ACTIVE
    time_budget: int = 0
    max_iterations: int = 1
    tech_stack: list[str] = []
    preferences: list[str] = []
    availability: str = "Business hours weekdays, limited weekends"


class ProjectUpdate(BaseModel):
    name: str | None = None
    repo_path: str | None = None
    current_goal: str | None = None
    status: ProjectStatus | None = None
    pending_direction: str | None = None
    time_budget: int | None = None
    max_iterations: int | None = None
    tech_stack: list[str] | None = None
    preferences: list[str] | None = None
    availability: str | None = None


# ── Lifespan ──────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Admin API started (runtime=%s)", "attached" if _runtime else "detached")
    yield
    logger.info("Admin API stopped")


app = FastAPI(title="Dispatch", version="0.1.0", lifespan=lifespan)


# ── Projects ──────────────────────────────────────────────────────────────

@app.get("/api/projects")
async def list_projects():
    projects = await asyncio.to_thread(_store().list_all)
    return [state.model_dump(mode="json") for state in projects]


@app.get("/api/projects/{project_id}")
async def get_project(project_id: str):
    try:
        state = await asyncio.to_thread(_store().load, project_id)
    except ProjectNotFound as exc:
        return JSONResponse({"error": str(exc)}, status_code=404)
    return state.model_dump(mode="json")


@app.post("/api/projects")
async def create_project(req: ProjectCreate):
    if not req.project_id.strip():
        return JSONResponse({"error": "project_id is required"}, status_code=400)

    store = _store()
    if await asyncio.to_thread(store.exists, req.project_id.strip()):
        return JSONResponse({"error": f"Project already exists: {req.project_id}"}, status_code=409)

    try:
        state = ProjectState(
            project_id=req.project_id,
            name=req.name or req.project_id,
            repo_path=req.repo_path,
            current_goal=req.current_goal,
            status=req.status,
            time_budget=req.time_budget,
            max_iterations=req.max_iterations,
            context=ProjectContext(
                tech_stack=req.tech_stack,
                preferences=req.preferences,
                availability=req.availability,
            ),
        )
    except ValidationError as exc:
        return JSONResponse({"error": _validation_message(exc)}, status_code=400)

    try:
        await asyncio.to_thread(store.create, state)
    except FileExistsError as exc:
        return JSONResponse({"error": str(exc)}, status_code=409)
    emit_status(state.project_id, state.status.value, reason="created via admin API")
    return state.model_dump(mode="json")


@app.put("/api/projects/{project_id}")
async def update_project(project_id: str, req: ProjectUpdate):
    store = _store()
    with _exclusive() as free:
        if not free:
            return JSONResponse(_BUSY, status_code=409)
        try:
            existing = await asyncio.to_thread(store.load, project_id)
        except ProjectNotFound as exc:
            return JSONResponse({"error": str(exc)}, status_code=404)

        changes = req.model_dump(exclude_unset=True)
        context_changes = {
            key: changes.pop(key) for key in ("tech_stack", "preferences", "availability") if key in changes
        }
        merged: dict[str, Any] = existing.model_dump()
        merged.update(changes)
        merged["context"] = {**merged["context"], **context_changes}

        try:
            updated = ProjectState.model_validate(merged)
        except ValidationError as exc:
            return JSONResponse({"error": _validation_message(exc)}, status_code=400)

        await asyncio.to_thread(store.save, updated)
    if updated.status != existing.status:
        emit_status(project_id, updated.status.value, reason="updated via admin API")
    return updated.model_dump(mode="json")


@app.delete("/api/projects/{project_id}")
async def delete_project(project_id: str):
    with _exclusive() as free:
        if not free:
            return JSONResponse(_BUSY, status_code=409)
        try:
            await asyncio.to_thread(_store().delete, project_id)
        except ProjectNotFound as exc:
            return JSONResponse({"error": str(exc)}, status_code=404)
    return {"deleted": project_id}


# ── Config / browse / logs / events ───────────────────────────────────────

@app.get("/api/config")
async def get_config():
    """Non-sensitive settings plus which credentials are present."""
    settings = get_settings()
    return {
        "check_interval_seconds": settings.check_interval_seconds,
        "data_dir": settings.data_dir,
        "workspace_dir": settings.workspace_dir,
        "decision_model": settings.decision_model,
        "review_model": settings.review_model,
        "execution_command": settings.execution_command,
        "review_max_rounds": settings.review_max_rounds,
        "review_failure_policy": settings.review_failure_policy,
        "log_level": settings.log_level,
        "has_openai_key": bool(settings.openai_api_key),
        "has_anthropic_key": bool(settings.anthropic_api_key),
        "has_xai_key": bool(settings.xai_api_key),
        "has_telegram_bot": bool(settings.telegram_bot_token),
    }


@app.get("/api/browse")
async def browse(path: str = ""):
    """Directory picker for choosing a project's repository."""
    current = Path(path or Path.home()).expanduser().resolve()
    try:
        entries = list(current.iterdir())
    except OSError as exc:
        return JSONResponse({"error": f"Cannot read directory: {exc}"}, status_code=400)

    dirs: list[str] = []
    for entry in entries:
        if entry.name == "node_modules":
            continue
        try:
            if entry.is_dir():
                dirs.append(entry.name)
        except OSError:
            continue  # broken symlink
    dirs.sort(key=str.lower)

    parent = current.parent
    return {
        "current": str(current),
        "parent": str(parent) if parent != current else None,
        "dirs": dirs,
        "is_git_repo": (current / ".git").exists(),
        "sep": os.sep,
    }


@app.get("/api/logs")
async def get_logs():
    return {"lines": tail_log(100) or ["No logs yet."]}


@app.get("/api/events")
async def get_events(limit: int = 200):
    """Return recent dispatch events."""
    return {"events": get_history(limit)}


@app.post("/api/cycle")
async def trigger_cycle():
    if _runtime is None:
        return JSONResponse({"error": "Scheduler is not running"}, status_code=503)
    if _runtime.scheduler.in_flight:
        return {"status": "busy"}
    _runtime.scheduler.trigger()
    return {"status": "started"}


# ── Landing page ──────────────────────────────────────────────────────────

@app.get("/", response_class=HTMLResponse)
async def index():
    return HTMLResponse(
        "<!doctype html><html><head><title>Dispatch</title></head><body>"
        "<h1>Dispatch</h1>"
        "<p>Admin API for the work-dispatch orchestrator.</p>"
        "<ul>"
        '<li><a href="/api/projects">/api/projects</a></li>'
        '<li><a href="/api/events">/api/events</a></li>'
        '<li><a href="/api/logs">/api/logs</a></li>'
        '<li><a href="/api/config">/api/config</a></li>'
        '<li><a href="/docs">/docs</a></li>'
        "</ul></body></html>"
    )
