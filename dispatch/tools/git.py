"""Git access for the core: repository summaries, commit diffs and branch bookkeeping.

Every command runs through ``_run_git`` with an explicit argv (never a shell)
inside the project's own repository.
"""

from __future__ import annotations

import os
import re
import subprocess
from datetime import UTC, datetime
from pathlib import Path

from dispatch.agents.schemas import CommitInfo, RepoSummary
from dispatch.core.config import get_settings
from dispatch.core.errors import DispatchError
from dispatch.core.logging import get_logger

logger = get_logger("tools.git")

_FIELD_SEP = "\x1f"
_MAX_FILE_CHARS = 8_000


class GitError(DispatchError):
    """A git command exited non-zero."""

    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        self.args_list = args
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(f"git {' '.join(args)} failed (exit {returncode}): {stderr}")


def _run_git(repo_path: str | Path, *args: str, timeout: int = 60) -> str:
    """Run ``git <args>`` inside *repo_path* and return stripped stdout."""
    settings = get_settings()
    root = Path(repo_path).expanduser().resolve()
    if not root.is_dir():
        raise FileNotFoundError(f"Repository path does not exist: {root}")

    logger.debug("git_tool   | cwd=%s | git %s", root, " ".join(args))
    result = subprocess.run(
        ["git", *args],
        shell=False,
        cwd=str(root),
        capture_output=True,
        text=True,
        timeout=timeout,
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
        raise GitError(list(args), result.returncode, (result.stderr or "").strip())
    return (result.stdout or "").rstrip()


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    half = limit // 2
    return text[:half] + "\n...[truncated]...\n" + text[-half:]


def _time_since(moment: datetime) -> str:
    seconds = max(0, int((datetime.now(UTC) - moment).total_seconds()))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def build_summary(
    branch: str,
    recent_commits: list[str],
    changed_files: list[str],
    is_dirty: bool,
    last_commit_time: str | None,
) -> str:
    """Human-readable one-paragraph description of a repository's state."""
    parts: list[str] = []
    if branch != "unknown":
        parts.append(f'On branch "{branch}".')

    if recent_commits:
        parts.append(f'Last commit: "{recent_commits[0]}".')
        if len(recent_commits) > 1:
            parts.append(f"Recent work includes: {'; '.join(recent_commits[1:4])}.")
    else:
        parts.append("No commits yet.")

    if is_dirty:
        parts.append(f"{len(changed_files)} uncommitted file(s): {', '.join(changed_files[:5])}.")
    else:
        parts.append("Working tree is clean.")

    if last_commit_time:
        try:
            parts.append(f"Last commit was {_time_since(datetime.fromisoformat(last_commit_time))} ago.")
        except ValueError:
            pass
    return " ".join(parts)


def _porcelain_path(line: str) -> str:
    path = line[3:].strip()
    if " -> " in path:
        path = path.split(" -> ", 1)[1]
    return path.strip('"')


class GitRepositoryInspector:
    """Reads repository state for the decision and review agents."""

    def __init__(self, max_diff_chars: int | None = None) -> None:
        self.max_diff_chars = max_diff_chars or get_settings().max_diff_chars

    def summarize(self, path: str) -> RepoSummary:
        root = Path(path).expanduser()
        try:
            if not root.is_dir() or _run_git(root, "rev-parse", "--is-inside-work-tree") != "true":
                return RepoSummary(summary="Directory is not a git repository")
        except GitError:
            return RepoSummary(summary="Directory is not a git repository")

        try:
            branch = _run_git(root, "symbolic-ref", "--short", "HEAD")
        except GitError:
            branch = "HEAD"

        try:
            raw_log = _run_git(root, "log", "-10", f"--format=%s{_FIELD_SEP}%cI")
        except GitError:
            raw_log = ""  # no commits yet
        entries = [line.split(_FIELD_SEP) for line in raw_log.splitlines() if line.strip()]
        recent_commits = [entry[0] for entry in entries]
        last_commit_time = entries[0][1] if entries and len(entries[0]) > 1 else None

        status_lines = [line for line in _run_git(root, "status", "--porcelain").splitlines() if line.strip()]
        changed_files = [_porcelain_path(line) for line in status_lines]
        is_dirty = bool(status_lines)

        return RepoSummary(
            branch=branch,
            recent_commits=recent_commits,
            changed_files=changed_files,
            is_dirty=is_dirty,
            last_commit_time=last_commit_time,
            summary=build_summary(branch, recent_commits, changed_files, is_dirty, last_commit_time),
        )

    def diff(self, path: str, commit_hash: str) -> CommitInfo:
        patch = _run_git(path, "show", "--format=", "--patch", commit_hash)
        files = [
            name for name in _run_git(path, "show", "--format=", "--name-only", commit_hash).splitlines()
            if name.strip()
        ]

        contents: dict[str, str] = {}
        for name in files:
            try:
                contents[name] = _truncate(_run_git(path, "show", f"{commit_hash}:{name}"), _MAX_FILE_CHARS)
            except GitError:
                # deleted in this commit
                continue

        logger.info("Diff for %s@%s | files=%d | diff_len=%d", path, commit_hash[:12], len(files), len(patch))
        return CommitInfo(
            commit_hash=commit_hash,
            diff=_truncate(patch, self.max_diff_chars),
            files_changed=files,
            file_contents=contents,
        )


def _safe_branch_name(name: str) -> str:
    safe = re.sub(r"[^a-zA-Z0-9/_.-]", "-", name).strip("-/.")
    return re.sub(r"-{2,}", "-", safe) or "iteration"


class GitVersionControl:
    """Branch-per-iteration commands issued by the state machine."""

    def head(self, path: str) -> str | None:
        try:
            return _run_git(path, "rev-parse", "HEAD")
        except GitError:
            return None

    def create_branch(self, path: str, name: str, commit_hash: str) -> str:
        """Create branch *name* at *commit_hash* without switching to it. Returns the final name."""
        branch = _safe_branch_name(name)
        existing = set(_run_git(path, "branch", "--format=%(refname:short)").splitlines())
        candidate, suffix = branch, 2
        while candidate in existing:
            candidate = f"{branch}-{suffix}"
            suffix += 1
        _run_git(path, "branch", candidate, commit_hash)
        logger.info("Created branch %s at %s in %s", candidate, commit_hash[:12], path)
        return candidate

    def reset_hard(self, path: str, commit_hash: str) -> None:
        _run_git(path, "reset", "--hard", commit_hash)
        logger.info("Reset %s to %s", path, commit_hash[:12])

    def init(self, path: str) -> None:
        root = Path(path).expanduser()
        root.mkdir(parents=True, exist_ok=True)
        if (root / ".git").exists():
            logger.info("Repository already initialised at %s", root)
            return
        _run_git(root, "init")
        logger.info("Initialised git repository at %s", root)
