from __future__ import annotations

import subprocess
from collections.abc import Iterable, Sequence
from pathlib import Path


def run_command(cmd: Sequence[str], cwd: str | None = None) -> str:
    try:
        out = subprocess.check_output(cmd, cwd=cwd, stderr=subprocess.STDOUT, text=True)
        return out.strip()
    except subprocess.CalledProcessError as exc:
        return exc.output.strip()
    except (FileNotFoundError, NotADirectoryError):
        return ""


def project_basename(value: str) -> str:
    normalized = value.replace("\\", "/").rstrip("/")
    if not normalized:
        return ""
    return normalized.split("/")[-1]


def resolve_project(cwd: str, override: str | None = None) -> str | None:
    if override is not None:
        override = override.strip()
        return override or None

    repo_root = run_command(["git", "rev-parse", "--show-toplevel"], cwd=cwd) or None
    # git prints its error text on failure, so only trust an existing directory
    if repo_root and not repo_root.startswith("fatal:") and Path(repo_root).is_dir():
        main_repo = _resolve_worktree_parent(cwd)
        if main_repo:
            repo_root = main_repo
        return Path(repo_root).name

    return Path(cwd).resolve().name


def _resolve_worktree_parent(cwd: str) -> str | None:
    """If cwd is a git worktree, return the main repo root. Otherwise return None."""
    common_dir = run_command(["git", "rev-parse", "--git-common-dir"], cwd=cwd)
    git_dir = run_command(["git", "rev-parse", "--git-dir"], cwd=cwd)
    if not common_dir or not git_dir or common_dir == git_dir:
        return None
    common_path = Path(cwd, common_dir).resolve()
    if common_path.name != ".git":
        return None
    return str(common_path.parent)


def is_project_excluded(project: str | None, excluded: Iterable[str]) -> bool:
    if not project:
        return False
    name = project_basename(project.strip()).lower()
    if not name:
        return False
    excluded_names = {
        project_basename(item.strip()).lower() for item in excluded if item and item.strip()
    }
    return name in excluded_names
