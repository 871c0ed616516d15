from __future__ import annotations

from typing import Any

import typer
from rich import print
from rich.markup import escape

from keepmem.config import load_config, read_config_file
from keepmem.db import DEFAULT_DB_PATH
from keepmem.store import MemoryStore
from keepmem.utils import resolve_project


def store_from_path(db_path: str | None) -> MemoryStore:
    return MemoryStore(db_path or load_config().db_path or DEFAULT_DB_PATH)


def read_config_or_exit() -> dict[str, Any]:
    try:
        return read_config_file()
    except ValueError as exc:
        print(f"[red]Invalid config file: {exc}[/red]")
        raise typer.Exit(code=1) from exc


def resolve_project_for_cli(cwd: str, project: str | None, *, all_projects: bool) -> str | None:
    if all_projects:
        return None
    if project:
        return project
    configured = load_config().project
    if configured:
        return configured
    return resolve_project(cwd)


def exit_on_value_error(exc: ValueError) -> typer.Exit:
    print(f"[red]{escape(str(exc))}[/red]")
    return typer.Exit(code=1)


def format_tokens(count: int) -> str:
    return f"{count:,}"
