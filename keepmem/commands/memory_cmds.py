from __future__ import annotations

import json
import os
from typing import Any

import typer
from rich import print
from rich.markup import escape

from .common import exit_on_value_error, format_tokens

_KIND_PREFIX = {"observation": "", "session": "S", "prompt": "P"}


def _format_index_row(item: dict[str, Any], *, marker: str = " ") -> str:
    ref = f"{_KIND_PREFIX.get(item['kind'], '')}{item['id']}"
    return (
        f"{marker}{item['glyph']} [{ref}] {item['created_at'][:16]} "
        f"({item['type']}) {escape(item['title'])} "
        f"[dim]~{format_tokens(item['read_tokens'])} tokens[/dim]"
    )


def search_cmd(
    *,
    store_from_path,
    resolve_project,
    db_path: str | None,
    query: str,
    limit: int,
    project: str | None,
    all_projects: bool,
    record_type: str | None,
    obs_type: str | None,
    date_start: str | None,
    date_end: str | None,
    order_by: str,
    as_json: bool,
) -> None:
    """Search the compact index of observations, sessions and prompts."""

    store = store_from_path(db_path)
    try:
        resolved_project = resolve_project(os.getcwd(), project, all_projects=all_projects)
        try:
            items = store.search_index(
                query,
                project=resolved_project,
                limit=limit,
                record_type=record_type,
                date_start=date_start,
                date_end=date_end,
                obs_type=obs_type,
                order_by=order_by,
                all_projects=all_projects,
            )
        except ValueError as exc:
            raise exit_on_value_error(exc) from exc
    finally:
        store.close()
    if as_json:
        typer.echo(json.dumps(items, indent=2, ensure_ascii=False))
        return
    if not items:
        print("[yellow]No matches[/yellow]")
        return
    for item in items:
        print(_format_index_row(item))


def timeline_cmd(
    *,
    store_from_path,
    resolve_project,
    db_path: str | None,
    anchor: str | None,
    query: str | None,
    depth_before: int,
    depth_after: int,
    project: str | None,
    as_json: bool,
) -> None:
    """Show the records around an anchor in chronological order."""

    store = store_from_path(db_path)
    try:
        resolved_project = resolve_project(os.getcwd(), project, all_projects=False)
        try:
            items = store.timeline(
                project=resolved_project,
                anchor=anchor,
                query=query,
                depth_before=depth_before,
                depth_after=depth_after,
            )
        except ValueError as exc:
            raise exit_on_value_error(exc) from exc
    finally:
        store.close()
    if as_json:
        typer.echo(json.dumps(items, indent=2, ensure_ascii=False))
        return
    if not items:
        print("[yellow]Anchor not found[/yellow]")
        return
    for item in items:
        print(_format_index_row(item, marker=">" if item.get("is_anchor") else " "))


def get_cmd(
    *,
    store_from_path,
    db_path: str | None,
    ids: list[int],
    order_by: str,
    limit: int | None,
    project: str | None,
) -> None:
    """Print full observation records as JSON."""

    store = store_from_path(db_path)
    try:
        try:
            items = store.get_observations(ids, order_by=order_by, limit=limit, project=project)
        except ValueError as exc:
            raise exit_on_value_error(exc) from exc
    finally:
        store.close()
    typer.echo(json.dumps(items, indent=2, ensure_ascii=False))


def remember_cmd(
    *,
    store_from_path,
    resolve_project,
    db_path: str | None,
    obs_type: str,
    title: str,
    narrative: str | None,
    subtitle: str | None,
    facts: list[str] | None,
    concepts: list[str] | None,
    project: str | None,
) -> None:
    """Manually add an observation."""

    store = store_from_path(db_path)
    try:
        resolved_project = resolve_project(os.getcwd(), project, all_projects=False)
        if store.is_project_excluded(resolved_project):
            print(f"[yellow]Project {resolved_project} is excluded; nothing stored[/yellow]")
            return
        try:
            obs_id = store.remember_observation(
                resolved_project or "",
                obs_type,
                title,
                narrative=narrative,
                subtitle=subtitle,
                facts=facts or None,
                concepts=concepts or None,
                metadata={"manual": True},
            )
        except ValueError as exc:
            raise exit_on_value_error(exc) from exc
        print(f"Stored observation {obs_id}")
    finally:
        store.close()


def projects_cmd(*, store_from_path, db_path: str | None) -> None:
    """List projects with observation counts."""

    store = store_from_path(db_path)
    try:
        projects = store.list_projects()
    finally:
        store.close()
    if not projects:
        print("[yellow]No projects yet[/yellow]")
        return
    for item in projects:
        suffix = " [dim](excluded)[/dim]" if item["excluded"] else ""
        print(f"- {escape(str(item['project']))}: {item['observations']} observations{suffix}")
