from __future__ import annotations

import json
import os

import typer
from rich import print
from rich.markup import escape

from ..shrink import ShrinkAnalyzer
from .common import exit_on_value_error, format_tokens


def analyze_cmd(
    *,
    store_from_path,
    resolve_project,
    db_path: str | None,
    project: str | None,
    all_projects: bool,
    target_reduction: float,
    min_age_days: float,
    max_age_days: float,
    min_score: float,
    as_json: bool,
) -> None:
    """Propose low-value observations for removal. Nothing is changed."""

    store = store_from_path(db_path)
    try:
        resolved_project = resolve_project(os.getcwd(), project, all_projects=all_projects)
        try:
            analysis = ShrinkAnalyzer(store).analyze(
                resolved_project,
                target_reduction=target_reduction,
                min_age_days=min_age_days,
                max_age_days=max_age_days,
                min_score=min_score,
            )
        except ValueError as exc:
            raise exit_on_value_error(exc) from exc
    finally:
        store.close()

    if as_json:
        typer.echo(json.dumps(analysis.to_dict(), indent=2, ensure_ascii=False))
        return
    print(
        f"[bold]{analysis.observations_to_remove}[/bold] of {analysis.total_observations} "
        f"observations proposed (~{format_tokens(analysis.total_tokens_saved)} tokens)"
    )
    for candidate in analysis.candidates:
        print(
            f"- [{candidate.id}] {candidate.score:.3f} ({candidate.type}) "
            f"{escape(candidate.title or '(untitled)')}"
        )
        if candidate.reasons:
            print(f"  [dim]{escape('; '.join(candidate.reasons))}[/dim]")


def execute_cmd(
    *,
    store_from_path,
    db_path: str | None,
    ids: list[int],
    mode: str,
    yes: bool,
) -> None:
    """Delete or summarize the given observations."""

    if not yes:
        typer.confirm(f"{mode} {len(ids)} observation(s)?", abort=True)
    store = store_from_path(db_path)
    try:
        try:
            result = ShrinkAnalyzer(store).execute(ids, mode=mode)
        except ValueError as exc:
            raise exit_on_value_error(exc) from exc
    finally:
        store.close()

    color = "green" if not result.failed else "yellow"
    print(f"[{color}]Deleted {result.deleted}, failed {result.failed}[/{color}]")
    if result.summary_ids:
        print(f"Summary observations: {', '.join(str(i) for i in result.summary_ids)}")
