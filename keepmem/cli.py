from __future__ import annotations

import typer

from .commands.common import (
    read_config_or_exit,
    resolve_project_for_cli,
    store_from_path,
)
from .commands.maintenance_cmds import init_db_cmd, stats_cmd
from .commands.memory_cmds import (
    get_cmd,
    projects_cmd,
    remember_cmd,
    search_cmd,
    timeline_cmd,
)
from .commands.shrink_cmds import analyze_cmd, execute_cmd
from .config import load_config

app = typer.Typer(help="keepmem: memory retention and retrieval for coding agents")
shrink_app = typer.Typer(help="Find and remove low-value observations")
app.add_typer(shrink_app, name="shrink")


def _store(db_path: str | None):
    return store_from_path(db_path)


def _resolve_project(cwd: str, project: str | None, all_projects: bool = False) -> str | None:
    return resolve_project_for_cli(cwd, project, all_projects=all_projects)


@app.command()
def init_db(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """Create the SQLite database (no-op if it already exists)."""
    init_db_cmd(store_from_path=_store, db_path=db_path)


@app.command()
def search(
    query: str = typer.Argument("", help="Full-text query (blank lists recent records)"),
    limit: int = typer.Option(None, help="Max results"),
    record_type: str = typer.Option(
        None, "--type", help="Restrict to observations, sessions or prompts"
    ),
    obs_type: str = typer.Option(None, help="Comma-separated observation types"),
    date_start: str = typer.Option(None, help="Epoch ms or ISO-8601 lower bound"),
    date_end: str = typer.Option(None, help="Epoch ms or ISO-8601 upper bound"),
    order_by: str = typer.Option("date_desc", help="date_desc or date_asc"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    project: str = typer.Option(None, help="Project identifier (defaults to git repo root)"),
    all_projects: bool = typer.Option(False, help="Search across all projects"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Search the compact index of observations, sessions and prompts."""
    search_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        db_path=db_path,
        query=query,
        limit=limit if limit is not None else load_config().search_limit,
        project=project,
        all_projects=all_projects,
        record_type=record_type,
        obs_type=obs_type,
        date_start=date_start,
        date_end=date_end,
        order_by=order_by,
        as_json=as_json,
    )


@app.command()
def timeline(
    anchor: str = typer.Argument(None, help="Observation id, S<id> or P<id>"),
    query: str = typer.Option(None, help="Anchor on the best match for this query"),
    depth_before: int = typer.Option(None, help="Records before the anchor"),
    depth_after: int = typer.Option(None, help="Records after the anchor"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    project: str = typer.Option(None, help="Project identifier (defaults to git repo root)"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Show what happened around an anchor record."""
    depth = load_config().timeline_depth
    timeline_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        db_path=db_path,
        anchor=anchor,
        query=query,
        depth_before=depth if depth_before is None else depth_before,
        depth_after=depth if depth_after is None else depth_after,
        project=project,
        as_json=as_json,
    )


@app.command()
def get(
    ids: list[int] = typer.Argument(..., help="Observation ids"),
    order_by: str = typer.Option("date_desc", help="date_desc or date_asc"),
    limit: int = typer.Option(None, help="Max records"),
    project: str = typer.Option(None, help="Only return records from this project"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Print full observation records as JSON."""
    get_cmd(
        store_from_path=_store,
        db_path=db_path,
        ids=ids,
        order_by=order_by,
        limit=limit,
        project=project,
    )


@app.command()
def remember(
    obs_type: str = typer.Argument(..., help="Observation type, e.g. decision or bugfix"),
    title: str = typer.Argument(...),
    narrative: str = typer.Option(None, help="Longer description"),
    subtitle: str = typer.Option(None),
    facts: list[str] = typer.Option(None, "--fact", help="Repeat for multiple facts"),
    concepts: list[str] = typer.Option(None, "--concept", help="Repeat for multiple concepts"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    project: str = typer.Option(None, help="Project identifier (defaults to git repo root)"),
) -> None:
    """Manually add an observation."""
    remember_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        db_path=db_path,
        obs_type=obs_type,
        title=title,
        narrative=narrative,
        subtitle=subtitle,
        facts=facts,
        concepts=concepts,
        project=project,
    )


@app.command()
def projects(db_path: str = typer.Option(None, help="Path to SQLite database")) -> None:
    """List projects with observation counts."""
    projects_cmd(store_from_path=_store, db_path=db_path)


@app.command()
def stats(
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    project: str = typer.Option(None, help="Only count this project"),
) -> None:
    """Show observation counts and usage accounting."""
    stats_cmd(store_from_path=_store, db_path=db_path, project=project)


@shrink_app.command("analyze")
def shrink_analyze(
    target_reduction: float = typer.Option(None, help="Fraction of observations to propose"),
    min_age_days: float = typer.Option(None, help="Ignore observations younger than this"),
    max_age_days: float = typer.Option(None, help="Age at which decay bottoms out"),
    min_score: float = typer.Option(None, help="Only propose scores below this"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
    project: str = typer.Option(None, help="Project identifier (defaults to git repo root)"),
    all_projects: bool = typer.Option(False, help="Analyze every project"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
) -> None:
    """Propose low-value observations for removal."""
    read_config_or_exit()
    config = load_config()
    analyze_cmd(
        store_from_path=_store,
        resolve_project=_resolve_project,
        db_path=db_path,
        project=project,
        all_projects=all_projects,
        target_reduction=(
            config.shrink_target_reduction if target_reduction is None else target_reduction
        ),
        min_age_days=config.shrink_min_age_days if min_age_days is None else min_age_days,
        max_age_days=config.shrink_max_age_days if max_age_days is None else max_age_days,
        min_score=config.shrink_min_score if min_score is None else min_score,
        as_json=as_json,
    )


@shrink_app.command("execute")
def shrink_execute(
    ids: list[int] = typer.Argument(..., help="Observation ids to remove"),
    mode: str = typer.Option("delete", help="delete or summarize"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    db_path: str = typer.Option(None, help="Path to SQLite database"),
) -> None:
    """Delete or summarize observations, usually ids from `shrink analyze`."""
    execute_cmd(store_from_path=_store, db_path=db_path, ids=ids, mode=mode, yes=yes)


@app.command()
def serve(
    host: str = typer.Option(None, help="Bind host"),
    port: int = typer.Option(None, help="Bind port"),
) -> None:
    """Serve the local HTTP JSON API."""
    from .viewer import start_viewer

    config = load_config()
    start_viewer(host=host or config.viewer_host, port=port or config.viewer_port)


@app.command()
def mcp() -> None:
    """Run the MCP server over stdio."""
    from .mcp_server import run

    run()


if __name__ == "__main__":
    app()
