from __future__ import annotations

from rich import print

from .common import format_tokens


def init_db_cmd(*, store_from_path, db_path: str | None) -> None:
    """Create the SQLite database (no-op if it already exists)."""

    store = store_from_path(db_path)
    try:
        print(f"Initialized database at {store.db_path}")
    finally:
        store.close()


def stats_cmd(*, store_from_path, db_path: str | None, project: str | None) -> None:
    store = store_from_path(db_path)
    try:
        observations = store.count_observations(project=project)
        usage = store.usage_summary(project=project)
        db_path_label = store.db_path
    finally:
        store.close()

    print("[bold]Database[/bold]")
    print(f"- Path: {db_path_label}")
    print(f"- Observations: {observations}")

    print("\n[bold]Usage[/bold]")
    if not usage:
        print("- No usage events recorded yet")
        return
    for event in usage:
        print(
            f"- {event['event']}: {event['count']} "
            f"(read ~{format_tokens(event['tokens_read'])} tokens, "
            f"saved ~{format_tokens(event['tokens_saved'])} tokens)"
        )
