from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from keepmem import db
from keepmem.store import MemoryStore
from keepmem.store.utils import parse_time_bound, project_column_clause
from keepmem.utils import is_project_excluded, project_basename, resolve_project

T0 = 1_700_000_000_000


def test_initialize_schema_is_idempotent(tmp_path: Path) -> None:
    conn = db.connect(tmp_path / "mem.sqlite")
    db.initialize_schema(conn)
    db.initialize_schema(conn)

    tables = {
        row["name"]
        for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    }
    assert {
        "sessions",
        "observations",
        "observations_fts",
        "session_summaries",
        "user_prompts",
        "usage_events",
    } <= tables
    conn.close()


def test_remember_observation_requires_project_and_type(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")

    with pytest.raises(ValueError, match="project is required"):
        store.remember_observation("", "change", "title")
    with pytest.raises(ValueError, match="Observation type is required"):
        store.remember_observation("alpha", " ", "title")


def test_remember_observation_normalizes_project_and_type(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")

    obs_id = store.remember_observation(
        "/work/src/alpha", "Decision", "Pin sqlite version", created_at_epoch=T0
    )

    item = store.get_observation(obs_id)
    assert item is not None
    assert item["project"] == "alpha"
    assert item["type"] == "decision"
    assert item["created_at_epoch"] == T0
    assert item["created_at"].startswith("2023-11-14T22:13:20")


def test_scan_and_fetch_primitives(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    first = store.remember_observation("alpha", "change", "one", created_at_epoch=T0)
    second = store.remember_observation("alpha", "change", "two", created_at_epoch=T0 + 5)
    store.remember_observation("beta", "change", "three", created_at_epoch=T0 + 1)

    scanned = store.scan_observations_before(T0 + 5, project="alpha")
    fetched = store.fetch_observations([second, first, 404])

    assert [observation.id for observation in scanned] == [first]
    assert [observation.id for observation in fetched] == [first, second]
    assert store.count_observations() == 3
    assert store.count_observations("alpha") == 2


def test_delete_observation_reports_missing(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    obs_id = store.remember_observation("alpha", "change", "gone soon")

    assert store.delete_observation(obs_id) is True
    assert store.delete_observation(obs_id) is False


def test_list_projects_flags_excluded(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("KEEPMEM_EXCLUDED_PROJECTS", "Scratch")
    store = MemoryStore(tmp_path / "mem.sqlite")
    store.remember_observation("alpha", "change", "a", created_at_epoch=T0)
    store.remember_observation("alpha", "change", "b", created_at_epoch=T0 + 1)
    store.remember_observation("scratch", "change", "c", created_at_epoch=T0 + 2)

    projects = store.list_projects()

    assert projects == [
        {"project": "alpha", "observations": 2, "last_activity_epoch": T0 + 1, "excluded": False},
        {"project": "scratch", "observations": 1, "last_activity_epoch": T0 + 2, "excluded": True},
    ]


def test_usage_summary_groups_by_event(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    store.record_usage("search", tokens_read=10, metadata={"project": "alpha"})
    store.record_usage("search", tokens_read=5, metadata={"project": "beta"})
    store.record_usage("shrink_execute", tokens_saved=40)

    everything = store.usage_summary()
    alpha = store.usage_summary(project="alpha")

    assert [(row["event"], row["count"]) for row in everything] == [
        ("search", 2),
        ("shrink_execute", 1),
    ]
    assert alpha == [
        {"event": "search", "count": 1, "tokens_read": 10, "tokens_written": 0, "tokens_saved": 0}
    ]


def test_delete_trigger_keeps_fts_in_sync(tmp_path: Path) -> None:
    store = MemoryStore(tmp_path / "mem.sqlite")
    obs_id = store.remember_observation("alpha", "change", "quokka sighting")
    store.delete_observation(obs_id)

    rows = store.conn.execute(
        "SELECT rowid FROM observations_fts WHERE observations_fts MATCH 'quokka'"
    ).fetchall()
    assert rows == []


def test_parse_time_bound() -> None:
    assert parse_time_bound(None, name="date_start") is None
    assert parse_time_bound(" ", name="date_start") is None
    assert parse_time_bound(T0, name="date_start") == T0
    assert parse_time_bound(str(T0), name="date_start") == T0
    assert parse_time_bound("2023-11-14T22:13:20Z", name="date_start") == T0
    assert parse_time_bound("2023-11-14T22:13:20", name="date_start") == T0
    with pytest.raises(ValueError, match="date_end"):
        parse_time_bound(True, name="date_end")
    with pytest.raises(ValueError, match="date_end"):
        parse_time_bound("soon", name="date_end")


def test_project_helpers() -> None:
    assert project_basename("/work/src/alpha/") == "alpha"
    assert project_basename("C:\\work\\beta") == "beta"
    assert is_project_excluded("/work/Secret", ["secret"]) is True
    assert is_project_excluded("alpha", ["secret", " "]) is False
    assert is_project_excluded(None, ["secret"]) is False
    clause, params = project_column_clause("observations.project", "/work/alpha")
    assert "LIKE" in clause
    assert params == ["alpha", "%/alpha", "%\\alpha"]
    assert project_column_clause("observations.project", "  ") == ("", [])


def test_resolve_project_prefers_override_and_falls_back_to_dirname(tmp_path: Path) -> None:
    workdir = tmp_path / "plain-dir"
    workdir.mkdir()

    assert resolve_project(str(workdir), override=" gamma ") == "gamma"
    assert resolve_project(str(workdir), override="  ") is None
    assert resolve_project(str(workdir)) == "plain-dir"


def test_connect_enables_row_factory(tmp_path: Path) -> None:
    conn = db.connect(tmp_path / "nested" / "mem.sqlite")
    try:
        assert conn.row_factory is sqlite3.Row
    finally:
        conn.close()
