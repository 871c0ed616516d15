from __future__ import annotations

import datetime as dt
from typing import TYPE_CHECKING, Any

from .. import db
from .utils import project_column_clause

if TYPE_CHECKING:
    from ._store import MemoryStore


def record_usage(
    store: MemoryStore,
    event: str,
    tokens_read: int = 0,
    tokens_written: int = 0,
    tokens_saved: int = 0,
    metadata: dict[str, Any] | None = None,
) -> int:
    created_at = dt.datetime.now(dt.UTC).isoformat()
    cur = store.conn.execute(
        """
        INSERT INTO usage_events(event, tokens_read, tokens_written, tokens_saved, created_at, metadata_json)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (
            event,
            int(tokens_read),
            int(tokens_written),
            int(tokens_saved),
            created_at,
            db.to_json(metadata),
        ),
    )
    store.conn.commit()
    lastrowid = cur.lastrowid
    if lastrowid is None:
        raise RuntimeError("Failed to record usage")
    return int(lastrowid)


def usage_summary(store: MemoryStore, project: str | None = None) -> list[dict[str, Any]]:
    where = ""
    params: list[Any] = []
    if project:
        meta_project_expr = (
            "CASE WHEN json_valid(metadata_json) = 1 "
            "THEN json_extract(metadata_json, '$.project') ELSE NULL END"
        )
        clause, params = project_column_clause(meta_project_expr, project)
        if clause:
            where = f"WHERE {clause}"
    rows = store.conn.execute(
        f"""
        SELECT event,
               COUNT(*) AS count,
               COALESCE(SUM(tokens_read), 0) AS tokens_read,
               COALESCE(SUM(tokens_written), 0) AS tokens_written,
               COALESCE(SUM(tokens_saved), 0) AS tokens_saved
        FROM usage_events
        {where}
        GROUP BY event
        ORDER BY event
        """,
        params,
    ).fetchall()
    return db.rows_to_dicts(rows)
