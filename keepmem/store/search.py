from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ..observation_types import glyph_for, parse_type_filter, validate_record_kind
from ..utils import project_basename
from .types import IndexRow
from .utils import (
    coerce_ids,
    epoch_ms_to_iso,
    estimate_tokens,
    parse_time_bound,
    storable_ids,
)

if TYPE_CHECKING:
    from ._store import MemoryStore

ORDER_BY_CHOICES = ("date_desc", "date_asc")
PROMPT_TITLE_CHARS = 80


@dataclass(frozen=True)
class _Stream:
    record_type: str
    kind: str
    table: str
    fts_table: str
    text_columns: tuple[str, ...]
    # Position among records sharing a timestamp in the merged stream.
    rank: int


STREAMS: dict[str, _Stream] = {
    "prompts": _Stream(
        record_type="prompts",
        kind="prompt",
        table="user_prompts",
        fts_table="user_prompts_fts",
        text_columns=("prompt_text",),
        rank=0,
    ),
    "observations": _Stream(
        record_type="observations",
        kind="observation",
        table="observations",
        fts_table="observations_fts",
        text_columns=("title", "subtitle", "narrative", "facts", "concepts"),
        rank=1,
    ),
    "sessions": _Stream(
        record_type="sessions",
        kind="session",
        table="session_summaries",
        fts_table="session_summaries_fts",
        text_columns=("request", "investigated", "learned", "completed", "next_steps", "notes"),
        rank=2,
    ),
}
STREAMS_BY_KIND = {stream.kind: stream for stream in STREAMS.values()}


def _expand_query(query: str) -> str:
    tokens = re.findall(r"[A-Za-z0-9_]+", query)
    tokens = [token for token in tokens if token.lower() not in {"or", "and", "not", "near"}]
    if not tokens:
        return ""
    return " OR ".join(f'"{token}"' for token in tokens)


def _positive_int(value: Any, *, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    if value < 1:
        raise ValueError(f"{name} must be at least 1")
    return value


def _non_negative_int(value: Any, *, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{name} must be an integer")
    if value < 0:
        raise ValueError(f"{name} must not be negative")
    return value


def _validate_order_by(order_by: str | None) -> str:
    value = (order_by or "date_desc").strip().lower()
    if value not in ORDER_BY_CHOICES:
        raise ValueError(f"Invalid order_by '{value}'. Allowed: {', '.join(ORDER_BY_CHOICES)}")
    return value


def _require_project(project: str | None, *, operation: str) -> str:
    value = (project or "").strip()
    if not value:
        raise ValueError(f"project is required for {operation}")
    return value


def _row_title(stream: _Stream, row: dict[str, Any]) -> str:
    if stream.kind == "observation":
        return str(row.get("title") or row.get("subtitle") or "(untitled)")
    if stream.kind == "session":
        return str(row.get("request") or row.get("completed") or "(session summary)")
    text = " ".join(str(row.get("prompt_text") or "").split())
    if len(text) > PROMPT_TITLE_CHARS:
        text = text[: PROMPT_TITLE_CHARS - 3].rstrip() + "..."
    return text or "(empty prompt)"


def _read_tokens(stream: _Stream, row: dict[str, Any]) -> int:
    text = "".join(f"{row[column]} " for column in stream.text_columns if row.get(column))
    return estimate_tokens(text)


def _index_row(stream: _Stream, row: dict[str, Any]) -> IndexRow:
    record_type = str(row.get("type") or "") if stream.kind == "observation" else stream.kind
    epoch = int(row["created_at_epoch"])
    return {
        "id": int(row["id"]),
        "kind": stream.kind,
        "created_at_epoch": epoch,
        "created_at": str(row.get("created_at") or epoch_ms_to_iso(epoch)),
        "type": record_type,
        "glyph": glyph_for(record_type),
        "title": _row_title(stream, row),
        "project": str(row.get("project") or ""),
        "read_tokens": _read_tokens(stream, row),
        "work_tokens": int(row.get("discovery_tokens") or 0) if stream.kind == "observation" else 0,
    }


def _stream_key(item: dict[str, Any]) -> tuple[int, int, int]:
    return (item["created_at_epoch"], STREAMS_BY_KIND[item["kind"]].rank, item["id"])


def _scope_clauses(
    store: MemoryStore,
    stream: _Stream,
    *,
    project: str | None,
    excluded: Iterable[str] = (),
) -> tuple[list[str], list[Any]]:
    where: list[str] = []
    params: list[Any] = []
    if project:
        clause, clause_params = store._project_clause(f"{stream.table}.project", project)
        if clause:
            where.append(clause)
            params.extend(clause_params)
    excluded_names = sorted(
        {project_basename(item.strip()).lower() for item in excluded if item and item.strip()}
    )
    if excluded_names:
        placeholders = ",".join("?" for _ in excluded_names)
        where.append(f"LOWER({stream.table}.project) NOT IN ({placeholders})")
        params.extend(excluded_names)
    return where, params


def _search_rows(
    store: MemoryStore,
    query: str,
    *,
    project: str | None,
    limit: int,
    record_types: list[str],
    start_epoch: int | None,
    end_epoch: int | None,
    obs_types: list[str],
    order_by: str,
    excluded: Iterable[str] = (),
) -> list[IndexRow]:
    fts_query = _expand_query(query)
    direction = "ASC" if order_by == "date_asc" else "DESC"
    excluded = list(excluded)
    merged: list[IndexRow] = []
    for record_type in record_types:
        stream = STREAMS[record_type]
        where, params = _scope_clauses(store, stream, project=project, excluded=excluded)
        from_clause = stream.table
        if fts_query:
            from_clause = (
                f"{stream.fts_table} JOIN {stream.table} ON {stream.table}.id = {stream.fts_table}.rowid"
            )
            where.insert(0, f"{stream.fts_table} MATCH ?")
            params.insert(0, fts_query)
        if start_epoch is not None:
            where.append(f"{stream.table}.created_at_epoch >= ?")
            params.append(start_epoch)
        if end_epoch is not None:
            where.append(f"{stream.table}.created_at_epoch <= ?")
            params.append(end_epoch)
        if obs_types and stream.kind == "observation":
            placeholders = ",".join("?" for _ in obs_types)
            where.append(f"{stream.table}.type IN ({placeholders})")
            params.extend(obs_types)
        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        rows = store.conn.execute(
            f"""
            SELECT {stream.table}.*
            FROM {from_clause}
            {where_sql}
            ORDER BY {stream.table}.created_at_epoch {direction}, {stream.table}.id {direction}
            LIMIT ?
            """,
            (*params, limit),
        ).fetchall()
        merged.extend(_index_row(stream, dict(row)) for row in rows)
    merged.sort(key=_stream_key, reverse=order_by == "date_desc")
    return merged[:limit]


def search_index(
    store: MemoryStore,
    query: str | None,
    *,
    project: str | None,
    limit: int = 20,
    record_type: str | None = None,
    date_start: Any = None,
    date_end: Any = None,
    obs_type: str | list[str] | None = None,
    order_by: str = "date_desc",
    all_projects: bool = False,
) -> list[IndexRow]:
    """Compact index rows for matching records, newest first by default.

    A blank query lists records by the remaining filters. When only
    observation types are filtered the session and prompt streams are
    skipped since they carry no observation type.
    """
    if query is None:
        raise ValueError("query is required")
    if not all_projects:
        project = _require_project(project, operation="search")
    else:
        project = None
    limit = _positive_int(limit, name="limit")
    kind = validate_record_kind(record_type)
    order_by = _validate_order_by(order_by)
    start_epoch = parse_time_bound(date_start, name="date_start")
    end_epoch = parse_time_bound(date_end, name="date_end")
    if start_epoch is not None and end_epoch is not None and start_epoch > end_epoch:
        raise ValueError("date_start must not be after date_end")
    obs_types = parse_type_filter(obs_type)
    if kind:
        record_types = [kind]
    elif obs_types:
        record_types = ["observations"]
    else:
        record_types = list(STREAMS)

    items = _search_rows(
        store,
        query,
        project=project,
        limit=limit,
        record_types=record_types,
        start_epoch=start_epoch,
        end_epoch=end_epoch,
        obs_types=obs_types,
        order_by=order_by,
        excluded=store.excluded_projects if all_projects else (),
    )
    store.record_usage(
        "search",
        tokens_read=sum(estimate_tokens(item["title"]) for item in items),
        metadata={
            "limit": limit,
            "results": len(items),
            "record_type": kind,
            "project": project,
        },
    )
    return items


def _parse_anchor(anchor: int | str) -> tuple[_Stream, int]:
    if isinstance(anchor, bool):
        raise ValueError(f"Invalid anchor {anchor!r}")
    if isinstance(anchor, int):
        return STREAMS["observations"], anchor
    raw = str(anchor).strip()
    if raw.isdigit():
        return STREAMS["observations"], int(raw)
    prefix, rest = raw[:1].upper(), raw[1:]
    if rest.isdigit():
        if prefix == "S":
            return STREAMS["sessions"], int(rest)
        if prefix == "P":
            return STREAMS["prompts"], int(rest)
    raise ValueError(
        f"Invalid anchor {anchor!r}: use an observation id, 'S<id>' for a session or 'P<id>' for a prompt"
    )


def _fetch_anchor(
    store: MemoryStore, stream: _Stream, record_id: int, project: str
) -> dict[str, Any] | None:
    if not storable_ids([record_id]):
        return None
    where, params = _scope_clauses(store, stream, project=project)
    where.insert(0, f"{stream.table}.id = ?")
    params.insert(0, record_id)
    row = store.conn.execute(
        f"SELECT * FROM {stream.table} WHERE {' AND '.join(where)}",
        params,
    ).fetchone()
    return dict(row) if row else None


def _neighbors(
    store: MemoryStore,
    anchor_key: tuple[int, int, int],
    project: str,
    depth: int,
    *,
    before: bool,
) -> list[IndexRow]:
    if depth <= 0:
        return []
    anchor_epoch, anchor_rank, anchor_id = anchor_key
    op = "<" if before else ">"
    direction = "DESC" if before else "ASC"
    collected: list[IndexRow] = []
    for stream in STREAMS.values():
        where, params = _scope_clauses(store, stream, project=project)
        column = f"{stream.table}.created_at_epoch"
        # Equal timestamps are ordered by stream rank, then id.
        if stream.rank == anchor_rank:
            where.append(f"({column} {op} ? OR ({column} = ? AND {stream.table}.id {op} ?))")
            params.extend([anchor_epoch, anchor_epoch, anchor_id])
        elif (stream.rank < anchor_rank) == before:
            where.append(f"{column} {op}= ?")
            params.append(anchor_epoch)
        else:
            where.append(f"{column} {op} ?")
            params.append(anchor_epoch)
        rows = store.conn.execute(
            f"""
            SELECT * FROM {stream.table}
            WHERE {" AND ".join(where)}
            ORDER BY {column} {direction}, {stream.table}.id {direction}
            LIMIT ?
            """,
            (*params, depth),
        ).fetchall()
        collected.extend(_index_row(stream, dict(row)) for row in rows)
    collected.sort(key=_stream_key, reverse=before)
    return collected[:depth]


def timeline(
    store: MemoryStore,
    *,
    project: str | None,
    anchor: int | str | None = None,
    query: str | None = None,
    depth_before: int = 5,
    depth_after: int = 5,
) -> list[dict[str, Any]]:
    """Chronological window of prompts, observations and sessions around an anchor.

    Sides with fewer records than requested are truncated; the window is
    never padded from the opposite side. An anchor that cannot be resolved
    inside the project, or a query with no searchable terms, yields an
    empty list.
    """
    project = _require_project(project, operation="timeline")
    depth_before = _non_negative_int(depth_before, name="depth_before")
    depth_after = _non_negative_int(depth_after, name="depth_after")
    if anchor is not None and not str(anchor).strip():
        anchor = None
    if anchor is None and not (query or "").strip():
        raise ValueError("timeline requires an anchor or a query")
    if anchor is None and not _expand_query(query or ""):
        return []

    anchor_row: dict[str, Any] | None = None
    stream = STREAMS["observations"]
    if anchor is not None:
        stream, record_id = _parse_anchor(anchor)
        anchor_row = _fetch_anchor(store, stream, record_id, project)
    else:
        matches = _search_rows(
            store,
            query or "",
            project=project,
            limit=1,
            record_types=["observations"],
            start_epoch=None,
            end_epoch=None,
            obs_types=[],
            order_by="date_desc",
        )
        if matches:
            anchor_row = _fetch_anchor(store, stream, matches[0]["id"], project)
    if anchor_row is None:
        return []

    anchor_item = _index_row(stream, anchor_row)
    anchor_key = _stream_key(anchor_item)
    before = _neighbors(store, anchor_key, project, depth_before, before=True)
    after = _neighbors(store, anchor_key, project, depth_after, before=False)

    items: list[dict[str, Any]] = []
    for item in reversed(before):
        items.append({**item, "is_anchor": False})
    items.append({**anchor_item, "is_anchor": True})
    for item in after:
        items.append({**item, "is_anchor": False})

    store.record_usage(
        "timeline",
        tokens_read=sum(item["read_tokens"] for item in items),
        metadata={
            "depth_before": depth_before,
            "depth_after": depth_after,
            "project": project,
        },
    )
    return items


def get_observations(
    store: MemoryStore,
    ids: Iterable[int],
    *,
    order_by: str = "date_desc",
    limit: int | None = None,
    project: str | None = None,
) -> list[dict[str, Any]]:
    requested = list(dict.fromkeys(coerce_ids(ids)))
    id_list = storable_ids(requested)
    order_by = _validate_order_by(order_by)
    if limit is not None:
        limit = _positive_int(limit, name="limit")
    if not id_list:
        return []

    placeholders = ",".join("?" for _ in id_list)
    where = [f"observations.id IN ({placeholders})"]
    params: list[Any] = list(id_list)
    if project:
        clause, clause_params = store._project_clause("observations.project", project)
        if clause:
            where.append(clause)
            params.extend(clause_params)
    direction = "ASC" if order_by == "date_asc" else "DESC"
    sql = f"""
        SELECT * FROM observations
        WHERE {" AND ".join(where)}
        ORDER BY observations.created_at_epoch {direction}, observations.id {direction}
    """
    if limit is not None:
        sql += " LIMIT ?"
        params.append(limit)
    rows = store.conn.execute(sql, params).fetchall()
    results = [store.observation_to_dict(row) for row in rows]
    store.record_usage(
        "get_observations",
        tokens_read=sum(_read_tokens(STREAMS["observations"], dict(row)) for row in rows),
        metadata={"requested": len(requested), "count": len(results), "project": project},
    )
    return results
