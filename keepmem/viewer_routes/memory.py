from __future__ import annotations

from typing import Any, Protocol
from urllib.parse import parse_qs

from ..store import MemoryStore


class _ViewerHandler(Protocol):
    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None: ...


def _param(params: dict[str, list[str]], name: str) -> str | None:
    values = params.get(name)
    if not values:
        return None
    value = values[0].strip()
    return value or None


def _int_param(params: dict[str, list[str]], name: str, default: int | None) -> int | None:
    value = _param(params, name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer") from exc


def _bool_param(params: dict[str, list[str]], name: str) -> bool:
    return (_param(params, name) or "").lower() in {"1", "true", "yes", "on"}


def _ids_param(params: dict[str, list[str]]) -> list[str]:
    raw: list[str] = []
    for value in params.get("ids", []):
        raw.extend(part.strip() for part in value.split(",") if part.strip())
    return raw


def handle_get(
    handler: _ViewerHandler,
    store: MemoryStore,
    path: str,
    query: str,
    *,
    search_limit: int = 20,
    timeline_depth: int = 5,
) -> bool:
    params = parse_qs(query)

    if path == "/api/search":
        all_projects = _bool_param(params, "all_projects")
        items = store.search_index(
            _param(params, "query") or "",
            project=_param(params, "project"),
            limit=_int_param(params, "limit", search_limit),
            record_type=_param(params, "type"),
            date_start=_param(params, "date_start"),
            date_end=_param(params, "date_end"),
            obs_type=_param(params, "obs_type"),
            order_by=_param(params, "order_by") or "date_desc",
            all_projects=all_projects,
        )
        handler._send_json({"items": items})
        return True

    if path == "/api/timeline":
        items = store.timeline(
            project=_param(params, "project"),
            anchor=_param(params, "anchor"),
            query=_param(params, "query"),
            depth_before=_int_param(params, "depth_before", timeline_depth),
            depth_after=_int_param(params, "depth_after", timeline_depth),
        )
        handler._send_json({"items": items})
        return True

    if path == "/api/observations":
        items = store.get_observations(
            _ids_param(params),
            order_by=_param(params, "order_by") or "date_desc",
            limit=_int_param(params, "limit", None),
            project=_param(params, "project"),
        )
        handler._send_json({"items": items})
        return True

    if path == "/api/projects":
        handler._send_json({"projects": store.list_projects()})
        return True

    if path == "/api/stats":
        project = _param(params, "project")
        handler._send_json(
            {
                "observations": store.count_observations(project=project),
                "usage": store.usage_summary(project=project),
            }
        )
        return True

    return False
