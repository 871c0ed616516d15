from __future__ import annotations

import datetime as dt
import math
from collections.abc import Iterable
from typing import Any

from ..utils import project_basename


def now_epoch_ms() -> int:
    return int(dt.datetime.now(dt.UTC).timestamp() * 1000)


def epoch_ms_to_iso(value: int) -> str:
    return dt.datetime.fromtimestamp(value / 1000, tz=dt.UTC).isoformat()


def parse_iso8601(value: str) -> dt.datetime | None:
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = dt.datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.UTC)
    return parsed.astimezone(dt.UTC)


def parse_time_bound(value: Any, *, name: str) -> int | None:
    """Accept epoch milliseconds or an ISO-8601 string; return epoch ms."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValueError(f"{name} must be epoch milliseconds or an ISO-8601 string")
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        raw = value.strip()
        if not raw:
            return None
        if raw.lstrip("-").isdigit():
            return int(raw)
        parsed = parse_iso8601(raw)
        if parsed is None:
            raise ValueError(f"{name} is not a valid date: {value!r}")
        return int(parsed.timestamp() * 1000)
    raise ValueError(f"{name} must be epoch milliseconds or an ISO-8601 string")


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def project_column_clause(column_expr: str, project: str) -> tuple[str, list[Any]]:
    project = project.strip()
    if not project:
        return "", []
    value = project
    if "/" in project or "\\" in project:
        base = project_basename(project)
        if not base:
            return "", []
        value = base
    return (
        f"({column_expr} = ? OR {column_expr} LIKE ? OR {column_expr} LIKE ?)",
        [value, f"%/{value}", f"%\\{value}"],
    )


def coerce_ids(ids: Any, *, name: str = "ids") -> list[int]:
    if ids is None:
        raise ValueError(f"{name} is required")
    if isinstance(ids, (str, bytes)) or not hasattr(ids, "__iter__"):
        raise ValueError(f"{name} must be a list of integer ids")
    result: list[int] = []
    for value in ids:
        if isinstance(value, bool):
            raise ValueError(f"{name} must contain integer ids, got {value!r}")
        if isinstance(value, int):
            result.append(value)
            continue
        if isinstance(value, str) and value.strip().isdigit():
            result.append(int(value.strip()))
            continue
        raise ValueError(f"{name} must contain integer ids, got {value!r}")
    return result


SQLITE_INTEGER_MIN = -(2**63)
SQLITE_INTEGER_MAX = 2**63 - 1


def storable_ids(ids: Iterable[int]) -> list[int]:
    """Drop ids SQLite cannot bind; no stored row can carry them."""
    return [value for value in ids if SQLITE_INTEGER_MIN <= value <= SQLITE_INTEGER_MAX]
