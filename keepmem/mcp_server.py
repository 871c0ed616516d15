from __future__ import annotations

import atexit
import logging
import os
import threading
import weakref
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

try:
    from mcp.server.fastmcp import FastMCP
except Exception as exc:  # pragma: no cover
    raise SystemExit(
        "mcp package is required for the MCP server. Install with `pip install -e .`"
    ) from exc

from .config import load_config
from .db import DEFAULT_DB_PATH
from .shrink import ShrinkAnalyzer
from .store import MemoryStore
from .utils import resolve_project

logger = logging.getLogger(__name__)


def build_store(*, check_same_thread: bool = True) -> MemoryStore:
    db_path = load_config().db_path or str(DEFAULT_DB_PATH)
    return MemoryStore(Path(db_path), check_same_thread=check_same_thread)


def build_server() -> FastMCP:
    mcp = FastMCP("keepmem")
    cfg = load_config()
    default_project = cfg.project or resolve_project(os.getcwd())
    thread_local = threading.local()
    store_lock = threading.Lock()
    store_pool: weakref.WeakSet[MemoryStore] = weakref.WeakSet()

    def get_store() -> MemoryStore:
        store = getattr(thread_local, "store", None)
        if store is None:
            store = build_store()
            thread_local.store = store
            with store_lock:
                store_pool.add(store)
        return store

    def close_all_stores() -> None:
        with store_lock:
            stores = list(store_pool)
        for store in stores:
            try:
                store.close()
            except Exception:
                continue

    atexit.register(close_all_stores)

    def with_store(handler: Callable[[MemoryStore], Dict[str, Any]]) -> Dict[str, Any]:
        try:
            return handler(get_store())
        except ValueError as exc:
            return {"error": str(exc)}

    @mcp.tool()
    def memory_search(
        query: str,
        project: Optional[str] = None,
        limit: int = cfg.search_limit,
        record_type: Optional[str] = None,
        date_start: Optional[Union[int, str]] = None,
        date_end: Optional[Union[int, str]] = None,
        obs_type: Optional[str] = None,
        order_by: str = "date_desc",
        all_projects: bool = False,
    ) -> Dict[str, Any]:
        def handler(store: MemoryStore) -> Dict[str, Any]:
            items = store.search_index(
                query,
                project=None if all_projects else (project or default_project),
                limit=limit,
                record_type=record_type,
                date_start=date_start,
                date_end=date_end,
                obs_type=obs_type,
                order_by=order_by,
                all_projects=all_projects,
            )
            return {"items": items}

        return with_store(handler)

    @mcp.tool()
    def memory_timeline(
        anchor: Optional[Union[int, str]] = None,
        query: Optional[str] = None,
        depth_before: int = cfg.timeline_depth,
        depth_after: int = cfg.timeline_depth,
        project: Optional[str] = None,
    ) -> Dict[str, Any]:
        def handler(store: MemoryStore) -> Dict[str, Any]:
            items = store.timeline(
                project=project or default_project,
                anchor=anchor,
                query=query,
                depth_before=depth_before,
                depth_after=depth_after,
            )
            return {"items": items}

        return with_store(handler)

    @mcp.tool()
    def memory_get_observations(
        ids: List[int],
        order_by: str = "date_desc",
        limit: Optional[int] = None,
        project: Optional[str] = None,
    ) -> Dict[str, Any]:
        def handler(store: MemoryStore) -> Dict[str, Any]:
            items = store.get_observations(ids, order_by=order_by, limit=limit, project=project)
            return {"items": items}

        return with_store(handler)

    @mcp.tool()
    def memory_shrink_analyze(
        project: Optional[str] = None,
        target_reduction: float = cfg.shrink_target_reduction,
        min_age_days: float = cfg.shrink_min_age_days,
        max_age_days: float = cfg.shrink_max_age_days,
        min_score: float = cfg.shrink_min_score,
    ) -> Dict[str, Any]:
        def handler(store: MemoryStore) -> Dict[str, Any]:
            analysis = ShrinkAnalyzer(store).analyze(
                project,
                target_reduction=target_reduction,
                min_age_days=min_age_days,
                max_age_days=max_age_days,
                min_score=min_score,
            )
            return analysis.to_dict()

        return with_store(handler)

    @mcp.tool()
    def memory_shrink_execute(observation_ids: List[int], mode: str = "delete") -> Dict[str, Any]:
        def handler(store: MemoryStore) -> Dict[str, Any]:
            return ShrinkAnalyzer(store).execute(observation_ids, mode=mode).to_dict()

        return with_store(handler)

    @mcp.tool()
    def memory_learn() -> Dict[str, Any]:
        return {
            "intro": "Use this tool when you're new to keepmem or unsure how to recall efficiently.",
            "recall": {
                "how": [
                    "Use memory_search to get compact index rows (ids, titles, token costs).",
                    "Use memory_timeline to see what happened around a promising result.",
                    "Use memory_get_observations for full records, only for the ids you need.",
                    "Stay project-scoped unless the user asks for cross-project context.",
                ],
                "examples": [
                    'memory_search(query="billing cache bug", limit=10)',
                    "memory_timeline(anchor=123, depth_before=3, depth_after=3)",
                    'memory_timeline(anchor="S42")',
                    "memory_get_observations(ids=[123, 456])",
                ],
            },
            "shrink": {
                "how": [
                    "Call memory_shrink_analyze to get a proposal; nothing is changed.",
                    "Review the candidate ids and drop any worth keeping.",
                    "Call memory_shrink_execute with the reviewed ids and mode delete or summarize.",
                ],
                "notes": [
                    "Ids removed since the analysis are reported as failures, not errors.",
                    "summarize folds the records of each project into one summary observation.",
                ],
            },
            "prompt_hint": (
                "At task start: memory_search; then memory_timeline + memory_get_observations "
                "for the few ids that matter."
            ),
        }

    return mcp


def run() -> None:
    server = build_server()
    logger.info("keepmem MCP server starting")
    server.run()


if __name__ == "__main__":
    run()
