from __future__ import annotations

from typing import Any, Protocol

from ..config import KeepmemConfig
from ..shrink import ShrinkAnalyzer
from ..store import MemoryStore

SHRINK_PATHS = ("/api/shrink/analyze", "/api/shrink/execute")


class _ViewerHandler(Protocol):
    def _send_json(self, payload: dict[str, Any], status: int = 200) -> None: ...


def handle_post(
    handler: _ViewerHandler,
    store: MemoryStore,
    path: str,
    payload: dict[str, Any],
    *,
    config: KeepmemConfig,
) -> bool:
    analyzer = ShrinkAnalyzer(store)

    if path == "/api/shrink/analyze":
        analysis = analyzer.analyze(
            payload.get("project"),
            target_reduction=payload.get("target_reduction", config.shrink_target_reduction),
            min_age_days=payload.get("min_age_days", config.shrink_min_age_days),
            max_age_days=payload.get("max_age_days", config.shrink_max_age_days),
            min_score=payload.get("min_score", config.shrink_min_score),
        )
        handler._send_json(analysis.to_dict())
        return True

    if path == "/api/shrink/execute":
        if "observation_ids" not in payload:
            handler._send_json({"error": "observation_ids required"}, status=400)
            return True
        result = analyzer.execute(payload["observation_ids"], mode=payload.get("mode", "delete"))
        handler._send_json(result.to_dict())
        return True

    return False
