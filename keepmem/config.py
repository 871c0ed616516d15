from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/keepmem/config.json").expanduser()


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("KEEPMEM_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


@dataclass
class KeepmemConfig:
    db_path: str | None = None
    project: str | None = None
    excluded_projects: list[str] = field(default_factory=list)
    search_limit: int = 20
    timeline_depth: int = 5
    shrink_target_reduction: float = 0.3
    shrink_min_age_days: int = 7
    shrink_max_age_days: int = 180
    shrink_min_score: float = 0.6
    viewer_host: str = "127.0.0.1"
    viewer_port: int = 38777


def _parse_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, str):
        items = value.split(",")
    elif isinstance(value, list):
        items = [str(item) for item in value]
    else:
        return []
    return [item.strip() for item in items if item and item.strip()]


def load_config(path: Path | None = None) -> KeepmemConfig:
    cfg = KeepmemConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            data = {}
        if isinstance(data, dict):
            cfg = _apply_dict(cfg, data)
    cfg = _apply_env(cfg)
    return cfg


def _apply_dict(cfg: KeepmemConfig, data: dict[str, Any]) -> KeepmemConfig:
    for key, value in data.items():
        if not hasattr(cfg, key):
            continue
        if key == "excluded_projects":
            value = _parse_list(value)
        setattr(cfg, key, value)
    return cfg


def _apply_env(cfg: KeepmemConfig) -> KeepmemConfig:
    cfg.db_path = os.getenv("KEEPMEM_DB", cfg.db_path)
    cfg.project = os.getenv("KEEPMEM_PROJECT", cfg.project)
    excluded = os.getenv("KEEPMEM_EXCLUDED_PROJECTS")
    if excluded is not None:
        cfg.excluded_projects = _parse_list(excluded)
    cfg.search_limit = int(os.getenv("KEEPMEM_SEARCH_LIMIT", cfg.search_limit))
    cfg.timeline_depth = int(os.getenv("KEEPMEM_TIMELINE_DEPTH", cfg.timeline_depth))
    cfg.shrink_target_reduction = float(
        os.getenv("KEEPMEM_SHRINK_TARGET_REDUCTION", cfg.shrink_target_reduction)
    )
    cfg.shrink_min_age_days = int(
        os.getenv("KEEPMEM_SHRINK_MIN_AGE_DAYS", cfg.shrink_min_age_days)
    )
    cfg.shrink_max_age_days = int(
        os.getenv("KEEPMEM_SHRINK_MAX_AGE_DAYS", cfg.shrink_max_age_days)
    )
    cfg.shrink_min_score = float(os.getenv("KEEPMEM_SHRINK_MIN_SCORE", cfg.shrink_min_score))
    cfg.viewer_host = os.getenv("KEEPMEM_VIEWER_HOST", cfg.viewer_host)
    cfg.viewer_port = int(os.getenv("KEEPMEM_VIEWER_PORT", cfg.viewer_port))
    return cfg
