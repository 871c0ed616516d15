import json
from pathlib import Path

import pytest

from keepmem.config import (
    get_config_path,
    load_config,
    read_config_file,
)


def test_read_config_file_rejects_invalid_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{not-json}")
    with pytest.raises(ValueError, match="invalid config json"):
        read_config_file(config_path)


def test_read_config_file_rejects_non_object(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("[1, 2]")
    with pytest.raises(ValueError, match="config must be an object"):
        read_config_file(config_path)


def test_read_config_file_missing_or_blank(tmp_path: Path) -> None:
    assert read_config_file(tmp_path / "missing.json") == {}
    blank = tmp_path / "blank.json"
    blank.write_text("  \n")
    assert read_config_file(blank) == {}


def test_get_config_path_uses_env(tmp_path: Path, monkeypatch) -> None:
    target = tmp_path / "custom.json"
    monkeypatch.setenv("KEEPMEM_CONFIG", str(target))
    assert get_config_path() == target


def test_load_config_defaults(tmp_path: Path) -> None:
    cfg = load_config(tmp_path / "missing.json")

    assert cfg.db_path is None
    assert cfg.excluded_projects == []
    assert cfg.search_limit == 20
    assert cfg.timeline_depth == 5
    assert cfg.shrink_target_reduction == 0.3
    assert cfg.shrink_min_age_days == 7
    assert cfg.shrink_max_age_days == 180
    assert cfg.shrink_min_score == 0.6


def test_load_config_reads_file_values(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(
        json.dumps(
            {
                "search_limit": 7,
                "excluded_projects": "scratch, secret",
                "shrink_min_score": 0.4,
                "unknown_key": "ignored",
            }
        )
    )

    cfg = load_config(config_path)

    assert cfg.search_limit == 7
    assert cfg.excluded_projects == ["scratch", "secret"]
    assert cfg.shrink_min_score == 0.4
    assert not hasattr(cfg, "unknown_key")


def test_env_overrides_take_precedence(tmp_path: Path, monkeypatch) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({"timeline_depth": 2, "excluded_projects": ["a"]}))
    monkeypatch.setenv("KEEPMEM_TIMELINE_DEPTH", "9")
    monkeypatch.setenv("KEEPMEM_EXCLUDED_PROJECTS", "b,c")
    monkeypatch.setenv("KEEPMEM_DB", str(tmp_path / "mem.sqlite"))

    cfg = load_config(config_path)

    assert cfg.timeline_depth == 9
    assert cfg.excluded_projects == ["b", "c"]
    assert cfg.db_path == str(tmp_path / "mem.sqlite")


def test_load_config_ignores_invalid_file(tmp_path: Path) -> None:
    config_path = tmp_path / "config.json"
    config_path.write_text("{broken")

    assert load_config(config_path).search_limit == 20
