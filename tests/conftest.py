from __future__ import annotations

from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def _isolate_keepmem_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("KEEPMEM_CONFIG", str(tmp_path / "config.json"))
    for name in (
        "KEEPMEM_DB",
        "KEEPMEM_PROJECT",
        "KEEPMEM_EXCLUDED_PROJECTS",
        "KEEPMEM_SEARCH_LIMIT",
        "KEEPMEM_TIMELINE_DEPTH",
    ):
        monkeypatch.delenv(name, raising=False)
