from __future__ import annotations

import http.client
import json
import threading
from collections.abc import Iterator
from http.server import HTTPServer
from pathlib import Path
from typing import Any

import pytest

from keepmem.scoring import DAY_MS
from keepmem.store import MemoryStore
from keepmem.store.utils import now_epoch_ms
from keepmem.viewer import ViewerHandler


@pytest.fixture
def viewer(tmp_path: Path, monkeypatch) -> Iterator[tuple[int, dict[str, int]]]:
    db_path = tmp_path / "mem.sqlite"
    monkeypatch.setenv("KEEPMEM_DB", str(db_path))
    old = now_epoch_ms() - 200 * DAY_MS
    store = MemoryStore(db_path)
    ids = {
        "stale": store.remember_observation(
            "alpha", "change", "Bumped cache ttl", created_at_epoch=old
        ),
        "decision": store.remember_observation(
            "alpha",
            "decision",
            "Keep cache per worker",
            narrative="Shared cache caused lock contention.",
            created_at_epoch=old + 1_000,
        ),
        "session": store.add_session_summary("alpha", "cache tuning", created_at_epoch=old + 2_000),
    }
    store.close()

    server = HTTPServer(("127.0.0.1", 0), ViewerHandler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield int(server.server_address[1]), ids
    finally:
        server.shutdown()
        server.server_close()


def _request(
    port: int, method: str, path: str, body: dict[str, Any] | None = None, **headers: str
) -> tuple[int, dict[str, Any]]:
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=2)
    try:
        payload = json.dumps(body).encode("utf-8") if body is not None else None
        request_headers = {"Content-Type": "application/json", **headers}
        conn.request(method, path, body=payload, headers=request_headers)
        resp = conn.getresponse()
        return resp.status, json.loads(resp.read().decode("utf-8"))
    finally:
        conn.close()


def test_search_endpoint(viewer) -> None:
    port, ids = viewer

    status, payload = _request(port, "GET", "/api/search?query=cache&project=alpha&limit=2")

    assert status == 200
    assert [(item["kind"], item["id"]) for item in payload["items"]] == [
        ("session", ids["session"]),
        ("observation", ids["decision"]),
    ]


def test_search_endpoint_requires_project(viewer) -> None:
    port, _ = viewer

    status, payload = _request(port, "GET", "/api/search?query=cache")

    assert status == 400
    assert "project is required" in payload["error"]


def test_search_endpoint_rejects_bad_limit(viewer) -> None:
    port, _ = viewer

    status, payload = _request(port, "GET", "/api/search?query=cache&project=alpha&limit=ten")

    assert status == 400
    assert payload["error"] == "limit must be an integer"


def test_timeline_endpoint(viewer) -> None:
    port, ids = viewer

    status, payload = _request(
        port,
        "GET",
        f"/api/timeline?project=alpha&anchor={ids['decision']}&depth_before=1&depth_after=1",
    )

    assert status == 200
    assert [item["id"] for item in payload["items"]] == [
        ids["stale"],
        ids["decision"],
        ids["session"],
    ]
    assert [item["is_anchor"] for item in payload["items"]] == [False, True, False]


def test_observations_endpoint(viewer) -> None:
    port, ids = viewer

    status, payload = _request(port, "GET", f"/api/observations?ids={ids['stale']},999")

    assert status == 200
    assert [item["title"] for item in payload["items"]] == ["Bumped cache ttl"]


def test_projects_and_stats_endpoints(viewer) -> None:
    port, _ = viewer

    status, projects = _request(port, "GET", "/api/projects")
    stats_status, stats = _request(port, "GET", "/api/stats?project=alpha")

    assert status == 200
    assert projects["projects"][0]["project"] == "alpha"
    assert projects["projects"][0]["observations"] == 2
    assert stats_status == 200
    assert stats["observations"] == 2
    assert isinstance(stats["usage"], list)


def test_unknown_path_is_not_found(viewer) -> None:
    port, _ = viewer

    status, payload = _request(port, "GET", "/api/nope")

    assert status == 404
    assert payload == {"error": "not found"}


def test_shrink_analyze_then_execute(viewer) -> None:
    port, ids = viewer

    status, analysis = _request(
        port, "POST", "/api/shrink/analyze", {"project": "alpha", "target_reduction": 0.5}
    )
    assert status == 200
    assert [candidate["id"] for candidate in analysis["candidates"]] == [ids["stale"]]
    assert analysis["total_observations"] == 2

    status, result = _request(
        port,
        "POST",
        "/api/shrink/execute",
        {"observation_ids": [candidate["id"] for candidate in analysis["candidates"]]},
    )
    assert status == 200
    assert result == {"deleted": 1, "failed": 0}


def test_shrink_execute_summarize(viewer) -> None:
    port, ids = viewer

    status, result = _request(
        port,
        "POST",
        "/api/shrink/execute",
        {"observation_ids": [ids["stale"], ids["decision"]], "mode": "summarize"},
    )

    assert status == 200
    assert result["deleted"] == 2
    assert result["summarized"] == 2
    assert len(result["summary_ids"]) == 1


def test_shrink_execute_validation_errors(viewer) -> None:
    port, ids = viewer

    missing_status, missing = _request(port, "POST", "/api/shrink/execute", {})
    mode_status, mode = _request(
        port, "POST", "/api/shrink/execute", {"observation_ids": [ids["stale"]], "mode": "burn"}
    )
    analyze_status, analyze = _request(
        port, "POST", "/api/shrink/analyze", {"project": "alpha", "min_score": 3}
    )

    assert missing_status == 400
    assert missing == {"error": "observation_ids required"}
    assert mode_status == 400
    assert "Invalid shrink mode" in mode["error"]
    assert analyze_status == 400
    assert "min_score" in analyze["error"]


def test_shrink_rejects_cross_origin(viewer) -> None:
    port, ids = viewer

    status, payload = _request(
        port,
        "POST",
        "/api/shrink/execute",
        {"observation_ids": [ids["stale"]]},
        Origin="https://evil.example",
    )

    assert status == 403
    assert payload == {"error": "forbidden"}


def test_shrink_rejects_mistyped_fields(viewer) -> None:
    port, ids = viewer

    project_status, project = _request(port, "POST", "/api/shrink/analyze", {"project": 5})
    mode_status, mode = _request(
        port, "POST", "/api/shrink/execute", {"observation_ids": [ids["stale"]], "mode": 5}
    )

    assert project_status == 400
    assert project == {"error": "project must be a string"}
    assert mode_status == 400
    assert "Invalid shrink mode" in mode["error"]


def test_shrink_rejects_malformed_body(viewer) -> None:
    port, _ids = viewer

    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=2)
    try:
        conn.request(
            "POST",
            "/api/shrink/execute",
            body=b"[1, 2",
            headers={"Content-Type": "application/json"},
        )
        resp = conn.getresponse()
        status, payload = resp.status, json.loads(resp.read().decode("utf-8"))
    finally:
        conn.close()

    assert status == 400
    assert payload == {"error": "request body must be a JSON object"}


def test_shrink_execute_counts_out_of_range_ids(viewer) -> None:
    port, ids = viewer

    status, result = _request(
        port, "POST", "/api/shrink/execute", {"observation_ids": [ids["stale"], 2**64]}
    )

    assert status == 200
    assert result == {"deleted": 1, "failed": 1}
