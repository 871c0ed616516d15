from __future__ import annotations

import json
from http.server import BaseHTTPRequestHandler
from typing import Any
from urllib.parse import urlsplit

LOOPBACK_HOSTS = frozenset({"127.0.0.1", "localhost", "::1"})
SAME_SITE_FETCHES = frozenset({"same-origin", "same-site", "none"})


def send_json_response(
    handler: BaseHTTPRequestHandler,
    payload: dict[str, Any],
    status: int = 200,
) -> None:
    body = json.dumps(payload, ensure_ascii=False).encode("utf-8")
    handler.send_response(status)
    handler.send_header("Content-Type", "application/json; charset=utf-8")
    handler.send_header("Content-Length", str(len(body)))
    handler.end_headers()
    handler.wfile.write(body)


def read_json_body(handler: BaseHTTPRequestHandler) -> dict[str, Any]:
    """Request body as a JSON object; an empty body reads as ``{}``."""
    try:
        length = int(handler.headers.get("Content-Length") or 0)
    except ValueError as exc:
        raise ValueError("invalid Content-Length") from exc
    raw = handler.rfile.read(length) if length > 0 else b""
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ValueError("request body must be a JSON object") from exc
    if not isinstance(payload, dict):
        raise ValueError("request body must be a JSON object")
    return payload


def is_loopback_url(url: str) -> bool:
    try:
        parts = urlsplit(url)
        host = parts.hostname
        _ = parts.port
    except ValueError:
        return False
    return parts.scheme == "http" and host in LOOPBACK_HOSTS and not parts.username


def is_foreign_request(handler: BaseHTTPRequestHandler) -> bool:
    """True when a browser page outside the loopback API sent this request.

    Requests without browser headers (curl, agents) are accepted.
    """
    origin = handler.headers.get("Origin")
    if origin:
        return not is_loopback_url(origin)
    fetch_site = (handler.headers.get("Sec-Fetch-Site") or "").strip().lower()
    if fetch_site and fetch_site not in SAME_SITE_FETCHES:
        return True
    referer = handler.headers.get("Referer")
    return bool(referer) and not is_loopback_url(referer)
