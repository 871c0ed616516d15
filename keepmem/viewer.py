from __future__ import annotations

import logging
import os
import socket
import sqlite3
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import urlparse

from .config import KeepmemConfig, load_config
from .db import DEFAULT_DB_PATH
from .store import MemoryStore
from .viewer_http import is_foreign_request, read_json_body, send_json_response
from .viewer_routes import memory as viewer_routes_memory
from .viewer_routes import shrink as viewer_routes_shrink

logger = logging.getLogger(__name__)

DEFAULT_VIEWER_HOST = "127.0.0.1"
DEFAULT_VIEWER_PORT = 38777


def _open_store(config: KeepmemConfig) -> MemoryStore:
    return MemoryStore(config.db_path or DEFAULT_DB_PATH)


class ViewerHandler(BaseHTTPRequestHandler):
    def _send_json(self, payload: dict, status: int = 200) -> None:
        send_json_response(self, payload, status=status)

    def _read_json(self) -> dict[str, Any]:
        return read_json_body(self)

    def _send_internal_error(self, exc: Exception) -> None:
        payload: dict[str, Any] = {"error": "internal server error"}
        if os.environ.get("KEEPMEM_VIEWER_DEBUG") == "1":
            payload["detail"] = str(exc)
        self._send_json(payload, status=500)

    def log_message(self, format: str, *args: object) -> None:  # noqa: A003
        if os.environ.get("KEEPMEM_VIEWER_LOGS") == "1":
            super().log_message(format, *args)

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if not parsed.path.startswith("/api/"):
            self.send_response(404)
            self.end_headers()
            return

        config = load_config()
        store: MemoryStore | None = None
        try:
            store = _open_store(config)
            if viewer_routes_memory.handle_get(
                self,
                store,
                parsed.path,
                parsed.query,
                search_limit=config.search_limit,
                timeline_depth=config.timeline_depth,
            ):
                return
            self._send_json({"error": "not found"}, status=404)
        except ValueError as exc:
            self._send_json({"error": str(exc)}, status=400)
        except sqlite3.Error as exc:
            logger.exception("viewer GET %s failed", parsed.path)
            self._send_internal_error(exc)
        finally:
            if store is not None:
                store.close()

    def do_POST(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        if parsed.path not in viewer_routes_shrink.SHRINK_PATHS:
            self._send_json({"error": "not found"}, status=404)
            return
        if is_foreign_request(self):
            self._send_json({"error": "forbidden"}, status=403)
            return

        config = load_config()
        store: MemoryStore | None = None
        try:
            payload = self._read_json()
            store = _open_store(config)
            if viewer_routes_shrink.handle_post(
                self, store, parsed.path, payload, config=config
            ):
                return
            self._send_json({"error": "not found"}, status=404)
        except ValueError as exc:
            self._send_json({"error": str(exc)}, status=400)
        except sqlite3.Error as exc:
            logger.exception("viewer POST %s failed", parsed.path)
            self._send_internal_error(exc)
        finally:
            if store is not None:
                store.close()


def _serve(host: str, port: int) -> None:
    server = HTTPServer((host, port), ViewerHandler)
    logger.info("keepmem viewer listening on http://%s:%s", host, port)
    server.serve_forever()


def start_viewer(
    host: str = DEFAULT_VIEWER_HOST,
    port: int = DEFAULT_VIEWER_PORT,
    background: bool = False,
) -> None:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.settimeout(0.2)
        try:
            if sock.connect_ex((host, port)) == 0:
                logger.info("keepmem viewer already running on %s:%s", host, port)
                return
        except OSError:
            pass
    if background:
        thread = threading.Thread(target=_serve, args=(host, port), daemon=True)
        thread.start()
    else:
        _serve(host, port)
