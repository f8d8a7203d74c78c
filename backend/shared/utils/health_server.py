"""
Minimal HTTP server for the sync worker.
Serves GET /health and GET /status on PORT so platform healthchecks succeed.
Runs in a daemon thread; no-op when PORT is not set (e.g. local dev).
"""
from __future__ import annotations

import json
import os
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Callable, Optional

StatusProvider = Callable[[], dict[str, Any]]


def start_health_server(service_name: str, status_provider: Optional[StatusProvider] = None) -> bool:
    """
    Start a daemon thread that listens on PORT.

    GET /health answers a static document; GET /status serialises whatever
    status_provider returns at request time. Returns True when started.
    """
    port_str = os.environ.get("PORT")
    if not port_str:
        return False
    try:
        port = int(port_str)
    except ValueError:
        return False

    health = json.dumps({"status": "ok", "service": service_name}).encode("utf-8")

    class Handler(BaseHTTPRequestHandler):
        def _send_json(self, code: int, body: bytes) -> None:
            self.send_response(code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(body)))
            self.end_headers()
            self.wfile.write(body)

        def do_GET(self) -> None:
            path = self.path.rstrip("/")
            if path == "/health":
                self._send_json(200, health)
            elif path == "/status" and status_provider is not None:
                body = json.dumps({"service": service_name, **status_provider()}, default=str)
                self._send_json(200, body.encode("utf-8"))
            else:
                self.send_response(404)
                self.end_headers()

        def log_message(self, format: str, *args: object) -> None:
            pass  # Suppress request logging

    def serve() -> None:
        with HTTPServer(("0.0.0.0", port), Handler) as httpd:
            httpd.serve_forever()

    t = threading.Thread(target=serve, daemon=True)
    t.start()
    return True
