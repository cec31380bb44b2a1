"""JSON health endpoint: ledger summary plus scheduler stats."""

from __future__ import annotations

import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)

HEALTH_PATHS = ("/", "/health", "/healthz")


class HealthServer:
    """
    Serve the status provider's payload as JSON.

    The response is 200 while `payload["ok"]` is truthy and 503 otherwise,
    so a halted portfolio shows as unhealthy to load balancers and probes.
    A provider that raises yields a 500 with the error message.
    """

    def __init__(self, port: int, status_provider: Callable[[], Dict[str, Any]], host: str = "127.0.0.1"):
        self._host = host
        self._port = int(port)
        self._status_provider = status_provider
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> Optional[int]:
        if self._server is None:
            return None
        return self._server.server_port

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        if self._thread:
            return
        self._server = ThreadingHTTPServer((self._host, self._port), self._build_handler(self._status_provider))
        self._server.daemon_threads = True
        self._thread = threading.Thread(target=self._server.serve_forever, name="health-server", daemon=True)
        self._thread.start()
        logger.info("Health server listening on %s:%s", self._host, self._server.server_port)

    def stop(self) -> None:
        if not self._server:
            return
        try:
            self._server.shutdown()
            self._server.server_close()
        except OSError as exc:
            logger.warning("Failed shutting down health server: %s", exc)
        if self._thread:
            self._thread.join(timeout=3)
        self._thread = None
        self._server = None

    @staticmethod
    def _build_handler(status_provider: Callable[[], Dict[str, Any]]):
        provider = status_provider

        class HealthHandler(BaseHTTPRequestHandler):
            def do_GET(self):  # type: ignore[override]
                if self.path.split("?", 1)[0] not in HEALTH_PATHS:
                    self.send_response(404)
                    self.end_headers()
                    return

                try:
                    payload = provider() or {}
                    status = 200 if payload.get("ok", True) else 503
                except Exception as exc:
                    logger.error("Health status provider failed: %s", exc, exc_info=True)
                    payload = {"ok": False, "error": str(exc)}
                    status = 500

                body = json.dumps(payload, default=str).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def log_message(self, format: str, *args: Any) -> None:  # pragma: no cover
                return

        return HealthHandler


__all__ = ["HealthServer"]
