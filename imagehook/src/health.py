from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any

from prometheus_client import CONTENT_TYPE_LATEST, generate_latest


class _HealthHandler(BaseHTTPRequestHandler):
    """HTTP handler serving liveness, readiness, and Prometheus metrics endpoints."""

    ready_event: threading.Event
    watcher_states: Callable[[], dict[str, bool]]

    def _respond(
        self, status: int, body: bytes = b"", content_type: str | None = None
    ) -> None:
        self.send_response(status)
        if content_type:
            self.send_header("Content-Type", content_type)
        self.end_headers()
        if body:
            self.wfile.write(body)

    def _readiness_body(self) -> bytes:
        states = self.watcher_states()
        return " ".join(
            f"{kind}={'true' if ready else 'false'}" for kind, ready in sorted(states.items())
        ).encode()

    def do_GET(self) -> None:
        if self.path == "/healthz":
            self._respond(200, b"ok")
        elif self.path == "/readyz":
            status = 200 if self.ready_event.is_set() else 503
            self._respond(status, self._readiness_body())
        elif self.path == "/metrics":
            self._respond(200, generate_latest(), CONTENT_TYPE_LATEST)
        else:
            self._respond(404)

    def log_message(self, fmt: str, *args: Any) -> None:
        logging.getLogger("imagehook.health").debug(fmt, *args)


def make_health_handler(
    ready: threading.Event,
    watcher_states: Callable[[], dict[str, bool]] | None = None,
) -> type[_HealthHandler]:
    """Return a handler class bound to the controller's readiness state.

    Uses class-level attribute binding so the stdlib HTTPServer can
    instantiate handlers without constructor arguments.
    """
    states = watcher_states or dict

    class _BoundHealthHandler(_HealthHandler):
        ready_event = ready
        watcher_states = staticmethod(states)

    return _BoundHealthHandler


def start_health_server(
    ready: threading.Event,
    port: int,
    watcher_states: Callable[[], dict[str, bool]] | None = None,
) -> ThreadingHTTPServer:
    """Start the health/metrics HTTP server in a daemon thread and return it."""
    handler_class = make_health_handler(ready, watcher_states=watcher_states)
    server = ThreadingHTTPServer(("0.0.0.0", port), handler_class)  # noqa: S104
    server.daemon_threads = True
    server.block_on_close = False
    threading.Thread(target=server.serve_forever, daemon=True).start()
    logging.getLogger(__name__).info("Health server listening on :%d", port)
    return server
