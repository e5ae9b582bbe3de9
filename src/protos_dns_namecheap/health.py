"""Optional HTTP health endpoint for container liveness and readiness checks."""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import structlog

from .models import ReconciliationOutcome

logger = structlog.get_logger()


class HealthState:
    """Outcome of the most recent reconciliation cycle, shared with the server thread."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.last_outcome: ReconciliationOutcome | None = None
        self.last_cycle_at: float | None = None
        self.last_converged_at: float | None = None

    def record(self, outcome: ReconciliationOutcome) -> None:
        with self._lock:
            now = time.time()
            self.last_outcome = outcome
            self.last_cycle_at = now
            if outcome.converged:
                self.last_converged_at = now

    def is_ready(self) -> bool:
        """Ready once any cycle has left the registrar converged."""
        with self._lock:
            return self.last_converged_at is not None

    def snapshot(self) -> dict[str, object]:
        with self._lock:
            outcome = self.last_outcome
            return {
                "last_cycle_at": self.last_cycle_at,
                "last_converged_at": self.last_converged_at,
                "in_sync": outcome.in_sync if outcome else None,
                "verified": outcome.verified if outcome else None,
                "stalled": outcome.stalled if outcome else None,
            }


class HealthHandler(BaseHTTPRequestHandler):
    """HTTP handler serving /healthz (liveness) and /readyz (readiness)."""

    state: HealthState
    ready_check: Callable[[], bool] | None = None

    def log_message(self, format: str, *args: object) -> None:
        """Suppress default HTTP logging to avoid noise."""
        pass

    def do_GET(self) -> None:
        if self.path == "/healthz":
            self._respond(200, b"ok")
        elif self.path == "/readyz":
            snapshot = self.state.snapshot()
            ready = self.state.is_ready()
            if ready and self.ready_check is not None:
                ready = self.ready_check()
            snapshot["ready"] = ready
            self._respond(200 if ready else 503, json.dumps(snapshot).encode(), "application/json")
        else:
            self._respond(404, b"not found")

    def _respond(self, code: int, body: bytes, content_type: str = "text/plain") -> None:
        self.send_response(code)
        self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


def start_health_server(
    port: int,
    state: HealthState,
    ready_check: Callable[[], bool] | None = None,
) -> ThreadingHTTPServer:
    """Start the health server in a daemon thread.

    Args:
        port: Port to listen on (0 picks a free port)
        state: Cycle state consulted by /readyz
        ready_check: Optional dependency check, consulted once the state is ready

    Returns:
        The running server (call shutdown() to stop)
    """
    attrs: dict[str, object] = {"state": state}
    if ready_check is not None:
        attrs["ready_check"] = staticmethod(ready_check)
    handler = type("BoundHealthHandler", (HealthHandler,), attrs)

    server = ThreadingHTTPServer(("", port), handler)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()

    logger.info("Health server started", port=server.server_address[1])
    return server
