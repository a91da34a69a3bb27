"""Health, readiness and liveness endpoints."""

import json
from collections.abc import Callable
from http.server import BaseHTTPRequestHandler
from typing import Any

from relation_sync.observability.server import BackgroundHTTPServer, QuietHandler

HealthCheck = Callable[[], dict[str, Any]]


class HealthHandler(QuietHandler):
    """Answers /health with the check result, /ready and /live with a status only."""

    check: HealthCheck | None = None

    def do_GET(self) -> None:
        if self.path == "/live":
            self._send(200)
            return
        if self.path not in ("/health", "/ready"):
            self._send(404)
            return

        health = self._run_check()
        if self.path == "/ready":
            self._send(200 if health.get("scheduler_running") else 503)
            return

        status = 200 if health.get("status") == "healthy" else 503
        self._send(status, json.dumps(health).encode(), "application/json")

    def _run_check(self) -> dict[str, Any]:
        if self.check is None:
            return {"status": "unknown"}
        try:
            return self.check()
        except Exception as e:
            return {"status": "error", "error": f"{type(e).__name__}: {e}"}


class HealthServer(BackgroundHTTPServer):
    """Serves the service health check for probes and the ``status`` command."""

    name = "health"

    def __init__(
        self,
        port: int = 8080,
        check_func: HealthCheck | None = None,
        host: str = "0.0.0.0",
    ):
        """Initialize the health server.

        Args:
            port: Port to listen on (0 for an ephemeral port).
            check_func: Returns the health status dict; ``status`` must be
                "healthy" for a 200 answer.
            host: Interface to bind.
        """
        super().__init__(port, host)
        self._check_func = check_func

    def handler_class(self) -> type[BaseHTTPRequestHandler]:
        check = self._check_func

        class Handler(HealthHandler):
            pass

        # A plain function would be bound to the handler instance
        Handler.check = staticmethod(check) if check else None  # type: ignore[assignment]
        return Handler
