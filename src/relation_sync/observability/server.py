"""Background HTTP server shared by the metrics and health endpoints."""

import logging
import threading
from abc import ABC, abstractmethod
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

logger = logging.getLogger(__name__)


class QuietHandler(BaseHTTPRequestHandler):
    """Request handler that keeps access logs out of the service log."""

    def _send(self, status: int, body: bytes = b"", content_type: str | None = None) -> None:
        self.send_response(status)
        if content_type:
            self.send_header("Content-Type", content_type)
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if body:
            self.wfile.write(body)

    def log_message(self, format: str, *args: object) -> None:
        pass


class BackgroundHTTPServer(ABC):
    """Serves a handler class from a daemon thread.

    Port 0 binds an ephemeral port; the bound port is available from
    ``port`` once started.
    """

    name = "http"

    def __init__(self, port: int, host: str = "0.0.0.0"):
        self.host = host
        self._requested_port = port
        self._server: ThreadingHTTPServer | None = None
        self._thread: threading.Thread | None = None

    @abstractmethod
    def handler_class(self) -> type[BaseHTTPRequestHandler]:
        """Request handler class bound to this server instance."""

    @property
    def port(self) -> int:
        if self._server is not None:
            return int(self._server.server_address[1])
        return self._requested_port

    @property
    def running(self) -> bool:
        return self._server is not None

    def start(self) -> None:
        """Bind and serve in a background thread."""
        if self._server is not None:
            return
        self._server = ThreadingHTTPServer((self.host, self._requested_port), self.handler_class())
        self._server.daemon_threads = True
        self._thread = threading.Thread(
            target=self._server.serve_forever, name=f"{self.name}-server", daemon=True
        )
        self._thread.start()
        logger.info("%s endpoint listening on %s:%d", self.name.capitalize(), self.host, self.port)

    def stop(self) -> None:
        """Stop serving and release the socket."""
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None
