"""Run the health/status app with uvicorn on a background thread."""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import uvicorn
from fastapi import FastAPI

from ..exceptions import SmartTodoError

logger = logging.getLogger(__name__)


class HealthServer:
    """uvicorn server running in a daemon thread."""

    def __init__(
        self,
        app: FastAPI,
        host: str = "127.0.0.1",
        port: int = 3001,
        startup_timeout: float = 5.0,
    ):
        self.app = app
        self.host = host
        self.requested_port = port
        self.startup_timeout = startup_timeout
        self._server: Optional[uvicorn.Server] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        """Bound port (differs from the requested one when 0 was requested)."""
        if self._server is not None and getattr(self._server, "servers", None):
            sockets = self._server.servers[0].sockets
            if sockets:
                return sockets[0].getsockname()[1]
        return self.requested_port

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def start(self) -> None:
        """Start listening; returns once the server accepts connections."""
        config = uvicorn.Config(self.app, host=self.host, port=self.requested_port, log_level="warning")
        self._server = uvicorn.Server(config)
        self._thread = threading.Thread(
            target=self._server.run, daemon=True, name="smart-todo-health-server"
        )
        self._thread.start()

        deadline = time.monotonic() + self.startup_timeout
        while not self._server.started:
            if not self._thread.is_alive() or time.monotonic() > deadline:
                self.stop()
                raise SmartTodoError(
                    f"Health server failed to start on {self.host}:{self.requested_port}"
                )
            time.sleep(0.05)
        logger.info(f"Health server listening on {self.url}")

    def stop(self, timeout: float = 5.0) -> None:
        """Close the listener and wait for the server thread."""
        if self._server is not None:
            self._server.should_exit = True
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        self._server = None
        self._thread = None
