"""
Entry point for the RefDB server process.

Startup order is store, collaboration client, then HTTP, and shutdown
runs in reverse so no request reaches a closed dependency.

    refdb-server                    # console script
    python -m collab.refdb_server.main

Settings come from the environment (see config.py). SIGTERM and SIGINT
request a graceful stop.

Invariants:
    - The schema exists before the first request is accepted
    - The HTTP listener is gone before the collaboration client closes
    - A failed startup releases whatever was already started
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys

import json_log_formatter

from .api import HttpServer
from .config import ServerConfig
from .handles import HandleService, create_handle_service
from .service import DocumentService
from .store import VersionStore

logger = logging.getLogger(__name__)


class RefDbJSONFormatter(json_log_formatter.JSONFormatter):
    """One JSON object per line with level and logger next to the extras."""

    def json_record(self, message: str, extra: dict, record: logging.LogRecord) -> dict:
        payload = super().json_record(message, extra, record)
        payload["level"] = record.levelname
        payload["logger"] = record.name
        return payload


def setup_logging(config: ServerConfig) -> None:
    """Install a single stderr handler on the root logger."""
    observability = config.observability

    handler = logging.StreamHandler()
    if observability.log_format == "json":
        handler.setFormatter(RefDbJSONFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(getattr(logging, observability.log_level.upper(), logging.INFO))

    # One line per HTTP request is too chatty at INFO
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


class Server:
    """RefDB Server orchestrator.

    Attributes:
        config: Server configuration
        store: Version store
        handles: Collaboration service client
        service: Document service shared by the transport
        http_server: HTTP/RPC server

    Example:
        >>> server = Server()
        >>> await server.start()
        >>> # Server is running
        >>> await server.stop()
    """

    def __init__(self, config: ServerConfig | None = None) -> None:
        """Initialize the server.

        Args:
            config: Optional server configuration (loaded from env if not provided)
        """
        self.config = config or ServerConfig.from_env()
        self._running = False
        self._shutdown_event = asyncio.Event()

        # Components (initialized in start())
        self.store: VersionStore | None = None
        self.handles: HandleService | None = None
        self.service: DocumentService | None = None
        self.http_server: HttpServer | None = None

    async def start(self) -> None:
        """Start the server and wait for a shutdown request."""
        if self._running:
            logger.warning("Server already running")
            return

        logger.info("Starting RefDB server")
        self.config.log_config()

        try:
            self.store = VersionStore(
                database_path=self.config.storage.database_path,
                max_connections=self.config.storage.max_connections,
                busy_timeout_ms=self.config.storage.busy_timeout_ms,
                wal_mode=self.config.storage.wal_mode,
            )
            await self.store.initialize()

            self.handles = create_handle_service(self.config.handles)
            await self.handles.connect()
            logger.info("Collaboration service client connected")

            self.service = DocumentService(self.store, self.handles)

            self.http_server = HttpServer(
                self.service,
                host=self.config.http.host,
                port=self.config.http.port,
            )
            await self.http_server.start()

            self._running = True
            logger.info("RefDB server started successfully")

            await self._shutdown_event.wait()

        except Exception as e:
            logger.error(f"Server startup failed: {e}", exc_info=True)
            await self._stop_components()
            raise

    async def stop(self) -> None:
        """Stop the server gracefully."""
        if not self._running:
            return

        logger.info("Stopping RefDB server")
        await self._stop_components()
        self._running = False
        logger.info("RefDB server stopped")

    async def _stop_components(self) -> None:
        if self.http_server:
            await self.http_server.stop()

        if self.handles:
            await self.handles.close()

    def request_shutdown(self) -> None:
        """Request graceful shutdown."""
        self._shutdown_event.set()


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    server = Server(config)

    def handle_signal(sig: int) -> None:
        logger.info(f"Received signal {sig}, initiating shutdown")
        server.request_shutdown()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_signal, sig)

    try:
        loop.run_until_complete(server.start())
    except KeyboardInterrupt:
        pass
    finally:
        loop.run_until_complete(server.stop())
        loop.close()


if __name__ == "__main__":
    main()
