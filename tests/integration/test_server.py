"""
Integration tests for the server orchestrator.
"""

import asyncio
import json
import logging
import os
import tempfile

import json_log_formatter
import pytest

from collab.refdb_server.config import (
    HandleBackend,
    HandleServiceConfig,
    HttpConfig,
    ObservabilityConfig,
    ServerConfig,
    StorageConfig,
)
from collab.refdb_server.main import Server, setup_logging


class TestServer:
    """Tests for Server lifecycle."""

    @pytest.fixture
    def config(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            yield ServerConfig(
                storage=StorageConfig(
                    database_path=os.path.join(tmpdir, "db", "refs.sqlite3"),
                    wal_mode=False,
                ),
                handles=HandleServiceConfig(backend=HandleBackend.MEMORY),
                http=HttpConfig(host="127.0.0.1", port=0),
            )

    @pytest.mark.asyncio
    async def test_start_serve_stop(self, config):
        server = Server(config)
        task = asyncio.create_task(server.start())

        for _ in range(100):
            if server._running:
                break
            await asyncio.sleep(0.02)

        ref_id = await server.service.create_ref({"title": "untitled"})
        assert await server.service.resolve_handle(ref_id) == "h1"
        assert os.path.exists(config.storage.database_path)

        server.request_shutdown()
        await task
        await server.stop()

        assert not server.handles.is_connected

    def test_setup_logging_json(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers, root.level
        try:
            setup_logging(ServerConfig(observability=ObservabilityConfig(log_level="DEBUG")))

            assert root.level == logging.DEBUG
            formatter = root.handlers[0].formatter
            assert isinstance(formatter, json_log_formatter.JSONFormatter)

            record = logging.LogRecord("refdb.test", logging.WARNING, __file__, 1, "hi", None, None)
            line = json.loads(formatter.format(record))
            assert line["message"] == "hi"
            assert line["level"] == "WARNING"
            assert line["logger"] == "refdb.test"
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)
