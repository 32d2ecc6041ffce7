"""
HTTP/RPC server implementation for RefDB.

This module exposes the document operations to the editor frontend:
- POST /rpc/new_ref          create a ref with initial content
- POST /rpc/autosave         overwrite the head snapshot in place
- POST /rpc/save_snapshot    append a snapshot and move the head
- GET  /rpc/doc_id/{ref_id}  get or create the collaboration handle
- GET  /rpc/head/{ref_id}    read the head content
- GET  /rpc/snapshots/{ref_id}  list the snapshot history

Invariants:
    - NotFoundError maps to 404 "document not found"
    - Storage and handle service failures map to a generic 500
    - Error details are logged, never returned to the client

How to change safely:
    - Keep request/response field names (refId, content, docId) in sync
      with the frontend
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web

from ..errors import NotFoundError
from ..service import DocumentService
from ..store.models import coerce_id

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("service", DocumentService)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _bad_request(message: str) -> web.HTTPBadRequest:
    return web.HTTPBadRequest(
        text=json.dumps({"error": message, "error_code": "BAD_REQUEST"}),
        content_type="application/json",
    )


def create_http_app(service: DocumentService) -> web.Application:
    """Create the HTTP application.

    Args:
        service: DocumentService instance

    Returns:
        aiohttp Application instance
    """

    @web.middleware
    async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except NotFoundError as e:
            logger.info(f"Document not found: {e}", extra={"path": request.path})
            return web.json_response(
                {"error": "document not found", "error_code": "NOT_FOUND"},
                status=404,
            )
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": "internal server error", "error_code": "INTERNAL"},
                status=500,
            )

    app = web.Application(middlewares=[error_middleware])
    app[SERVICE_KEY] = service

    app.router.add_get("/", handle_root)
    app.router.add_get("/health", handle_health)
    app.router.add_post("/rpc/new_ref", handle_new_ref)
    app.router.add_post("/rpc/autosave", handle_autosave)
    app.router.add_post("/rpc/save_snapshot", handle_save_snapshot)
    app.router.add_get("/rpc/doc_id/{ref_id}", handle_doc_id)
    app.router.add_get("/rpc/head/{ref_id}", handle_head)
    app.router.add_get("/rpc/snapshots/{ref_id}", handle_snapshots)

    return app


async def read_json(request: web.Request) -> Any:
    """Parse the request body as JSON.

    Raises:
        web.HTTPBadRequest: If the body is not valid JSON
    """
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise _bad_request("Invalid JSON body")


def parse_ref_id(value: Any) -> str:
    """Validate a ref id from a path or body.

    Raises:
        web.HTTPBadRequest: If the value is not a UUID
    """
    if value is None:
        raise _bad_request("refId is required")
    try:
        return coerce_id(value)
    except ValueError:
        raise _bad_request(f"Invalid ref id: {value}")


async def read_ref_content(request: web.Request) -> tuple[str, Any]:
    """Parse a {"refId": ..., "content": ...} body."""
    body = await read_json(request)
    if not isinstance(body, dict):
        raise _bad_request("Body must be an object with refId and content")
    if "content" not in body:
        raise _bad_request("content is required")
    return parse_ref_id(body.get("refId")), body["content"]


async def handle_root(request: web.Request) -> web.Response:
    """Handle GET / - Greeting."""
    return web.Response(text="Hello! The RefDB server is running")


async def handle_health(request: web.Request) -> web.Response:
    """Handle GET /health - Health check."""
    service = request.app[SERVICE_KEY]
    return web.json_response(
        {"status": "ok", "handle_service_connected": service.handles.is_connected}
    )


async def handle_new_ref(request: web.Request) -> web.Response:
    """Handle POST /rpc/new_ref - Create a ref; the body is the content."""
    content = await read_json(request)
    ref_id = await request.app[SERVICE_KEY].create_ref(content)
    return web.json_response({"refId": str(ref_id)})


async def handle_autosave(request: web.Request) -> web.Response:
    """Handle POST /rpc/autosave - Overwrite head content."""
    ref_id, content = await read_ref_content(request)
    await request.app[SERVICE_KEY].autosave(ref_id, content)
    return web.json_response({})


async def handle_save_snapshot(request: web.Request) -> web.Response:
    """Handle POST /rpc/save_snapshot - Append a snapshot and move head."""
    ref_id, content = await read_ref_content(request)
    await request.app[SERVICE_KEY].save_snapshot(ref_id, content)
    return web.json_response({})


async def handle_doc_id(request: web.Request) -> web.Response:
    """Handle GET /rpc/doc_id/{ref_id} - Get or create the collaboration handle."""
    ref_id = parse_ref_id(request.match_info["ref_id"])
    doc_id = await request.app[SERVICE_KEY].resolve_handle(ref_id)
    return web.json_response({"docId": doc_id})


async def handle_head(request: web.Request) -> web.Response:
    """Handle GET /rpc/head/{ref_id} - Read head content."""
    ref_id = parse_ref_id(request.match_info["ref_id"])
    content = await request.app[SERVICE_KEY].read_head_content(ref_id)
    return web.json_response({"content": content})


async def handle_snapshots(request: web.Request) -> web.Response:
    """Handle GET /rpc/snapshots/{ref_id} - List snapshot history."""
    ref_id = parse_ref_id(request.match_info["ref_id"])
    snapshots = await request.app[SERVICE_KEY].list_snapshots(ref_id)
    return web.json_response({"snapshots": [s.to_dict() for s in snapshots]})


class HttpServer:
    """Runs the HTTP application on a host/port."""

    def __init__(self, service: DocumentService, host: str, port: int) -> None:
        self.app = create_http_app(service)
        self.host = host
        self.port = port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        self._runner = web.AppRunner(self.app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"HTTP server listening on {self.host}:{self.port}")

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP server stopped")
