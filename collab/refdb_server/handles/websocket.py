"""
WebSocket client for the collaboration service.

One persistent aiohttp WebSocket carries every request. Requests and
acknowledgements are JSON text frames correlated by id:

    -> {"id": 7, "event": "get_doc", "data": "<ref id>"}
    <- {"ack": 7, "data": ["h1"]}          (or [null] when no handle)

    -> {"id": 8, "event": "create_doc", "data": {"refId": "<ref id>", "content": {...}}}
    <- {"ack": 8, "data": ["h1"]}

    <- {"ack": 9, "error": "reason"}       (application-level failure)

Invariants:
    - Any number of requests may be in flight; each waits on its own future
    - Closing the channel fails every pending request
    - Each request is bounded by request_timeout_s
    - A dropped channel is reopened by the next request, never after close()

How to change safely:
    - Keep the frame layout in sync with the collaboration service
    - Test against the in-process fake service in tests/integration
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from typing import Any, Dict, Optional

import aiohttp

from ..errors import HandleServiceError
from ..store.models import DocumentContent, IdLike, coerce_id
from .base import CREATE_DOC, GET_DOC

logger = logging.getLogger(__name__)


class WebSocketHandleService:
    """WebSocket implementation of HandleService protocol.

    Attributes:
        config: HandleServiceConfig with URL and timeouts

    Example:
        >>> config = HandleServiceConfig(url="ws://localhost:3000/")
        >>> service = WebSocketHandleService(config)
        >>> await service.connect()
        >>> handle = await service.get_doc(ref_id)
    """

    def __init__(self, config: Any) -> None:
        """Initialize the client.

        Args:
            config: HandleServiceConfig instance
        """
        self.config = config
        self._session: aiohttp.ClientSession | None = None
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._reader: asyncio.Task | None = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._ids = itertools.count(1)
        self._connect_lock = asyncio.Lock()
        self._reconnect = False

    @property
    def is_connected(self) -> bool:
        """Whether the WebSocket is open."""
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        """Open the WebSocket to the collaboration service.

        A channel left behind by a dropped connection is torn down first.
        After a successful connect, requests reconnect on their own until
        close() is called.

        Raises:
            HandleServiceError: If the connection fails or times out
        """
        async with self._connect_lock:
            if self.is_connected:
                return

            await self._teardown()

            self._session = aiohttp.ClientSession()
            try:
                self._ws = await asyncio.wait_for(
                    self._session.ws_connect(self.config.url, heartbeat=30.0),
                    timeout=self.config.connect_timeout_s,
                )
            except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
                await self._session.close()
                self._session = None
                raise HandleServiceError(
                    f"Failed to connect to collaboration service at {self.config.url}: {e}"
                ) from e

            self._reader = asyncio.create_task(self._read_loop(self._ws))
            self._reconnect = True
            logger.info(f"Connected to collaboration service at {self.config.url}")

    async def close(self) -> None:
        """Close the WebSocket and fail pending requests."""
        self._reconnect = False
        await self._teardown()
        self._fail_pending(HandleServiceError("Handle service connection closed"))
        logger.info("Collaboration service connection closed")

    async def _teardown(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None

        if self._ws is not None:
            await self._ws.close()
            self._ws = None

        if self._session is not None:
            await self._session.close()
            self._session = None

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        """Route acknowledgements to their pending futures."""
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    logger.error(f"Collaboration service channel error: {ws.exception()}")
                    break
        finally:
            self._fail_pending(HandleServiceError("Handle service channel closed"))
            if not ws.closed:
                await ws.close()

    def _dispatch(self, raw: str) -> None:
        try:
            message = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.warning(f"Dropping malformed frame from collaboration service: {e}")
            return

        if (
            not isinstance(message, dict)
            or not isinstance(message.get("ack"), int)
            or isinstance(message["ack"], bool)
        ):
            logger.warning("Dropping frame without ack id from collaboration service")
            return

        future = self._pending.pop(message["ack"], None)
        if future is None or future.done():
            # Ack for a request that already timed out or was cancelled
            return

        if message.get("error") is not None:
            future.set_exception(HandleServiceError(str(message["error"])))
        else:
            future.set_result(message.get("data"))

    def _fail_pending(self, error: HandleServiceError) -> None:
        pending, self._pending = self._pending, {}
        for future in pending.values():
            if not future.done():
                future.set_exception(error)

    async def _request(self, event: str, data: Any) -> Any:
        """Send one request and wait for its acknowledgement data."""
        if not self.is_connected:
            if not self._reconnect:
                raise HandleServiceError("Handle service not connected", event=event)
            logger.info(f"Reconnecting to collaboration service for {event}")
            try:
                await self.connect()
            except HandleServiceError as e:
                raise HandleServiceError(e.message, event=event) from e

        request_id = next(self._ids)
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        try:
            await self._ws.send_json({"id": request_id, "event": event, "data": data})
        except (ConnectionError, aiohttp.ClientError, RuntimeError) as e:
            self._pending.pop(request_id, None)
            raise HandleServiceError(f"Failed to dispatch {event}: {e}", event=event) from e

        try:
            return await asyncio.wait_for(future, timeout=self.config.request_timeout_s)
        except asyncio.TimeoutError as e:
            raise HandleServiceError(
                f"No acknowledgement for {event} within {self.config.request_timeout_s}s",
                event=event,
            ) from e
        except HandleServiceError as e:
            raise HandleServiceError(e.message, event=event) from e
        finally:
            self._pending.pop(request_id, None)

    async def get_doc(self, ref_id: IdLike) -> Optional[str]:
        """Look up the live handle for a ref."""
        data = await self._request(GET_DOC, coerce_id(ref_id))
        if not isinstance(data, list):
            raise HandleServiceError(f"Malformed get_doc acknowledgement: {data!r}", event=GET_DOC)
        handle = data[-1] if data else None
        if handle is not None and not isinstance(handle, str):
            raise HandleServiceError(f"Malformed get_doc acknowledgement: {data!r}", event=GET_DOC)
        return handle

    async def create_doc(self, ref_id: IdLike, content: DocumentContent) -> str:
        """Create a live handle for a ref seeded with content."""
        data = await self._request(CREATE_DOC, {"refId": coerce_id(ref_id), "content": content})
        if not isinstance(data, list) or not data or not isinstance(data[0], str):
            raise HandleServiceError(
                f"Malformed create_doc acknowledgement: {data!r}", event=CREATE_DOC
            )
        return data[0]


__all__ = ["WebSocketHandleService"]
