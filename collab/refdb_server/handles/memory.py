"""
In-memory collaboration service for testing.

This module provides a HandleService backend that keeps handles in a
dict for:
- Unit tests of the handle resolver
- Local development without a running collaboration service

Invariants:
    - All handles are lost on close()
    - At most one handle per ref, even under concurrent create_doc
    - Every request is recorded in order for assertions

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep interface compatible with HandleService protocol
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from ..errors import HandleServiceError
from ..store.models import DocumentContent, IdLike, coerce_id
from .base import CREATE_DOC, GET_DOC

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecordedRequest:
    """A request received by the in-memory service."""

    event: str
    ref_id: str
    content: Any = None


class InMemoryHandleService:
    """In-memory implementation of HandleService.

    Creation is serialized per ref with an asyncio.Lock, so two racing
    create_doc calls for the same ref get the same handle. Handles are
    named h1, h2, ... in creation order.

    Attributes:
        create_delay_s: Artificial latency inside create_doc
        handles: Current ref id -> handle mapping
        contents: Seed content each handle was created with
        requests: Every request received, in order

    Example:
        >>> service = InMemoryHandleService()
        >>> await service.connect()
        >>> await service.create_doc(ref_id, {"title": "untitled"})
        'h1'
        >>> await service.get_doc(ref_id)
        'h1'
    """

    def __init__(self, create_delay_s: float = 0.0) -> None:
        """Initialize the in-memory service.

        Args:
            create_delay_s: Seconds to sleep while creating a handle
        """
        self.create_delay_s = create_delay_s
        self.handles: Dict[str, str] = {}
        self.contents: Dict[str, Any] = {}
        self.requests: List[RecordedRequest] = []
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._counter = itertools.count(1)
        self._connected = False
        self._fail_next: Optional[str] = None

    @property
    def is_connected(self) -> bool:
        """Whether connected (always true after connect())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryHandleService connected")

    async def close(self) -> None:
        """Close and clear all handles."""
        self._connected = False
        self.handles.clear()
        self.contents.clear()
        self._locks.clear()
        logger.debug("InMemoryHandleService closed")

    def _check(self, event: str) -> None:
        if not self._connected:
            raise HandleServiceError("Handle service not connected", event=event)
        if self._fail_next is not None:
            message, self._fail_next = self._fail_next, None
            raise HandleServiceError(message, event=event)

    async def get_doc(self, ref_id: IdLike) -> Optional[str]:
        """Look up the handle for a ref."""
        ref_key = coerce_id(ref_id)
        self.requests.append(RecordedRequest(GET_DOC, ref_key))
        self._check(GET_DOC)
        return self.handles.get(ref_key)

    async def create_doc(self, ref_id: IdLike, content: DocumentContent) -> str:
        """Create a handle for a ref, or return the one already registered."""
        ref_key = coerce_id(ref_id)
        self.requests.append(RecordedRequest(CREATE_DOC, ref_key, content))
        self._check(CREATE_DOC)

        async with self._locks[ref_key]:
            existing = self.handles.get(ref_key)
            if existing is not None:
                return existing

            if self.create_delay_s:
                await asyncio.sleep(self.create_delay_s)

            handle = f"h{next(self._counter)}"
            self.handles[ref_key] = handle
            self.contents[handle] = content
            logger.debug("Created handle", extra={"ref_id": ref_key, "handle": handle})
            return handle

    # Testing helpers

    def evict(self, ref_id: IdLike) -> None:
        """Drop the handle for a ref, as the service may at any time."""
        self.handles.pop(coerce_id(ref_id), None)

    def fail_next(self, message: str = "injected failure") -> None:
        """Make the next request fail with HandleServiceError."""
        self._fail_next = message

    def count_requests(self, event: str, ref_id: IdLike | None = None) -> int:
        """Count recorded requests of one kind, optionally for one ref."""
        ref_key = coerce_id(ref_id) if ref_id is not None else None
        return sum(
            1
            for request in self.requests
            if request.event == event and (ref_key is None or request.ref_id == ref_key)
        )


__all__ = ["InMemoryHandleService", "RecordedRequest"]
