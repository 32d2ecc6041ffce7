"""
Collaboration handle module for RefDB.

This module provides:
- The HandleService protocol for the external collaboration service
- A WebSocket client (production) and an in-memory service (testing)
- The HandleResolver that lazily creates one handle per ref

The collaboration service owns the live handles; this module treats its
ref -> handle mapping as a cache that may be absent at any time.

Invariants:
    - New handles are seeded from the ref's durable head content
    - At most one handle per ref is the service's guarantee

How to change safely:
    - New backends must implement HandleService protocol
    - Test concurrent resolves against InMemoryHandleService
"""

from .base import CREATE_DOC, GET_DOC, HandleService, create_handle_service
from .memory import InMemoryHandleService
from .resolver import HandleResolver
from .websocket import WebSocketHandleService

__all__ = [
    # Protocol
    "HandleService",
    "GET_DOC",
    "CREATE_DOC",
    # Factory
    "create_handle_service",
    # Implementations
    "InMemoryHandleService",
    "WebSocketHandleService",
    # Resolver
    "HandleResolver",
]
