"""
Base protocol for the collaboration service client.

The collaboration service owns live document handles, keyed by ref id.
This module defines the HandleService protocol the core talks to, so
the resolver can run against a real channel or an in-memory fake.

Invariants:
    - get_doc returns None when the service holds no handle for the ref
    - create_doc returns the handle registered for the ref
    - Every failure surfaces as HandleServiceError

How to change safely:
    - Protocol changes require updating all implementations
    - Keep the request names (get_doc, create_doc) in sync with the service
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

from ..store.models import DocumentContent, IdLike

if TYPE_CHECKING:
    from ..config import HandleServiceConfig

GET_DOC = "get_doc"
CREATE_DOC = "create_doc"


@runtime_checkable
class HandleService(Protocol):
    """Protocol for collaboration-service backends.

    The service is the single source of truth for at most one handle
    per ref. Concurrent create_doc requests for the same ref must yield
    the same handle.

    Example:
        >>> service = WebSocketHandleService(config)
        >>> await service.connect()
        >>> await service.get_doc(ref_id)
        None
        >>> await service.create_doc(ref_id, {"title": "untitled"})
        'h1'
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the channel to the service.

        Raises:
            HandleServiceError: If the service is unreachable
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the channel and fail any pending requests."""
        ...

    @abstractmethod
    async def get_doc(self, ref_id: IdLike) -> Optional[str]:
        """Look up the live handle for a ref.

        Returns:
            The handle identifier, or None if the service holds none

        Raises:
            HandleServiceError: If the request fails
        """
        ...

    @abstractmethod
    async def create_doc(self, ref_id: IdLike, content: DocumentContent) -> str:
        """Create a live handle for a ref seeded with content.

        Returns:
            The handle identifier registered for the ref

        Raises:
            HandleServiceError: If the request fails
        """
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether the channel is open."""
        ...


def create_handle_service(config: "HandleServiceConfig") -> HandleService:
    """Factory function to create a HandleService from configuration.

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import HandleBackend
    from .memory import InMemoryHandleService
    from .websocket import WebSocketHandleService

    if config.backend == HandleBackend.WEBSOCKET:
        return WebSocketHandleService(config)
    elif config.backend == HandleBackend.MEMORY:
        return InMemoryHandleService()
    else:
        raise ValueError(f"Unsupported handle backend: {config.backend}")
