"""
Handle resolver: lazy lookup-or-create of collaboration handles.

Invariants:
    - A handle is never created for a ref that does not resolve in storage
    - A new handle is seeded with the ref's current head content
    - The lookup path never touches storage

How to change safely:
    - This resolver takes no lock around lookup-then-create; the
      collaboration service deduplicates concurrent create_doc per ref.
      Adding a lock here only helps within one process.
"""

from __future__ import annotations

import logging

from ..store.models import IdLike, coerce_id
from ..store.version_store import VersionStore
from .base import HandleService

logger = logging.getLogger(__name__)


class HandleResolver:
    """Resolve a ref id to a live collaboration handle id.

    Example:
        >>> resolver = HandleResolver(store, service)
        >>> await resolver.resolve(ref_id)
        'h1'
    """

    def __init__(self, store: VersionStore, service: HandleService) -> None:
        self.store = store
        self.service = service

    async def resolve(self, ref_id: IdLike) -> str:
        """Return the handle for a ref, creating it if the service has none.

        Args:
            ref_id: Ref identifier

        Returns:
            Handle identifier

        Raises:
            NotFoundError: If the ref does not exist (no handle is created)
            HandleServiceError: If a round trip to the service fails
            StorageError: If reading the head content fails
        """
        ref_key = coerce_id(ref_id)

        handle = await self.service.get_doc(ref_key)
        if handle is not None:
            return handle

        content = await self.store.read_head_content(ref_key)
        handle = await self.service.create_doc(ref_key, content)
        logger.info("Created collaboration handle", extra={"ref_id": ref_key, "handle": handle})
        return handle


__all__ = ["HandleResolver"]
