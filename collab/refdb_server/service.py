"""
Document service - the operations exposed to the transport layer.

Every method takes plain data (ref ids, JSON content) and returns plain
data or raises a RefDbError subclass. No transport types appear here.
"""

from __future__ import annotations

import uuid

from .handles.base import HandleService
from .handles.resolver import HandleResolver
from .store.models import DocumentContent, IdLike, Snapshot
from .store.version_store import VersionStore


class DocumentService:
    """Facade over the version store and the handle resolver."""

    def __init__(self, store: VersionStore, handles: HandleService) -> None:
        self.store = store
        self.handles = handles
        self.resolver = HandleResolver(store, handles)

    async def create_ref(self, content: DocumentContent) -> uuid.UUID:
        return await self.store.create_ref(content)

    async def autosave(self, ref_id: IdLike, content: DocumentContent) -> None:
        await self.store.autosave(ref_id, content)

    async def save_snapshot(self, ref_id: IdLike, content: DocumentContent) -> None:
        await self.store.save_snapshot(ref_id, content)

    async def resolve_handle(self, ref_id: IdLike) -> str:
        return await self.resolver.resolve(ref_id)

    async def read_head_content(self, ref_id: IdLike) -> DocumentContent:
        return await self.store.read_head_content(ref_id)

    async def get_snapshot(self, snapshot_id: IdLike) -> Snapshot:
        return await self.store.get_snapshot(snapshot_id)

    async def list_snapshots(self, ref_id: IdLike) -> list[Snapshot]:
        return await self.store.list_snapshots(ref_id)
