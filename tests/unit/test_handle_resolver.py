"""
Unit tests for the handle resolver.

Tests cover:
- Lazy creation seeded with head content
- Idempotent lookups (no second create_doc)
- Missing refs never get a handle
- Service failures propagate
- Concurrent resolves for one ref end with a single handle
"""

import asyncio
import os
import tempfile
import uuid

import pytest
import pytest_asyncio

from collab.refdb_server.errors import HandleServiceError, NotFoundError
from collab.refdb_server.handles import CREATE_DOC, GET_DOC, HandleResolver, InMemoryHandleService
from collab.refdb_server.store.version_store import VersionStore


class TestHandleResolver:
    """Tests for HandleResolver against InMemoryHandleService."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest_asyncio.fixture
    async def store(self, data_dir):
        store = VersionStore(os.path.join(data_dir, "refs.sqlite3"), wal_mode=False)
        await store.initialize()
        return store

    @pytest_asyncio.fixture
    async def service(self):
        service = InMemoryHandleService()
        await service.connect()
        yield service
        await service.close()

    @pytest.fixture
    def resolver(self, store, service):
        return HandleResolver(store, service)

    @pytest.mark.asyncio
    async def test_first_resolve_creates_seeded_handle(self, store, service, resolver):
        """No handle yet: the service receives create_doc with head content."""
        ref_id = await store.create_ref({"title": "untitled"})

        handle = await resolver.resolve(ref_id)

        assert handle == "h1"
        creates = [r for r in service.requests if r.event == CREATE_DOC]
        assert len(creates) == 1
        assert creates[0].ref_id == str(ref_id)
        assert creates[0].content == {"title": "untitled"}

    @pytest.mark.asyncio
    async def test_second_resolve_uses_existing_handle(self, store, service, resolver):
        """Resolving twice returns the same handle with a single create."""
        ref_id = await store.create_ref({"title": "untitled"})

        first = await resolver.resolve(ref_id)
        second = await resolver.resolve(ref_id)

        assert first == second == "h1"
        assert service.count_requests(GET_DOC, ref_id) == 2
        assert service.count_requests(CREATE_DOC, ref_id) == 1

    @pytest.mark.asyncio
    async def test_seed_uses_latest_content(self, store, service, resolver):
        """Handles are seeded from the current head, after saves."""
        ref_id = await store.create_ref({"title": "v1"})
        await store.save_snapshot(ref_id, {"title": "v2"})
        await store.autosave(ref_id, {"title": "v2 edited"})

        handle = await resolver.resolve(ref_id)

        assert service.contents[handle] == {"title": "v2 edited"}

    @pytest.mark.asyncio
    async def test_evicted_handle_is_recreated(self, store, service, resolver):
        """If the service forgets a handle, the next resolve creates a new one."""
        ref_id = await store.create_ref({"title": "v1"})
        first = await resolver.resolve(ref_id)

        await store.autosave(ref_id, {"title": "v1 edited"})
        service.evict(ref_id)
        second = await resolver.resolve(ref_id)

        assert second != first
        assert service.contents[second] == {"title": "v1 edited"}
        assert service.count_requests(CREATE_DOC, ref_id) == 2

    @pytest.mark.asyncio
    async def test_missing_ref_creates_no_handle(self, service, resolver):
        """NotFoundError aborts before create_doc is sent."""
        missing = uuid.uuid4()

        with pytest.raises(NotFoundError):
            await resolver.resolve(missing)

        assert service.count_requests(CREATE_DOC) == 0
        assert service.handles == {}

    @pytest.mark.asyncio
    async def test_lookup_failure_propagates(self, store, service, resolver):
        """A failed get_doc surfaces as HandleServiceError."""
        ref_id = await store.create_ref({"title": "untitled"})
        service.fail_next("service unreachable")

        with pytest.raises(HandleServiceError, match="service unreachable"):
            await resolver.resolve(ref_id)

        assert service.count_requests(CREATE_DOC) == 0

    @pytest.mark.asyncio
    async def test_create_failure_propagates(self, store, service, resolver):
        """Lookup finds no handle, then a failed create_doc surfaces unchanged."""
        ref_id = await store.create_ref({"title": "untitled"})
        lookup = service.get_doc

        async def lookup_then_fail(ref_key):
            handle = await lookup(ref_key)
            service.fail_next("create rejected")
            return handle

        service.get_doc = lookup_then_fail

        with pytest.raises(HandleServiceError, match="create rejected") as exc_info:
            await resolver.resolve(ref_id)

        assert exc_info.value.event == CREATE_DOC
        assert service.count_requests(GET_DOC, ref_id) == 1
        assert service.count_requests(CREATE_DOC, ref_id) == 1
        assert service.handles == {}

    @pytest.mark.asyncio
    async def test_disconnected_service(self, store, service, resolver):
        """Requests on a closed channel fail with HandleServiceError."""
        ref_id = await store.create_ref({"title": "untitled"})
        await service.close()

        with pytest.raises(HandleServiceError):
            await resolver.resolve(ref_id)

    @pytest.mark.asyncio
    async def test_concurrent_resolves_share_one_handle(self, store):
        """Racing resolves may both send create_doc but get one handle."""
        service = InMemoryHandleService(create_delay_s=0.01)
        await service.connect()
        resolver = HandleResolver(store, service)
        ref_id = await store.create_ref({"title": "untitled"})

        handles = await asyncio.gather(*(resolver.resolve(ref_id) for _ in range(10)))

        assert len(set(handles)) == 1
        assert len(service.handles) == 1
        assert service.count_requests(CREATE_DOC, ref_id) >= 1

    @pytest.mark.asyncio
    async def test_concurrent_resolves_across_refs(self, store, service, resolver):
        """Each ref gets its own handle."""
        ref_ids = [await store.create_ref({"n": i}) for i in range(5)]

        handles = await asyncio.gather(*(resolver.resolve(r) for r in ref_ids))

        assert len(set(handles)) == 5
        for ref_id, handle in zip(ref_ids, handles):
            assert service.handles[str(ref_id)] == handle


class TestInMemoryHandleService:
    """Tests for InMemoryHandleService."""

    @pytest.fixture
    def service(self):
        return InMemoryHandleService()

    @pytest.mark.asyncio
    async def test_connect_disconnect(self, service):
        """Test connection lifecycle."""
        assert not service.is_connected

        await service.connect()
        assert service.is_connected

        await service.close()
        assert not service.is_connected

    @pytest.mark.asyncio
    async def test_requires_connection(self, service):
        with pytest.raises(HandleServiceError):
            await service.get_doc(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_create_is_idempotent_per_ref(self, service):
        """A second create for the same ref returns the first handle."""
        await service.connect()
        ref_id = uuid.uuid4()

        first = await service.create_doc(ref_id, {"v": 1})
        second = await service.create_doc(ref_id, {"v": 2})

        assert first == second
        assert service.contents[first] == {"v": 1}

    @pytest.mark.asyncio
    async def test_fail_next_is_one_shot(self, service):
        await service.connect()
        service.fail_next()

        with pytest.raises(HandleServiceError):
            await service.get_doc(uuid.uuid4())
        assert await service.get_doc(uuid.uuid4()) is None
