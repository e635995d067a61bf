"""
Unit tests for the SQLite object store.

Tests cover:
- Object CRUD and listing
- Compare-and-swap conflicts
- Stored-versions bookkeeping
- Migration checkpoints
- Run leases
"""

import tempfile

import pytest

from schemabridge.errors import WriteConflictError
from schemabridge.store.object_store import SqliteObjectStore


def widget(version, **spec):
    return {"apiVersion": f"example.com/{version}", "kind": "Widget", "spec": dict(spec)}


class TestSqliteObjectStore:
    """Tests for SqliteObjectStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    async def store(self, data_dir):
        """Create and initialize store."""
        store = SqliteObjectStore(data_dir, wal_mode=False)
        await store.initialize()
        return store

    @pytest.mark.asyncio
    async def test_put_and_get(self, store):
        """Put stores the object and its version."""
        rv = await store.put("Widget", "w1", widget("v1beta1", size=1))
        assert rv == 1

        stored = await store.get("Widget", "w1")
        assert stored is not None
        assert stored.obj["spec"] == {"size": 1}
        assert stored.stored_version == "v1beta1"
        assert stored.resource_version == 1

    @pytest.mark.asyncio
    async def test_put_bumps_resource_version(self, store):
        await store.put("Widget", "w1", widget("v1beta1"))
        rv = await store.put("Widget", "w1", widget("v1"))
        assert rv == 2

    @pytest.mark.asyncio
    async def test_get_missing(self, store):
        assert await store.get("Widget", "missing") is None

    @pytest.mark.asyncio
    async def test_list_objects_ordered_by_key(self, store):
        await store.put("Widget", "b", widget("v1"))
        await store.put("Widget", "a", widget("v1beta1"))
        await store.put("Gadget", "c", widget("v1"))

        refs = await store.list_objects("Widget")

        assert [(r.key, r.stored_version) for r in refs] == [("a", "v1beta1"), ("b", "v1")]

    @pytest.mark.asyncio
    async def test_delete(self, store):
        await store.put("Widget", "w1", widget("v1"))
        assert await store.delete("Widget", "w1") is True
        assert await store.delete("Widget", "w1") is False
        assert await store.get("Widget", "w1") is None

    @pytest.mark.asyncio
    async def test_compare_and_swap(self, store):
        """CAS succeeds against the current resource_version."""
        rv = await store.put("Widget", "w1", widget("v1beta1"))

        new_rv = await store.compare_and_swap("Widget", "w1", widget("v1"), rv)

        assert new_rv == rv + 1
        stored = await store.get("Widget", "w1")
        assert stored.stored_version == "v1"

    @pytest.mark.asyncio
    async def test_compare_and_swap_conflict(self, store):
        """CAS fails after a concurrent write."""
        rv = await store.put("Widget", "w1", widget("v1beta1"))
        await store.put("Widget", "w1", widget("v1beta1", size=2))

        with pytest.raises(WriteConflictError) as exc_info:
            await store.compare_and_swap("Widget", "w1", widget("v1"), rv)

        assert exc_info.value.actual == rv + 1
        stored = await store.get("Widget", "w1")
        assert stored.stored_version == "v1beta1"
        assert stored.obj["spec"] == {"size": 2}

    @pytest.mark.asyncio
    async def test_compare_and_swap_deleted(self, store):
        rv = await store.put("Widget", "w1", widget("v1beta1"))
        await store.delete("Widget", "w1")

        with pytest.raises(WriteConflictError) as exc_info:
            await store.compare_and_swap("Widget", "w1", widget("v1"), rv)
        assert exc_info.value.actual is None

    @pytest.mark.asyncio
    async def test_count_by_version(self, store):
        await store.put("Widget", "a", widget("v1"))
        await store.put("Widget", "b", widget("v1"))
        await store.put("Widget", "c", widget("v1beta1"))

        assert await store.count_by_version("Widget") == {"v1": 2, "v1beta1": 1}

    @pytest.mark.asyncio
    async def test_stored_versions(self, store):
        assert await store.get_stored_versions("Widget") == []

        await store.set_stored_versions("Widget", ["v1", "v1beta1"])
        assert await store.get_stored_versions("Widget") == ["v1", "v1beta1"]

        await store.set_stored_versions("Widget", ["v1"])
        assert await store.get_stored_versions("Widget") == ["v1"]

    @pytest.mark.asyncio
    async def test_checkpoints(self, store):
        await store.save_checkpoint("h1", "Widget", "Converting", {"handle": "h1", "n": 1})
        await store.save_checkpoint("h1", "Widget", "Done", {"handle": "h1", "n": 2})
        await store.save_checkpoint("h2", "Gadget", "Failed", {"handle": "h2"})

        assert await store.load_checkpoint("h1") == {"handle": "h1", "n": 2}
        assert await store.load_checkpoint("missing") is None
        assert await store.latest_checkpoint("Widget") == {"handle": "h1", "n": 2}
        assert await store.latest_checkpoint("Other") is None

        failed = await store.list_checkpoints(("Failed",))
        assert [c["handle"] for c in failed] == ["h2"]
        assert len(await store.list_checkpoints()) == 2

    @pytest.mark.asyncio
    async def test_lease(self, store):
        """Only one holder owns a kind's lease until it is released."""
        assert await store.acquire_lease("Widget", "run-1", ttl_seconds=60) is True
        assert await store.acquire_lease("Widget", "run-2", ttl_seconds=60) is False
        # Renewal by the holder succeeds.
        assert await store.acquire_lease("Widget", "run-1", ttl_seconds=60) is True
        # Other kinds are independent.
        assert await store.acquire_lease("Gadget", "run-2", ttl_seconds=60) is True

        await store.release_lease("Widget", "run-2")
        assert await store.acquire_lease("Widget", "run-2", ttl_seconds=60) is False

        await store.release_lease("Widget", "run-1")
        assert await store.acquire_lease("Widget", "run-2", ttl_seconds=60) is True

    @pytest.mark.asyncio
    async def test_expired_lease_can_be_taken(self, store):
        assert await store.acquire_lease("Widget", "run-1", ttl_seconds=0) is True
        assert await store.acquire_lease("Widget", "run-2", ttl_seconds=60) is True
