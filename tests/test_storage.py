"""
assetrewards/tests/test_storage.py

Tests for storage backends and record stores.
"""

import os

import pytest

from assetrewards.errors import StorageError
from assetrewards.models import Payment, PayoutRecord, RewardRequest
from assetrewards.protocol.payouts import PayoutStore
from assetrewards.protocol.requests import RequestStore
from assetrewards.storage import FileBackend, MemoryBackend, StoreStatus


def make_request(reward_id="00000000-0000-4000-8000-000000000001", height=1061, target="STOCK"):
    return RewardRequest(
        reward_id=reward_id,
        wallet_name="main",
        payout_height=height,
        total_payout_amount=1000,
        funding_asset="EVR",
        target_asset=target,
    )


class TestMemoryBackend:
    """Test MemoryBackend class."""

    @pytest.fixture
    async def backend(self):
        async with MemoryBackend() as backend:
            yield backend

    @pytest.mark.trio
    async def test_put_and_get(self, backend):
        """Test basic put and get."""
        await backend.put("key1", b"value1")
        result = await backend.get("key1")
        assert result == b"value1"

    @pytest.mark.trio
    async def test_get_nonexistent(self, backend):
        result = await backend.get("nonexistent")
        assert result is None

    @pytest.mark.trio
    async def test_delete(self, backend):
        """Test deleting a key."""
        await backend.put("key1", b"value1")
        assert await backend.delete("key1") is True
        assert await backend.get("key1") is None
        assert await backend.delete("key1") is False

    @pytest.mark.trio
    async def test_list_keys_sorted(self, backend):
        """Test listing keys."""
        await backend.put("prefix:key2", b"v2")
        await backend.put("prefix:key1", b"v1")
        await backend.put("other:key3", b"v3")

        assert await backend.list_keys("prefix:") == ["prefix:key1", "prefix:key2"]
        assert len(await backend.list_keys("")) == 3

    @pytest.mark.trio
    async def test_closed_backend_raises(self):
        backend = MemoryBackend()
        with pytest.raises(StorageError):
            await backend.get("key1")

        await backend.open()
        await backend.close()
        assert not backend.is_open
        with pytest.raises(StorageError):
            await backend.put("key1", b"v")


class TestFileBackend:
    """Test FileBackend class."""

    @pytest.fixture
    async def backend(self, tmp_path):
        async with FileBackend(tmp_path / "store") as backend:
            yield backend

    @pytest.mark.trio
    async def test_put_and_get(self, backend):
        await backend.put("request:abc", b"value1")
        assert await backend.get("request:abc") == b"value1"

    @pytest.mark.trio
    async def test_overwrite(self, backend):
        await backend.put("key1", b"old")
        await backend.put("key1", b"new")
        assert await backend.get("key1") == b"new"

    @pytest.mark.trio
    async def test_delete(self, backend):
        await backend.put("key1", b"value1")
        assert await backend.delete("key1") is True
        assert await backend.delete("key1") is False
        assert await backend.get("key1") is None

    @pytest.mark.trio
    async def test_keys_with_separators_round_trip(self, backend):
        """Keys are hex-encoded into file names, any character works."""
        await backend.put("payout:a/b:c", b"1")
        await backend.put("request:x y", b"2")

        assert await backend.list_keys("payout:") == ["payout:a/b:c"]
        assert await backend.list_keys() == ["payout:a/b:c", "request:x y"]

    @pytest.mark.trio
    async def test_persistence_across_reopen(self, tmp_path):
        """Data survives closing and reopening the backend."""
        path = tmp_path / "store"
        async with FileBackend(path) as backend:
            await backend.put("key1", b"value1")

        async with FileBackend(path) as backend:
            assert await backend.get("key1") == b"value1"

    @pytest.mark.trio
    async def test_open_removes_incomplete_writes(self, tmp_path):
        path = tmp_path / "store"
        path.mkdir()
        stale = path / ("6b6579.dat" + FileBackend.TMP_SUFFIX)
        stale.write_bytes(b"partial")

        async with FileBackend(path) as backend:
            assert not stale.exists()
            assert await backend.list_keys() == []

    @pytest.mark.trio
    async def test_no_temp_files_left(self, backend):
        await backend.put("key1", b"value1")
        leftovers = [n for n in os.listdir(backend.storage_dir) if n.endswith(FileBackend.TMP_SUFFIX)]
        assert leftovers == []

    @pytest.mark.trio
    async def test_open_failure_is_storage_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_bytes(b"")
        with pytest.raises(StorageError):
            await FileBackend(blocker / "store").open()


class TestRequestStore:
    """Test RequestStore."""

    @pytest.fixture
    async def store(self):
        async with MemoryBackend() as backend:
            yield RequestStore(backend)

    @pytest.mark.trio
    async def test_schedule_and_get(self, store):
        request = make_request()
        assert await store.schedule(request) is StoreStatus.OK
        assert await store.get(request.reward_id) == request

    @pytest.mark.trio
    async def test_duplicate_id(self, store):
        request = make_request()
        await store.schedule(request)
        assert await store.schedule(request) is StoreStatus.ALREADY_EXISTS

    @pytest.mark.trio
    async def test_remove(self, store):
        request = make_request()
        await store.schedule(request)

        assert await store.remove(request.reward_id) is StoreStatus.OK
        assert await store.get(request.reward_id) is None
        assert await store.remove(request.reward_id) is StoreStatus.NOT_FOUND

    @pytest.mark.trio
    async def test_height_queries(self, store):
        await store.schedule(make_request("00000000-0000-4000-8000-000000000003", 1061))
        await store.schedule(make_request("00000000-0000-4000-8000-000000000002", 1061, "TOKEN"))
        await store.schedule(make_request("00000000-0000-4000-8000-000000000001", 1070))

        assert await store.has_pending(1061)
        assert not await store.has_pending(1062)

        due = await store.payable_at(1061)
        assert [r.reward_id for r in due] == [
            "00000000-0000-4000-8000-000000000002",
            "00000000-0000-4000-8000-000000000003",
        ]
        assert [r.target_asset for r in await store.payable_at(1061, "TOKEN")] == ["TOKEN"]

    @pytest.mark.trio
    async def test_corrupt_record(self, store):
        await store.backend.put("request:broken", b"{not json")
        with pytest.raises(StorageError):
            await store.get("broken")


class TestPayoutStore:
    """Test PayoutStore."""

    @pytest.fixture
    async def store(self):
        async with MemoryBackend() as backend:
            yield PayoutStore(backend)

    @pytest.fixture
    def record(self):
        return PayoutRecord(
            reward_id="r1",
            target_asset="STOCK",
            funding_asset="EVR",
            payments=(Payment("EA", 10), Payment("EB", 20)),
        )

    @pytest.mark.trio
    async def test_create_and_get(self, store, record):
        assert await store.create(record) is StoreStatus.OK
        assert await store.get("r1") == record
        assert await store.create(record) is StoreStatus.ALREADY_EXISTS

    @pytest.mark.trio
    async def test_update_replaces_payment_set(self, store, record):
        await store.create(record)
        assert await store.update(record.with_completed(["EA"])) is StoreStatus.OK

        stored = await store.get("r1")
        assert stored.get_payment("EA").completed
        assert not stored.get_payment("EB").completed

    @pytest.mark.trio
    async def test_update_missing(self, store, record):
        assert await store.update(record) is StoreStatus.NOT_FOUND

    @pytest.mark.trio
    async def test_remove(self, store, record):
        await store.create(record)
        assert await store.remove("r1") is StoreStatus.OK
        assert await store.remove("r1") is StoreStatus.NOT_FOUND

    @pytest.mark.trio
    async def test_remove_refused_after_completion(self, store, record):
        await store.create(record)
        await store.update(record.with_completed(["EB"]))

        assert await store.remove("r1") is StoreStatus.CONFLICT
        assert await store.get("r1") is not None

    @pytest.mark.trio
    async def test_file_persisted_layout(self, tmp_path, record):
        """Records are stored as ordered JSON under payout:<id>."""
        async with FileBackend(tmp_path) as backend:
            await PayoutStore(backend).create(record)
            raw = await backend.get("payout:r1")

        assert raw.startswith(b'{"reward_id":"r1","target_asset":"STOCK","funding_asset":"EVR"')
        assert b'"payments":[{"address":"EA","amount":10,"completed":false}' in raw
