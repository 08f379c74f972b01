"""
assetrewards/tests/test_settlement.py

Tests for batched settlement.
"""

from unittest.mock import AsyncMock

import pytest

from assetrewards.errors import StorageError
from assetrewards.metrics import RewardsMetrics
from assetrewards.models import Payment, PayoutRecord
from assetrewards.protocol.payouts import PayoutStore
from assetrewards.protocol.settlement import SettlementEngine, chunk
from assetrewards.storage import MemoryBackend, StoreStatus


def make_record(count, amount=10, funding="EVR"):
    return PayoutRecord(
        reward_id="r1",
        target_asset="STOCK",
        funding_asset=funding,
        payments=tuple(Payment(f"E{i:03d}", amount) for i in range(count)),
    )


@pytest.fixture
async def store():
    async with MemoryBackend() as backend:
        yield PayoutStore(backend)


class TestChunk:
    def test_exact_and_partial_batches(self):
        payments = [Payment(f"E{i}", 1) for i in range(5)]
        assert [len(b) for b in chunk(payments, 2)] == [2, 2, 1]
        assert [len(b) for b in chunk(payments, 5)] == [5]
        assert chunk([], 3) == []

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            chunk([], 0)


class TestSettlementEngine:
    """Test SettlementEngine.execute."""

    @pytest.mark.trio
    async def test_missing_record(self, store, transfer):
        engine = SettlementEngine(store, transfer)
        assert await engine.execute("nope") is None

    @pytest.mark.trio
    async def test_settles_everything_in_batches(self, store, transfer):
        await store.create(make_record(120))
        engine = SettlementEngine(store, transfer, batch_size=50)

        result = await engine.execute("r1")

        assert [len(payments) for _, payments, _ in transfer.calls] == [50, 50, 20]
        assert result.success and result.progressed and result.complete
        assert result.payout_db_update == "succeeded"
        assert [b.transfer_id for b in result.batches] == ["tx1", "tx2", "tx3"]
        assert (await store.get("r1")).is_complete

    @pytest.mark.trio
    async def test_idempotent(self, store, transfer):
        """A second run sends nothing."""
        await store.create(make_record(5))
        engine = SettlementEngine(store, transfer, batch_size=2)

        await engine.execute("r1")
        calls = len(transfer.calls)
        result = await engine.execute("r1")

        assert len(transfer.calls) == calls
        assert result.batches == []
        assert result.complete
        assert result.payout_db_update == "skipped"
        assert transfer.paid == {f"E{i:03d}": 10 for i in range(5)}

    @pytest.mark.trio
    async def test_partial_failure_then_resume(self, store, transfer):
        """Batch 2 of 3 fails; a retry sends only that batch."""
        await store.create(make_record(6))
        engine = SettlementEngine(store, transfer, batch_size=2)
        transfer.fail_addresses = {"E002"}

        first = await engine.execute("r1")

        assert [b.success for b in first.batches] == [True, False, True]
        assert first.progressed and not first.success and not first.complete
        assert first.remaining == 2
        assert first.batches[1].to_dict()["result"] == "Failed"
        stored = await store.get("r1")
        assert [p.address for p in stored.pending] == ["E002", "E003"]

        transfer.fail_addresses = set()
        second = await engine.execute("r1")

        assert len(second.batches) == 1
        assert transfer.calls[-1][1] == [("E002", 10), ("E003", 10)]
        assert second.complete
        # Every payment sent exactly once
        assert transfer.paid == {f"E{i:03d}": 10 for i in range(6)}
        assert sum(len(p) for p in transfer.sent) == 6

    @pytest.mark.trio
    async def test_no_progress_writes_nothing(self, store, transfer):
        record = make_record(3)
        await store.create(record)
        store.update = AsyncMock(wraps=store.update)
        transfer.fail_addresses = {"E000", "E002"}
        engine = SettlementEngine(store, transfer, batch_size=2)

        result = await engine.execute("r1")

        assert not result.progressed
        assert result.payout_db_update == "skipped"
        assert result.remaining == 3
        store.update.assert_not_awaited()
        assert await store.get("r1") == record

    @pytest.mark.trio
    async def test_raising_transfer_is_failed_batch(self, store, transfer):
        await store.create(make_record(4))
        transfer.raise_on = {"E000"}
        engine = SettlementEngine(store, transfer, batch_size=2)

        result = await engine.execute("r1")

        assert [b.success for b in result.batches] == [False, True]
        assert "node unreachable" in result.batches[0].error
        assert result.payout_db_update == "succeeded"

    @pytest.mark.trio
    async def test_invalid_addresses_completed_without_transfer(self, store, transfer):
        record = PayoutRecord("r1", "STOCK", "EVR", (
            Payment("EA0", 5), Payment("bad", 5), Payment("EB0", 5),
        ))
        await store.create(record)
        engine = SettlementEngine(store, transfer, batch_size=50)

        result = await engine.execute("r1")

        assert transfer.calls[0][1] == [("EA0", 5), ("EB0", 5)]
        batch = result.batches[0].to_dict()
        assert batch["expected_count"] == 3
        assert batch["actual_count"] == 2
        assert batch["invalid_addresses"] == ["bad"]
        assert (await store.get("r1")).get_payment("bad").completed

    @pytest.mark.trio
    async def test_batch_of_only_invalid_addresses(self, store, transfer):
        record = PayoutRecord("r1", "STOCK", "EVR", (Payment("bad1", 5), Payment("bad2", 5)))
        await store.create(record)
        engine = SettlementEngine(store, transfer)

        result = await engine.execute("r1")

        assert transfer.calls == []
        assert result.success and result.complete
        assert result.batches[0].transfer_id is None

    @pytest.mark.trio
    async def test_zero_payments_never_sent(self, store, transfer):
        record = PayoutRecord("r1", "STOCK", "EVR", (Payment("EA0", 0), Payment("EB0", 4)))
        await store.create(record)

        result = await SettlementEngine(store, transfer).execute("r1")

        assert transfer.calls[0][1] == [("EB0", 4)]
        assert result.complete
        assert not (await store.get("r1")).get_payment("EA0").completed

    @pytest.mark.trio
    async def test_source_addresses_passed_through(self, store, transfer):
        await store.create(make_record(1, funding="STOCK"))
        await SettlementEngine(store, transfer).execute("r1", ("EFUND",))
        assert transfer.calls[0] == ("STOCK", [("E000", 10)], ("EFUND",))

    @pytest.mark.trio
    async def test_failed_batch_reports_attempted_count(self, store, transfer):
        record = PayoutRecord("r1", "STOCK", "EVR", (
            Payment("EA0", 5), Payment("bad", 5), Payment("EB0", 5),
        ))
        await store.create(record)
        transfer.fail_addresses = {"EA0"}

        result = await SettlementEngine(store, transfer).execute("r1")

        batch = result.batches[0].to_dict()
        assert batch["result"] == "Failed"
        assert batch["expected_count"] == 3
        assert batch["actual_count"] == 2

    @pytest.mark.trio
    async def test_storage_failure_propagates(self, store, transfer):
        record = make_record(2)
        await store.create(record)
        store.update = AsyncMock(side_effect=StorageError("disk full"))

        with pytest.raises(StorageError):
            await SettlementEngine(store, transfer).execute("r1")

        # Nothing marked completed
        assert await store.get("r1") == record

    @pytest.mark.trio
    async def test_record_removed_during_settlement(self, store, transfer):
        await store.create(make_record(2))
        store.update = AsyncMock(return_value=StoreStatus.NOT_FOUND)

        result = await SettlementEngine(store, transfer).execute("r1")

        assert result.payout_db_update == "failed"
        assert not result.complete

    @pytest.mark.trio
    async def test_metrics_recorded(self, store, transfer):
        metrics = RewardsMetrics()
        await store.create(make_record(3))
        transfer.fail_addresses = {"E002"}

        await SettlementEngine(store, transfer, batch_size=2, metrics=metrics).execute("r1")

        stats = metrics.get_stats()
        assert stats["batches_succeeded_total"] == 1
        assert stats["batches_failed_total"] == 1
        assert stats["payments_completed_total"] == 2

    @pytest.mark.trio
    async def test_metrics_count_skipped_addresses_of_failed_batch(self, store, transfer):
        metrics = RewardsMetrics()
        record = PayoutRecord("r1", "STOCK", "EVR", (
            Payment("EA0", 5), Payment("EB0", 5), Payment("EC0", 5), Payment("bad", 5),
        ))
        await store.create(record)
        transfer.fail_addresses = {"EC0"}

        result = await SettlementEngine(
            store, transfer, batch_size=2, metrics=metrics
        ).execute("r1")

        assert [b.success for b in result.batches] == [True, False]
        assert (await store.get("r1")).get_payment("bad").completed
        stats = metrics.get_stats()
        assert stats["payments_completed_total"] == 3
        assert stats["invalid_addresses_total"] == 1

    @pytest.mark.trio
    async def test_metrics_untouched_without_progress(self, store, transfer):
        metrics = RewardsMetrics()
        await store.create(PayoutRecord("r1", "STOCK", "EVR", (
            Payment("EA0", 5), Payment("bad", 5),
        )))
        transfer.fail_addresses = {"EA0"}

        await SettlementEngine(store, transfer, metrics=metrics).execute("r1")

        assert metrics.get_stats()["payments_completed_total"] == 0

    def test_invalid_batch_size(self, transfer):
        with pytest.raises(ValueError):
            SettlementEngine(PayoutStore(MemoryBackend()), transfer, batch_size=0)
