"""
assetrewards/tests/conftest.py

In-memory collaborators shared by the test modules.
"""

from typing import Dict, List, Optional, Sequence, Set, Tuple

import pytest

from assetrewards.blockchain.interfaces import (
    AssetRegistry,
    ChainInfo,
    SnapshotProvider,
    TransferMechanism,
    TransferReceipt,
)
from assetrewards.config import RewardsConfig
from assetrewards.metrics import RewardsMetrics
from assetrewards.service import RewardsService
from assetrewards.storage import MemoryBackend


class FakeSnapshots(SnapshotProvider):
    """Snapshots keyed by (asset, height)."""

    def __init__(self):
        self.snapshots: Dict[Tuple[str, int], List[Tuple[str, int]]] = {}

    def set(self, asset: str, height: int, rows: List[Tuple[str, int]]) -> None:
        self.snapshots[(asset, height)] = list(rows)

    async def ownership_at(self, asset: str, height: int) -> Optional[List[Tuple[str, int]]]:
        rows = self.snapshots.get((asset, height))
        return list(rows) if rows is not None else None


class FakeRegistry(AssetRegistry):
    def __init__(self, units: Optional[Dict[str, int]] = None):
        self.units = {"EVR": 8, "STOCK": 0, "TOKEN": 2, "DIVIDEND": 8}
        self.units.update(units or {})

    async def get_units(self, asset: str) -> Optional[int]:
        return self.units.get(asset)


class FakeChain(ChainInfo):
    def __init__(self, height: int = 1000):
        self.height = height

    async def get_height(self) -> int:
        return self.height


class FakeTransfer(TransferMechanism):
    """
    Records every transfer call.

    Addresses starting with 'E' are valid. Batches containing an address in
    fail_addresses fail; raise_on makes the call raise instead.
    """

    def __init__(self):
        self.calls: List[Tuple[str, List[Tuple[str, int]], Tuple[str, ...]]] = []
        self.sent: List[List[Tuple[str, int]]] = []
        self.fail_addresses: Set[str] = set()
        self.raise_on: Set[str] = set()

    @property
    def paid(self) -> Dict[str, int]:
        """Total successfully sent per address."""
        totals: Dict[str, int] = {}
        for payments in self.sent:
            for address, amount in payments:
                totals[address] = totals.get(address, 0) + amount
        return totals

    def is_valid_address(self, address: str) -> bool:
        return isinstance(address, str) and address.startswith("E")

    async def transfer(
        self,
        funding_asset: str,
        payments: Sequence[Tuple[str, int]],
        source_addresses: Sequence[str] = (),
    ) -> TransferReceipt:
        payments = list(payments)
        self.calls.append((funding_asset, payments, tuple(source_addresses)))
        if any(address in self.raise_on for address, _ in payments):
            raise RuntimeError("node unreachable")
        if any(address in self.fail_addresses for address, _ in payments):
            return TransferReceipt.failed("rejected")
        self.sent.append(payments)
        return TransferReceipt.succeeded(f"tx{len(self.sent)}")


@pytest.fixture
def snapshots():
    return FakeSnapshots()


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def transfer():
    return FakeTransfer()


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def metrics():
    return RewardsMetrics()


@pytest.fixture
def config(tmp_path):
    return RewardsConfig(storage_dir=tmp_path, wallet_name="main", batch_size=2)


@pytest.fixture
async def service(backend, snapshots, registry, chain, transfer, config, metrics):
    async with RewardsService(
        backend, snapshots, registry, chain, transfer, config=config, metrics=metrics
    ) as svc:
        yield svc
