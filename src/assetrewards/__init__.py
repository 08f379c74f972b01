"""
assetrewards - Proportional asset rewards for Evrmore

Pays a fungible asset (EVR or a token) to the holders of another asset at a
future ledger height:
- Reward requests persisted until their payout height
- Snapshot-driven payout computation with exact integer division
- Batched, resumable settlement that never pays a payment twice
- Evrmore node adapter over JSON-RPC
- Prometheus metrics for monitoring

Usage:
    from assetrewards import RewardsService, FileBackend
    from assetrewards.blockchain.evrmore import EvrmoreNode
    from assetrewards.blockchain.rpc import NodeRpcClient

    node = EvrmoreNode(NodeRpcClient(url, user, password))
    service = RewardsService(FileBackend(path), node, node, node, node)

    async with service:
        reward_id, height = await service.schedule("100", "EVR", "STOCK")

        # once the chain reaches the payout height
        await service.on_new_height(height)
        result = await service.settle(reward_id)

CLI Usage:
    assetrewards schedule 100 EVR STOCK
    assetrewards tick
    assetrewards settle <reward_id>
"""

from .config import RewardsConfig, NATIVE_CURRENCY, FUTURE_BLOCK_HEIGHT_OFFSET
from .errors import (
    RewardsError,
    ValidationError,
    NotFoundError,
    SnapshotUnavailable,
    ConflictError,
    InfeasibleAllocation,
    NoEligibleHolders,
    StorageError,
)
from .models import (
    AssetType,
    RewardRequest,
    Payment,
    PayoutRecord,
    classify_asset,
    parse_amount,
    format_amount,
)
from .storage import StorageBackend, MemoryBackend, FileBackend, StoreStatus
from .metrics import RewardsMetrics
from .protocol import (
    RequestStore,
    PayoutStore,
    AllocationFailure,
    SettlementEngine,
    SettlementResult,
    BatchOutcome,
)
from .service import RewardsService

__version__ = "0.1.0"

__all__ = [
    # Config
    "RewardsConfig",
    "NATIVE_CURRENCY",
    "FUTURE_BLOCK_HEIGHT_OFFSET",
    # Errors
    "RewardsError",
    "ValidationError",
    "NotFoundError",
    "SnapshotUnavailable",
    "ConflictError",
    "InfeasibleAllocation",
    "NoEligibleHolders",
    "StorageError",
    # Models
    "AssetType",
    "RewardRequest",
    "Payment",
    "PayoutRecord",
    "classify_asset",
    "parse_amount",
    "format_amount",
    # Storage
    "StorageBackend",
    "MemoryBackend",
    "FileBackend",
    "StoreStatus",
    # Pipeline
    "RequestStore",
    "PayoutStore",
    "AllocationFailure",
    "SettlementEngine",
    "SettlementResult",
    "BatchOutcome",
    "RewardsService",
    # Metrics
    "RewardsMetrics",
]
