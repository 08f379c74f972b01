"""
assetrewards/protocol/

Reward lifecycle: request and payout stores, payout calculation and
batched settlement.
"""

from .requests import RequestStore
from .payouts import PayoutStore
from .calculator import (
    Allocation,
    AllocationFailure,
    allocate,
    compute,
    eligible_holdings,
)
from .settlement import BatchOutcome, SettlementEngine, SettlementResult, chunk
from .locks import KeyedLock

__all__ = [
    # Stores
    "RequestStore",
    "PayoutStore",
    # Calculation
    "Allocation",
    "AllocationFailure",
    "allocate",
    "compute",
    "eligible_holdings",
    # Settlement
    "BatchOutcome",
    "SettlementEngine",
    "SettlementResult",
    "chunk",
    "KeyedLock",
]
