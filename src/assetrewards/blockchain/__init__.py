"""
assetrewards/blockchain/

Ledger collaborators of the reward pipeline.

The abstract interfaces and the node RPC client are exported here. The
Evrmore adapter lives in assetrewards.blockchain.evrmore and is imported
explicitly, since it pulls in python-evrmorelib.
"""

from .interfaces import (
    AssetRegistry,
    ChainInfo,
    SnapshotProvider,
    TransferMechanism,
    TransferReceipt,
)
from .rpc import NodeRpcClient, NodeRpcError

__all__ = [
    # Collaborator interfaces
    "AssetRegistry",
    "ChainInfo",
    "SnapshotProvider",
    "TransferMechanism",
    "TransferReceipt",
    # Node RPC
    "NodeRpcClient",
    "NodeRpcError",
]
