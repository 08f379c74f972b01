"""
assetrewards/blockchain/interfaces.py

Abstract collaborators of the reward pipeline.

The pipeline never talks to a ledger directly. It asks:
- SnapshotProvider: who held the target asset at the payout height
- AssetRegistry: how many decimal places an asset has
- ChainInfo: the current ledger height
- TransferMechanism: send one batch of payments, and which addresses can
  receive a payment at all

Subclass these to implement different blockchain backends (see
evrmore.EvrmoreNode).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple


@dataclass(frozen=True)
class TransferReceipt:
    """Outcome of one batch transfer."""
    transfer_id: Optional[str]
    success: bool
    error: Optional[str] = None

    @classmethod
    def succeeded(cls, transfer_id: str) -> "TransferReceipt":
        return cls(transfer_id=transfer_id, success=True)

    @classmethod
    def failed(cls, error: str) -> "TransferReceipt":
        return cls(transfer_id=None, success=False, error=error)


class SnapshotProvider(ABC):
    """Ownership snapshots of an asset."""

    @abstractmethod
    async def ownership_at(self, asset: str, height: int) -> Optional[List[Tuple[str, int]]]:
        """
        Get holder balances of an asset at a height.

        Args:
            asset: Target asset name
            height: Ledger height of the snapshot

        Returns:
            (address, balance) rows with balances in smallest units, or None
            if no snapshot exists for that asset and height
        """
        pass


class AssetRegistry(ABC):
    """Asset metadata lookups."""

    @abstractmethod
    async def get_units(self, asset: str) -> Optional[int]:
        """Decimal places of an asset (None if the asset does not exist)."""
        pass


class ChainInfo(ABC):
    """Ledger state queries."""

    @abstractmethod
    async def get_height(self) -> int:
        """Current ledger height."""
        pass


class TransferMechanism(ABC):
    """Builds and broadcasts payment transfers."""

    @abstractmethod
    async def transfer(
        self,
        funding_asset: str,
        payments: Sequence[Tuple[str, int]],
        source_addresses: Sequence[str] = (),
    ) -> TransferReceipt:
        """
        Send one batch of payments in a single transfer.

        The batch succeeds or fails as a whole.

        Args:
            funding_asset: Native currency symbol or asset name
            payments: (address, amount in smallest units) pairs
            source_addresses: Restrict spent funds to these addresses
                (empty means any wallet funds)

        Returns:
            TransferReceipt with the transfer id on success
        """
        pass

    @abstractmethod
    def is_valid_address(self, address: str) -> bool:
        """Can this address receive a payment?"""
        pass
