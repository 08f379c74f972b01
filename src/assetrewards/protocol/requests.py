"""
assetrewards/protocol/requests.py

Durable store of scheduled reward requests.

Keys: request:<reward_id> -> RewardRequest

Identifiers are generated by the service layer; the store only refuses
duplicates. Height queries scan every stored request, which is fine because
they run once per new ledger height.
"""

import logging
from typing import List, Optional

from ..models import RewardRequest
from ..storage import RecordStore, StorageBackend, StoreStatus

logger = logging.getLogger("assetrewards.protocol.requests")


class RequestStore(RecordStore[RewardRequest]):
    """
    Store for RewardRequest records.

    Usage:
        store = RequestStore(backend)
        status = await store.schedule(request)
        request = await store.get(reward_id)
        if await store.has_pending(height):
            due = await store.payable_at(height)
    """

    NAMESPACE = "request"

    def __init__(self, backend: StorageBackend):
        super().__init__(
            backend=backend,
            namespace=self.NAMESPACE,
            serializer=RewardRequest.to_dict,
            deserializer=RewardRequest.from_dict,
        )

    async def schedule(self, request: RewardRequest) -> StoreStatus:
        """
        Persist a new reward request.

        Returns:
            OK, or ALREADY_EXISTS if the id is taken
        """
        if await self._exists(request.reward_id):
            logger.warning(f"Reward {request.reward_id} already scheduled")
            return StoreStatus.ALREADY_EXISTS

        await self._write(request.reward_id, request)
        logger.info(
            f"Scheduled reward {request.reward_id}: {request.total_payout_amount} "
            f"{request.funding_asset} units to {request.target_asset} holders "
            f"at height {request.payout_height}"
        )
        return StoreStatus.OK

    async def get(self, reward_id: str) -> Optional[RewardRequest]:
        """Find a reward request by id (None if unknown)."""
        return await self._read(reward_id)

    async def remove(self, reward_id: str) -> StoreStatus:
        """
        Delete a reward request.

        Returns:
            OK, or NOT_FOUND
        """
        if not await self._erase(reward_id):
            return StoreStatus.NOT_FOUND
        logger.info(f"Removed reward {reward_id}")
        return StoreStatus.OK

    async def has_pending(self, height: int) -> bool:
        """Are any rewards scheduled for payout at this height?"""
        for request in await self.all():
            if request.payout_height == height:
                return True
        return False

    async def payable_at(self, height: int, asset: Optional[str] = None) -> List[RewardRequest]:
        """
        Load the requests due at a height.

        Args:
            height: Payout height to match
            asset: Only requests targeting this asset (all if None)

        Returns:
            Matching requests ordered by reward id
        """
        return [
            r for r in await self.all()
            if r.payout_height == height and (asset is None or r.target_asset == asset)
        ]
