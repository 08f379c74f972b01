"""
assetrewards/protocol/payouts.py

Durable store of computed payout records.

Keys: payout:<reward_id> -> PayoutRecord (the whole payment set in one value)

Records are immutable; get() always decodes a fresh copy, so changes only
reach storage through update().
"""

import logging
from typing import Optional

from ..models import PayoutRecord
from ..storage import RecordStore, StorageBackend, StoreStatus

logger = logging.getLogger("assetrewards.protocol.payouts")


class PayoutStore(RecordStore[PayoutRecord]):
    """Store for PayoutRecord records."""

    NAMESPACE = "payout"

    def __init__(self, backend: StorageBackend):
        super().__init__(
            backend=backend,
            namespace=self.NAMESPACE,
            serializer=PayoutRecord.to_dict,
            deserializer=PayoutRecord.from_dict,
        )

    async def create(self, record: PayoutRecord) -> StoreStatus:
        """
        Persist a freshly computed payout record.

        Returns:
            OK, or ALREADY_EXISTS
        """
        if await self._exists(record.reward_id):
            logger.warning(f"Payouts for reward {record.reward_id} already exist")
            return StoreStatus.ALREADY_EXISTS

        await self._write(record.reward_id, record)
        logger.info(
            f"Stored {len(record.payments)} payments for reward {record.reward_id} "
            f"({record.total_amount} {record.funding_asset} units)"
        )
        return StoreStatus.OK

    async def get(self, reward_id: str) -> Optional[PayoutRecord]:
        """Retrieve a payout record (None if not computed)."""
        return await self._read(reward_id)

    async def update(self, record: PayoutRecord) -> StoreStatus:
        """
        Replace the stored payment set of an existing record.

        Returns:
            OK, or NOT_FOUND if the record was removed meanwhile
        """
        if not await self._exists(record.reward_id):
            logger.warning(f"Cannot update missing payouts for reward {record.reward_id}")
            return StoreStatus.NOT_FOUND

        await self._write(record.reward_id, record)
        logger.debug(
            f"Updated payouts for reward {record.reward_id}: "
            f"{record.completed_count}/{len(record.payments)} completed"
        )
        return StoreStatus.OK

    async def remove(self, reward_id: str) -> StoreStatus:
        """
        Delete a payout record, unless any payment was already sent.

        Returns:
            OK, NOT_FOUND, or CONFLICT if a payment is completed
        """
        record = await self._read(reward_id)
        if record is None:
            return StoreStatus.NOT_FOUND

        if record.has_completed_payments:
            logger.warning(
                f"Refusing to remove payouts for reward {reward_id}: "
                f"{record.completed_count} payments already completed"
            )
            return StoreStatus.CONFLICT

        await self._erase(reward_id)
        logger.info(f"Removed payouts for reward {reward_id}")
        return StoreStatus.OK
