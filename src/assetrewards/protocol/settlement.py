"""
assetrewards/protocol/settlement.py

Batched, resumable settlement of computed payouts.

Settlement drains the pending payments of a payout record:

1. Pending = payments not completed with a non-zero amount, in record order
2. Pending is cut into batches of at most batch_size payments
3. Per batch: payments to invalid addresses are marked completed without a
   transfer; the rest are sent in one transfer
4. A successful batch marks its payments completed; a failed batch stays
   pending and the next batch is attempted
5. The record is written back only if some batch succeeded

Running execute() again after a partial failure retries only what is still
pending, so a payment is never sent twice by this engine.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from ..config import MAX_PAYMENTS_PER_BATCH
from ..metrics import RewardsMetrics
from ..models import Payment
from ..blockchain.interfaces import TransferMechanism, TransferReceipt
from ..storage import StoreStatus
from .payouts import PayoutStore

logger = logging.getLogger("assetrewards.protocol.settlement")


def chunk(payments: Sequence[Payment], size: int) -> List[List[Payment]]:
    """Split payments into consecutive batches of at most size items."""
    if size < 1:
        raise ValueError(f"Batch size must be positive, got {size}")
    return [list(payments[i:i + size]) for i in range(0, len(payments), size)]


@dataclass
class BatchOutcome:
    """Result of one settlement batch."""
    index: int
    expected_count: int
    actual_count: int = 0
    success: bool = False
    transfer_id: Optional[str] = None
    error: Optional[str] = None
    sent_addresses: List[str] = field(default_factory=list)
    invalid_addresses: List[str] = field(default_factory=list)

    @property
    def completed_addresses(self) -> List[str]:
        """Addresses this batch marks completed."""
        if self.success:
            return self.sent_addresses + self.invalid_addresses
        return list(self.invalid_addresses)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        if self.transfer_id is not None:
            result["transaction_id"] = self.transfer_id
        if self.error is not None:
            result["error"] = self.error
        result["result"] = "Succeeded" if self.success else "Failed"
        result["expected_count"] = self.expected_count
        result["actual_count"] = self.actual_count
        if self.invalid_addresses:
            result["invalid_addresses"] = list(self.invalid_addresses)
        return result


@dataclass
class SettlementResult:
    """Outcome of one execute() run over a payout record."""
    reward_id: str
    batches: List[BatchOutcome] = field(default_factory=list)
    payout_db_update: str = "skipped"  # succeeded, failed or skipped
    remaining: int = 0

    @property
    def progressed(self) -> bool:
        """At least one batch succeeded."""
        return any(b.success for b in self.batches)

    @property
    def success(self) -> bool:
        """No batch failed."""
        return all(b.success for b in self.batches)

    @property
    def complete(self) -> bool:
        """Nothing is left to pay."""
        return self.remaining == 0

    @property
    def completed_count(self) -> int:
        return sum(len(b.completed_addresses) for b in self.batches)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reward_id": self.reward_id,
            "batch_results": [b.to_dict() for b in self.batches],
            "payout_db_update": self.payout_db_update,
            "progressed": self.progressed,
            "success": self.success,
            "complete": self.complete,
            "remaining_count": self.remaining,
        }


class SettlementEngine:
    """
    Pays out computed rewards through a TransferMechanism.

    Usage:
        engine = SettlementEngine(payout_store, transfer)
        result = await engine.execute(reward_id)
        if result and not result.complete:
            # retry later, only pending payments are attempted
            result = await engine.execute(reward_id)

    Callers must serialize execute() per reward id.
    """

    def __init__(
        self,
        payout_store: PayoutStore,
        transfer: TransferMechanism,
        batch_size: int = MAX_PAYMENTS_PER_BATCH,
        metrics: Optional[RewardsMetrics] = None,
    ):
        """
        Initialize SettlementEngine.

        Args:
            payout_store: Store holding the payout records
            transfer: Mechanism sending each batch
            batch_size: Maximum payments per transfer
            metrics: Optional metrics collector
        """
        if batch_size < 1:
            raise ValueError(f"Batch size must be positive, got {batch_size}")
        self.payout_store = payout_store
        self.transfer = transfer
        self.batch_size = batch_size
        self.metrics = metrics

    async def execute(
        self,
        reward_id: str,
        source_addresses: Sequence[str] = (),
    ) -> Optional[SettlementResult]:
        """
        Settle all pending payments of a reward.

        Args:
            reward_id: Reward whose payout record to settle
            source_addresses: Funding source restriction passed to every
                transfer (empty for any wallet funds)

        Returns:
            SettlementResult, or None if no payout record exists

        Raises:
            StorageError: If the record cannot be read or written back
        """
        record = await self.payout_store.get(reward_id)
        if record is None:
            logger.warning(f"No payout record for reward {reward_id}")
            return None

        result = SettlementResult(reward_id=reward_id)
        pending = record.pending
        if not pending:
            logger.info(f"Reward {reward_id} has no pending payments")
            return result

        batches = chunk(pending, self.batch_size)
        logger.info(
            f"Settling reward {reward_id}: {len(pending)} pending payments "
            f"in {len(batches)} batches"
        )

        for index, batch in enumerate(batches):
            outcome = await self._run_batch(
                index, record.funding_asset, batch, source_addresses
            )
            result.batches.append(outcome)
            if self.metrics:
                self.metrics.record_batch(outcome.success, invalid=len(outcome.invalid_addresses))

        completed = [a for b in result.batches for a in b.completed_addresses]
        updated = record.with_completed(completed)
        result.remaining = len(updated.pending)

        if not result.progressed:
            logger.warning(f"No batch of reward {reward_id} succeeded, nothing recorded")
            # Unchanged on disk, so report what is still owed there
            result.remaining = len(pending)
            return result

        status = await self.payout_store.update(updated)
        if status is StoreStatus.OK:
            result.payout_db_update = "succeeded"
            if self.metrics:
                self.metrics.record_completed(len(pending) - result.remaining)
        else:
            logger.error(
                f"Failed to update payout status for reward {reward_id}: {status.value}"
            )
            result.payout_db_update = "failed"
            result.remaining = len(pending)

        logger.info(
            f"Reward {reward_id}: {sum(1 for b in result.batches if b.success)}/"
            f"{len(result.batches)} batches succeeded, {result.remaining} payments remaining"
        )
        return result

    async def _run_batch(
        self,
        index: int,
        funding_asset: str,
        batch: List[Payment],
        source_addresses: Sequence[str],
    ) -> BatchOutcome:
        outcome = BatchOutcome(index=index, expected_count=len(batch))

        to_send = []
        for payment in batch:
            if self.transfer.is_valid_address(payment.address):
                to_send.append(payment)
            else:
                logger.warning(
                    f"Skipping payment of {payment.amount} to invalid address {payment.address}"
                )
                outcome.invalid_addresses.append(payment.address)

        if not to_send:
            outcome.success = True
            return outcome

        outcome.actual_count = len(to_send)
        try:
            receipt = await self.transfer.transfer(
                funding_asset,
                [(p.address, p.amount) for p in to_send],
                tuple(source_addresses),
            )
        except Exception as e:
            logger.error(f"Transfer of batch {index} raised: {e}")
            receipt = TransferReceipt.failed(str(e) or type(e).__name__)

        outcome.transfer_id = receipt.transfer_id
        if receipt.success:
            outcome.success = True
            outcome.sent_addresses = [p.address for p in to_send]
        else:
            outcome.error = receipt.error or "Transfer failed"
            logger.warning(f"Batch {index} of {len(to_send)} payments failed: {outcome.error}")
        return outcome
