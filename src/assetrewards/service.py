"""
assetrewards/service.py

Reward lifecycle service.

RewardsService is the boundary of the package: it validates caller input,
serializes work per reward id, drives the stores, calculator and settlement
engine, and turns their status values into RewardsError exceptions.

Usage:
    async with RewardsService(backend, snapshots, registry, chain, transfer) as service:
        reward_id, height = await service.schedule("100", "EVR", "STOCK")
        ...
        await service.on_new_height(height)      # computes payouts due now
        result = await service.settle(reward_id)
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .config import NATIVE_UNITS, RewardsConfig
from .errors import (
    ConflictError,
    InfeasibleAllocation,
    NoEligibleHolders,
    NotFoundError,
    RewardsError,
    SnapshotUnavailable,
    StorageError,
    ValidationError,
)
from .metrics import RewardsMetrics
from .models import (
    AmountInput,
    PayoutRecord,
    RewardRequest,
    classify_asset,
    is_rewardable_asset,
    new_reward_id,
    normalize_reward_id,
    parse_address_list,
    parse_amount,
)
from .blockchain.interfaces import AssetRegistry, ChainInfo, SnapshotProvider, TransferMechanism
from .protocol.calculator import AllocationFailure, compute
from .protocol.locks import KeyedLock
from .protocol.payouts import PayoutStore
from .protocol.requests import RequestStore
from .protocol.settlement import SettlementEngine, SettlementResult
from .storage import StorageBackend, StoreStatus

logger = logging.getLogger("assetrewards.service")


class RewardsService:
    """
    Schedules, computes and settles asset rewards.

    The service owns the storage backend lifecycle: open() opens it and
    close() flushes and closes it (or use the service as an async context
    manager).
    """

    def __init__(
        self,
        backend: StorageBackend,
        snapshots: SnapshotProvider,
        registry: AssetRegistry,
        chain: ChainInfo,
        transfer: TransferMechanism,
        config: Optional[RewardsConfig] = None,
        metrics: Optional[RewardsMetrics] = None,
    ):
        """
        Initialize RewardsService.

        Args:
            backend: Storage backend for requests and payouts
            snapshots: Ownership snapshot source
            registry: Asset metadata source
            chain: Ledger height source
            transfer: Transfer mechanism used for settlement
            config: Runtime configuration (defaults if None)
            metrics: Optional metrics collector
        """
        self.config = config or RewardsConfig()
        self.backend = backend
        self.snapshots = snapshots
        self.registry = registry
        self.chain = chain
        self.transfer = transfer
        self.metrics = metrics

        self.requests = RequestStore(backend)
        self.payouts = PayoutStore(backend)
        self.engine = SettlementEngine(
            self.payouts,
            transfer,
            batch_size=self.config.batch_size,
            metrics=metrics,
        )
        self._locks = KeyedLock()

    async def open(self) -> None:
        await self.backend.open()

    async def close(self) -> None:
        await self.backend.close()

    async def __aenter__(self) -> "RewardsService":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ========================================================================
    # VALIDATION
    # ========================================================================

    def _reward_id(self, value: Any) -> str:
        try:
            return normalize_reward_id(value)
        except ValueError as e:
            raise ValidationError(str(e), {"reward_id": str(value)})

    def _is_native(self, asset: str) -> bool:
        return asset == self.config.native_currency

    async def _asset_units(self, asset: str, role: str) -> int:
        """Validate a funding/target asset and return its units."""
        if not isinstance(asset, str) or not asset:
            raise ValidationError(f"Invalid {role}: asset name required")

        if self._is_native(asset):
            if role == "target_asset":
                raise ValidationError(
                    f"Invalid target_asset: {asset} is the native currency",
                    {"asset": asset},
                )
            return NATIVE_UNITS

        asset_type = classify_asset(asset)
        if not is_rewardable_asset(asset):
            raise ValidationError(
                f"Invalid {role}: {asset_type.value} assets cannot be used for rewards",
                {"asset": asset, "asset_type": asset_type.value},
            )

        units = await self.registry.get_units(asset)
        if units is None:
            raise ValidationError(f"Invalid {role}: unknown asset {asset}", {"asset": asset})
        return units

    async def _request_or_raise(self, reward_id: str) -> RewardRequest:
        request = await self.requests.get(reward_id)
        if request is None:
            raise NotFoundError(f"Reward {reward_id} not found", {"reward_id": reward_id})
        return request

    async def _payouts_or_raise(self, reward_id: str) -> PayoutRecord:
        record = await self.payouts.get(reward_id)
        if record is None:
            raise NotFoundError(f"No payouts for reward {reward_id}", {"reward_id": reward_id})
        return record

    # ========================================================================
    # REQUESTS
    # ========================================================================

    async def schedule(
        self,
        amount: AmountInput,
        funding_asset: str,
        target_asset: str,
        exceptions: Union[None, str, Iterable[str]] = None,
    ) -> Tuple[str, int]:
        """
        Schedule a reward paid to target asset holders.

        Args:
            amount: Total payout in whole units of the funding asset
                ("100", "0.5", Decimal or int)
            funding_asset: Native currency symbol or asset name to pay with
            target_asset: Asset whose holders get paid
            exceptions: Addresses excluded from the payout, as a list or a
                comma-delimited string

        Returns:
            (reward_id, payout_height)

        Raises:
            ValidationError: Bad asset, amount or exception address
            ConflictError: Generated id collided with a stored one
        """
        funding_units = await self._asset_units(funding_asset, "funding_asset")
        await self._asset_units(target_asset, "target_asset")

        try:
            total = parse_amount(amount, funding_units)
        except ValueError as e:
            raise ValidationError(f"Invalid amount to reward: {e}", {"amount": str(amount)})
        if total <= 0:
            raise ValidationError("Invalid amount to reward", {"amount": str(amount)})

        exception_addresses = parse_address_list(exceptions)
        invalid = [a for a in exception_addresses if not self.transfer.is_valid_address(a)]
        if invalid:
            raise ValidationError(
                f"Invalid exception addresses: {', '.join(invalid)}",
                {"addresses": invalid},
            )

        if funding_asset == target_asset and not exception_addresses:
            raise ValidationError(
                "Rewards paid in the target asset need exception addresses to fund them",
                {"asset": target_asset},
            )

        height = await self.chain.get_height()
        request = RewardRequest(
            reward_id=new_reward_id(),
            wallet_name=self.config.wallet_name,
            payout_height=height + self.config.payout_height_offset,
            total_payout_amount=total,
            funding_asset=funding_asset,
            target_asset=target_asset,
            exception_addresses=exception_addresses,
        )

        async with self._locks.hold(request.reward_id):
            status = await self.requests.schedule(request)
        if status is StoreStatus.ALREADY_EXISTS:
            raise ConflictError(
                f"Reward {request.reward_id} already exists", {"reward_id": request.reward_id}
            )

        if self.metrics:
            self.metrics.record_scheduled()
        return request.reward_id, request.payout_height

    async def get(self, reward_id: str) -> RewardRequest:
        """Retrieve a scheduled reward."""
        return await self._request_or_raise(self._reward_id(reward_id))

    async def cancel(self, reward_id: str) -> Dict[str, Any]:
        """
        Cancel a scheduled reward.

        Computed payouts are removed with the request, unless a payment was
        already sent.

        Raises:
            NotFoundError: Unknown reward
            ConflictError: Some payment is already completed
        """
        reward_id = self._reward_id(reward_id)
        async with self._locks.hold(reward_id):
            await self._request_or_raise(reward_id)

            result = {"reward_id": reward_id}
            status = await self.payouts.remove(reward_id)
            if status is StoreStatus.CONFLICT:
                raise ConflictError(
                    f"Reward {reward_id} has completed payments and cannot be cancelled",
                    {"reward_id": reward_id},
                )

            if await self.requests.remove(reward_id) is StoreStatus.NOT_FOUND:
                raise NotFoundError(f"Reward {reward_id} not found", {"reward_id": reward_id})
            result["reward_status"] = "Removed"
            if status is StoreStatus.OK:
                result["payment_status"] = "Removed"

        if self.metrics:
            self.metrics.record_cancelled()
        return result

    # ========================================================================
    # PAYOUTS
    # ========================================================================

    async def compute(self, reward_id: str) -> Dict[str, Any]:
        """
        Compute and store the payments of a reward.

        Returns:
            Payout summary (see PayoutRecord.summary)

        Raises:
            NotFoundError: Unknown reward
            SnapshotUnavailable: No ownership snapshot at the payout height
            ConflictError: Payouts already computed
            NoEligibleHolders / InfeasibleAllocation: Allocation impossible
        """
        reward_id = self._reward_id(reward_id)
        async with self._locks.hold(reward_id):
            request = await self._request_or_raise(reward_id)
            record = await self._compute_locked(request)
        return record.summary(request.payout_height)

    async def _compute_locked(self, request: RewardRequest) -> PayoutRecord:
        reward_id = request.reward_id
        if await self.payouts.get(reward_id) is not None:
            raise ConflictError(
                f"Payouts for reward {reward_id} already computed", {"reward_id": reward_id}
            )

        snapshot = await self.snapshots.ownership_at(request.target_asset, request.payout_height)
        if snapshot is None:
            raise SnapshotUnavailable(
                f"No ownership snapshot of {request.target_asset} "
                f"at height {request.payout_height}",
                {"asset": request.target_asset, "height": request.payout_height},
            )

        outcome = compute(request, snapshot)
        if isinstance(outcome, AllocationFailure):
            if self.metrics:
                self.metrics.record_allocation_failure(outcome.value)
            details = {"reward_id": reward_id, "asset": request.target_asset}
            if outcome is AllocationFailure.NO_ELIGIBLE_HOLDERS:
                raise NoEligibleHolders(
                    f"No eligible holders of {request.target_asset}", details
                )
            raise InfeasibleAllocation(
                "Cannot reward target holders equally with the given divisibility", details
            )

        if await self.payouts.create(outcome) is StoreStatus.ALREADY_EXISTS:
            raise ConflictError(
                f"Payouts for reward {reward_id} already computed", {"reward_id": reward_id}
            )
        if self.metrics:
            self.metrics.record_computed()
        return outcome

    async def get_payouts(self, reward_id: str) -> Dict[str, Any]:
        """Retrieve the computed payouts of a reward with completion state."""
        reward_id = self._reward_id(reward_id)
        record = await self._payouts_or_raise(reward_id)
        request = await self.requests.get(reward_id)
        return record.summary(request.payout_height if request else None)

    async def cancel_payouts(self, reward_id: str) -> Dict[str, Any]:
        """
        Discard computed payouts so they can be recomputed.

        Raises:
            NotFoundError: No payouts for this reward
            ConflictError: Some payment is already completed
        """
        reward_id = self._reward_id(reward_id)
        async with self._locks.hold(reward_id):
            status = await self.payouts.remove(reward_id)
        if status is StoreStatus.NOT_FOUND:
            raise NotFoundError(f"No payouts for reward {reward_id}", {"reward_id": reward_id})
        if status is StoreStatus.CONFLICT:
            raise ConflictError(
                f"Payouts for reward {reward_id} have completed payments",
                {"reward_id": reward_id},
            )
        return {"reward_id": reward_id, "payment_status": "Removed"}

    # ========================================================================
    # SETTLEMENT
    # ========================================================================

    async def settle(self, reward_id: str) -> SettlementResult:
        """
        Send all pending payments of a reward.

        Safe to call again after a partial failure: only payments not yet
        completed are attempted.

        Raises:
            NotFoundError: No payouts for this reward
            ConflictError: Self-funded reward whose request was removed
            StorageError: Completion state could not be recorded
        """
        reward_id = self._reward_id(reward_id)
        async with self._locks.hold(reward_id):
            request = await self.requests.get(reward_id)
            sources: Tuple[str, ...] = ()
            if request is not None:
                if request.is_self_funded:
                    sources = request.exception_addresses
            else:
                record = await self._payouts_or_raise(reward_id)
                if record.funding_asset == record.target_asset:
                    # Funding addresses live on the request only
                    raise ConflictError(
                        f"Reward {reward_id} pays its target asset and its request "
                        "is gone, funding addresses unknown",
                        {"reward_id": reward_id},
                    )
            result = await self.engine.execute(reward_id, sources)

        if result is None:
            raise NotFoundError(f"No payouts for reward {reward_id}", {"reward_id": reward_id})
        return result

    async def on_new_height(self, height: int) -> List[str]:
        """
        Compute payouts for every reward due at a new ledger height.

        Rewards that cannot be computed are logged and skipped; storage
        failures propagate.

        Returns:
            Ids of the rewards whose payouts were computed
        """
        computed = []
        if not await self.requests.has_pending(height):
            return computed

        for request in await self.requests.payable_at(height):
            async with self._locks.hold(request.reward_id):
                # Re-read under the lock, it may have been cancelled meanwhile
                current = await self.requests.get(request.reward_id)
                if current is None or await self.payouts.get(current.reward_id) is not None:
                    continue
                try:
                    await self._compute_locked(current)
                except StorageError:
                    raise
                except RewardsError as e:
                    logger.warning(f"Skipping reward {current.reward_id} at height {height}: {e}")
                    continue
            computed.append(request.reward_id)

        logger.info(f"Height {height}: computed payouts for {len(computed)} rewards")
        return computed
