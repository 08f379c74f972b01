"""
assetrewards/protocol/calculator.py

Payout computation from an ownership snapshot.

Every held unit of the target asset earns the same whole number of funding
units:

    per_unit = total_payout_amount // total_units
    payment  = per_unit * balance

The truncation remainder (total_payout_amount - sum of payments, always
smaller than total_units) stays with the funding source. If per_unit would
be zero the reward is infeasible: the funding asset is too coarse to give
every held unit a non-zero share.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, Optional, Tuple, Union

from ..models import Payment, PayoutRecord, RewardRequest

logger = logging.getLogger("assetrewards.protocol.calculator")

# (address, balance in smallest units of the target asset)
Holding = Tuple[str, int]


class AllocationFailure(Enum):
    """Reason a reward could not be allocated."""
    NO_ELIGIBLE_HOLDERS = "no_eligible_holders"
    INFEASIBLE = "infeasible"


@dataclass(frozen=True)
class Allocation:
    """Summary numbers of a successful allocation."""
    total_units: int
    per_unit: int
    distributed: int
    remainder: int


def eligible_holdings(
    snapshot: Iterable[Holding],
    exception_addresses: Iterable[str] = (),
) -> Dict[str, int]:
    """
    Collapse a snapshot into eligible balances, ordered by address.

    Duplicate rows for one address are summed and excluded addresses are
    dropped. Zero balances are kept so the holder shows up with a zero
    payment.
    """
    excluded = set(exception_addresses)
    balances: Dict[str, int] = {}
    for address, balance in snapshot:
        if address in excluded:
            continue
        balances[address] = balances.get(address, 0) + int(balance)
    return {a: balances[a] for a in sorted(balances) if balances[a] >= 0}


def allocate(total_payout_amount: int, holdings: Dict[str, int]) -> Union[Allocation, AllocationFailure]:
    """Work out the per-unit amount for a set of eligible holdings."""
    total_units = sum(holdings.values())
    if total_units <= 0:
        return AllocationFailure.NO_ELIGIBLE_HOLDERS

    per_unit = total_payout_amount // total_units
    if per_unit == 0:
        return AllocationFailure.INFEASIBLE

    distributed = per_unit * total_units
    return Allocation(
        total_units=total_units,
        per_unit=per_unit,
        distributed=distributed,
        remainder=total_payout_amount - distributed,
    )


def compute(
    request: RewardRequest,
    snapshot: Optional[Iterable[Holding]],
) -> Union[PayoutRecord, AllocationFailure]:
    """
    Compute the payments of a reward.

    Args:
        request: The scheduled reward
        snapshot: Target asset holdings at the payout height

    Returns:
        PayoutRecord with one payment per eligible holder (no payment is
        completed), or the AllocationFailure explaining why none exists
    """
    holdings = eligible_holdings(snapshot or (), request.exception_addresses)
    allocation = allocate(request.total_payout_amount, holdings)

    if isinstance(allocation, AllocationFailure):
        logger.warning(
            f"Cannot allocate reward {request.reward_id} over "
            f"{len(holdings)} {request.target_asset} holders: {allocation.value}"
        )
        return allocation

    payments = tuple(
        Payment(address=address, amount=allocation.per_unit * balance)
        for address, balance in holdings.items()
    )

    logger.info(
        f"Reward {request.reward_id}: {allocation.per_unit} per unit over "
        f"{allocation.total_units} units held by {len(payments)} addresses "
        f"(remainder {allocation.remainder})"
    )

    return PayoutRecord(
        reward_id=request.reward_id,
        target_asset=request.target_asset,
        funding_asset=request.funding_asset,
        payments=payments,
    )
