"""
assetrewards/errors.py

Exception types surfaced by the rewards service.

Internal contracts (stores, calculator, settlement engine) report outcomes
as return values. These exceptions are raised at the service boundary,
except StorageError which any layer may raise when the backing store fails.
"""

from typing import Any, Dict, Optional


class RewardsError(Exception):
    """Base class for all assetrewards errors."""

    code = "rewards_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        result = {"error": self.code, "message": self.message}
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(RewardsError):
    """Bad asset kind, non-positive amount, malformed identifier or address."""

    code = "validation_error"


class NotFoundError(RewardsError):
    """Unknown reward request or payout record."""

    code = "not_found"


class SnapshotUnavailable(NotFoundError):
    """No ownership snapshot exists for the asset at the payout height."""

    code = "snapshot_unavailable"


class ConflictError(RewardsError):
    """Duplicate identifier, or cancellation after irrevocable progress."""

    code = "conflict"


class InfeasibleAllocation(RewardsError):
    """Cannot give every eligible held unit a non-zero share."""

    code = "infeasible_allocation"


class NoEligibleHolders(InfeasibleAllocation):
    """No holder (or no held unit) remains after exclusions."""

    code = "no_eligible_holders"


class StorageError(RewardsError):
    """The durable store failed; the in-flight operation is aborted."""

    code = "storage_error"
