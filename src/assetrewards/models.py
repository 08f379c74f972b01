"""
assetrewards/models.py

Shared record model for the reward pipeline.

Contains:
- Asset name classification (which asset kinds may fund or receive rewards)
- Fixed-point amount parsing/formatting in smallest denomination units
- RewardRequest, Payment and PayoutRecord records with their persisted
  (ordered-field) dictionary form
"""

import re
import uuid
from dataclasses import dataclass, field, replace
from decimal import Decimal, DecimalException, InvalidOperation
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from .config import MAX_ASSET_NAME_LENGTH, MAX_MONEY


# ============================================================================
# ASSET NAMES
# ============================================================================

class AssetType(Enum):
    """Kinds of ledger assets, as told apart by their name."""
    ROOT = "root"
    SUB = "sub"
    UNIQUE = "unique"
    OWNER = "owner"
    MSGCHANNEL = "msgchannel"
    RESTRICTED = "restricted"
    QUALIFIER = "qualifier"
    SUB_QUALIFIER = "sub_qualifier"
    VOTE = "vote"
    INVALID = "invalid"


# Asset kinds that cannot fund or receive a reward
NON_REWARDABLE_TYPES = frozenset({
    AssetType.UNIQUE,
    AssetType.OWNER,
    AssetType.MSGCHANNEL,
    AssetType.INVALID,
})

RESERVED_ROOT_NAMES = frozenset({"EVR", "EVRMORE", "RVN", "RAVEN", "RAVENCOIN"})

MIN_ROOT_LENGTH = 3
MAX_CHANNEL_LENGTH = 12

_NAME_PART = re.compile(r"^[A-Z0-9._]+$")
_PUNCTUATION_RUN = re.compile(r"[._]{2,}")
_UNIQUE_TAG = re.compile(r"^[-A-Za-z0-9@$%&*()\[\]{}_.?:]+$")
_CHANNEL = re.compile(r"^[A-Za-z0-9_]+$")
_VOTE = re.compile(r"^[A-Z0-9._]+$")


def _is_valid_part(part: str) -> bool:
    """Check one '/'-separated segment of a root or sub asset name."""
    if not part or not _NAME_PART.match(part):
        return False
    if part[0] in "._" or part[-1] in "._":
        return False
    return not _PUNCTUATION_RUN.search(part)


def _is_valid_base(name: str) -> bool:
    """Check a ROOT or SUB asset name (e.g. 'STOCK' or 'STOCK/CLASS.A')."""
    parts = name.split("/")
    if not all(_is_valid_part(p) for p in parts):
        return False
    root = parts[0]
    if len(root) < MIN_ROOT_LENGTH:
        return False
    return root not in RESERVED_ROOT_NAMES


def classify_asset(name: str) -> AssetType:
    """
    Determine the asset type from its name.

    Examples:
        'STOCK'        -> ROOT
        'STOCK/A'      -> SUB
        'STOCK#TOKEN1' -> UNIQUE
        'STOCK!'       -> OWNER
        'STOCK~NEWS'   -> MSGCHANNEL
        '$STOCK'       -> RESTRICTED
        '#KYC'         -> QUALIFIER
        '#KYC/#US'     -> SUB_QUALIFIER
        'STOCK^VOTE'   -> VOTE

    Args:
        name: Full asset name

    Returns:
        AssetType (INVALID if the name breaks the naming rules)
    """
    if not isinstance(name, str) or not name or len(name) > MAX_ASSET_NAME_LENGTH:
        return AssetType.INVALID

    if name.startswith("$"):
        base = name[1:]
        return AssetType.RESTRICTED if "/" not in base and _is_valid_base(base) else AssetType.INVALID

    if name.startswith("#"):
        parts = name.split("/")
        if not all(p.startswith("#") and _is_valid_part(p[1:]) for p in parts):
            return AssetType.INVALID
        if len(parts) == 1:
            return AssetType.QUALIFIER
        return AssetType.SUB_QUALIFIER if len(parts) == 2 else AssetType.INVALID

    if name.endswith("!"):
        return AssetType.OWNER if _is_valid_base(name[:-1]) else AssetType.INVALID

    if "#" in name:
        base, _, tag = name.partition("#")
        if _is_valid_base(base) and _UNIQUE_TAG.match(tag):
            return AssetType.UNIQUE
        return AssetType.INVALID

    if "~" in name:
        base, _, channel = name.partition("~")
        if _is_valid_base(base) and _CHANNEL.match(channel) and len(channel) <= MAX_CHANNEL_LENGTH:
            return AssetType.MSGCHANNEL
        return AssetType.INVALID

    if "^" in name:
        base, _, vote = name.partition("^")
        if _is_valid_base(base) and _VOTE.match(vote):
            return AssetType.VOTE
        return AssetType.INVALID

    if not _is_valid_base(name):
        return AssetType.INVALID
    return AssetType.SUB if "/" in name else AssetType.ROOT


def is_rewardable_asset(name: str) -> bool:
    """True if the asset may be used as funding or target of a reward."""
    return classify_asset(name) not in NON_REWARDABLE_TYPES


# ============================================================================
# AMOUNTS
# ============================================================================

AmountInput = Union[int, str, Decimal, float]


def parse_amount(value: AmountInput, units: int, max_amount: int = MAX_MONEY) -> int:
    """
    Parse a fixed-point amount into smallest denomination units.

    Args:
        value: Amount in whole units ("10", "0.5", Decimal("1.25"), 3)
        units: Decimal places of the asset (8 for the native currency)
        max_amount: Upper bound in smallest units

    Returns:
        Amount as an integer number of smallest units

    Raises:
        ValueError: If the amount is malformed, has too many decimal
            places, or is out of range
    """
    if isinstance(value, bool):
        raise ValueError(f"Amount is not a number or string: {value!r}")
    if isinstance(value, float):
        value = repr(value)
    try:
        decimal_value = Decimal(value) if not isinstance(value, Decimal) else value
    except (InvalidOperation, TypeError):
        raise ValueError(f"Invalid amount: {value!r}")
    if not decimal_value.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")

    try:
        scaled = decimal_value.scaleb(units)
        integral = scaled.to_integral_value()
    except DecimalException:
        raise ValueError(f"Amount out of range: {value}")
    if scaled != integral:
        raise ValueError(f"Amount {value} has more than {units} decimal places")

    if scaled < 0 or scaled > max_amount:
        raise ValueError(f"Amount out of range: {value}")
    return int(scaled)


def format_amount(amount: int, units: int) -> str:
    """
    Format smallest units as a fixed-point string.

    format_amount(150000000, 8) -> "1.50000000"
    format_amount(7, 0)         -> "7"
    """
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10 ** units)
    if units == 0:
        return f"{sign}{whole}"
    return f"{sign}{whole}.{frac:0{units}d}"


# ============================================================================
# IDENTIFIERS AND ADDRESSES
# ============================================================================

def new_reward_id() -> str:
    """Generate a fresh reward identifier."""
    return str(uuid.uuid4())


def normalize_reward_id(value: Any) -> str:
    """
    Canonicalize a reward identifier.

    Raises:
        ValueError: If value is not a UUID string
    """
    if not isinstance(value, str):
        raise ValueError(f"Reward id must be a string, got {type(value).__name__}")
    try:
        return str(uuid.UUID(value.strip()))
    except ValueError:
        raise ValueError(f"Malformed reward id: {value!r}")


def parse_address_list(value: Union[None, str, Iterable[str]]) -> Tuple[str, ...]:
    """
    Normalize exception addresses.

    Accepts a comma-delimited string or an iterable of addresses. Blank
    entries are dropped and duplicates removed, first occurrence wins.
    """
    if value is None:
        return ()
    items = value.split(",") if isinstance(value, str) else list(value)
    seen = []
    for item in items:
        address = str(item).strip()
        if address and address not in seen:
            seen.append(address)
    return tuple(seen)


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True)
class RewardRequest:
    """A scheduled reward: pay total_payout_amount to target_asset holders."""
    reward_id: str
    wallet_name: str
    payout_height: int
    total_payout_amount: int  # smallest units of funding_asset
    funding_asset: str
    target_asset: str
    exception_addresses: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "exception_addresses", tuple(self.exception_addresses))

    @property
    def is_self_funded(self) -> bool:
        """Funding asset and target asset are the same."""
        return self.funding_asset == self.target_asset

    def to_dict(self) -> dict:
        return {
            "reward_id": self.reward_id,
            "wallet_name": self.wallet_name,
            "payout_height": self.payout_height,
            "total_payout_amount": self.total_payout_amount,
            "funding_asset": self.funding_asset,
            "target_asset": self.target_asset,
            "exception_addresses": list(self.exception_addresses),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RewardRequest":
        return cls(
            reward_id=data["reward_id"],
            wallet_name=data["wallet_name"],
            payout_height=int(data["payout_height"]),
            total_payout_amount=int(data["total_payout_amount"]),
            funding_asset=data["funding_asset"],
            target_asset=data["target_asset"],
            exception_addresses=tuple(data.get("exception_addresses", ())),
        )


@dataclass(frozen=True)
class Payment:
    """A single computed payment to one recipient."""
    address: str
    amount: int  # smallest units of the funding asset
    completed: bool = False

    @property
    def is_pending(self) -> bool:
        """Still owed and worth transferring."""
        return not self.completed and self.amount > 0

    def mark_completed(self) -> "Payment":
        return replace(self, completed=True)

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "amount": self.amount,
            "completed": self.completed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Payment":
        return cls(
            address=data["address"],
            amount=int(data["amount"]),
            completed=bool(data.get("completed", False)),
        )


@dataclass(frozen=True)
class PayoutRecord:
    """Computed payments for one reward, with completion state."""
    reward_id: str
    target_asset: str
    funding_asset: str
    payments: Tuple[Payment, ...] = field(default_factory=tuple)

    def __post_init__(self):
        payments = tuple(self.payments)
        addresses = [p.address for p in payments]
        if len(addresses) != len(set(addresses)):
            raise ValueError(f"Duplicate payment address in payout record {self.reward_id}")
        object.__setattr__(self, "payments", payments)

    @property
    def pending(self) -> List[Payment]:
        """Payments still to be transferred, in record order."""
        return [p for p in self.payments if p.is_pending]

    @property
    def completed_count(self) -> int:
        return sum(1 for p in self.payments if p.completed)

    @property
    def has_completed_payments(self) -> bool:
        return any(p.completed for p in self.payments)

    @property
    def is_complete(self) -> bool:
        return not self.pending

    @property
    def total_amount(self) -> int:
        return sum(p.amount for p in self.payments)

    def get_payment(self, address: str) -> Optional[Payment]:
        for payment in self.payments:
            if payment.address == address:
                return payment
        return None

    def with_completed(self, addresses: Iterable[str]) -> "PayoutRecord":
        """Return a copy with the given addresses flagged completed."""
        done = set(addresses)
        return replace(self, payments=tuple(
            p.mark_completed() if p.address in done else p
            for p in self.payments
        ))

    def to_dict(self) -> dict:
        return {
            "reward_id": self.reward_id,
            "target_asset": self.target_asset,
            "funding_asset": self.funding_asset,
            "payments": [p.to_dict() for p in self.payments],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PayoutRecord":
        return cls(
            reward_id=data["reward_id"],
            target_asset=data["target_asset"],
            funding_asset=data["funding_asset"],
            payments=tuple(Payment.from_dict(p) for p in data.get("payments", [])),
        )

    def summary(self, payout_height: Optional[int] = None) -> Dict[str, Any]:
        """Caller-facing view of the record."""
        result: Dict[str, Any] = {
            "reward_id": self.reward_id,
            "target_asset": self.target_asset,
            "funding_asset": self.funding_asset,
        }
        if payout_height is not None:
            result["payout_height"] = payout_height
        result["payouts"] = [
            {"address": p.address, "payout_amount": p.amount, "completed": p.completed}
            for p in self.payments
        ]
        result["total_amount"] = self.total_amount
        result["completed_count"] = self.completed_count
        return result
