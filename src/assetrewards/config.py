"""
assetrewards/config.py

Configuration constants and settings for assetrewards.

Settings can be provided:
1. Programmatically (RewardsConfig(...))
2. Through environment variables (RewardsConfig.from_env())
3. Through CLI flags (see assetrewards.cli)
"""

import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Any, Optional

logger = logging.getLogger("assetrewards.config")


# ============================================================================
# LEDGER CONSTANTS
# ============================================================================

# Native currency symbol of the ledger
NATIVE_CURRENCY = "EVR"

# Smallest denomination units per whole coin (8 decimal places)
COIN = 100_000_000
NATIVE_UNITS = 8

# Maximum amount of money / asset quantity (21 billion coins)
MAX_MONEY = 21_000_000_000 * COIN

# Maximum length of a full asset name (including sub/unique parts)
MAX_ASSET_NAME_LENGTH = 32

# Blocks between scheduling and the ownership snapshot height.
# Far enough ahead to be safe from short reorgs.
FUTURE_BLOCK_HEIGHT_OFFSET = 61

# Maximum payments per transfer transaction
MAX_PAYMENTS_PER_BATCH = 50

# Default storage location
DEFAULT_STORAGE_DIR = Path.home() / ".assetrewards" / "storage"

# Environment variable prefix
ENV_PREFIX = "ASSETREWARDS_"

# Node RPC defaults
DEFAULT_RPC_URL = "http://127.0.0.1:8819"
DEFAULT_RPC_TIMEOUT = 30.0


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.environ.get(f"{ENV_PREFIX}{name}")
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {ENV_PREFIX}{name}={raw!r}, using {default}")
        return default


@dataclass
class RewardsConfig:
    """
    Runtime configuration for the rewards pipeline.

    Usage:
        config = RewardsConfig.from_env()
        config = RewardsConfig(storage_dir=Path("/tmp/rewards"), batch_size=10)
    """

    # Ledger
    native_currency: str = NATIVE_CURRENCY
    payout_height_offset: int = FUTURE_BLOCK_HEIGHT_OFFSET

    # Settlement
    batch_size: int = MAX_PAYMENTS_PER_BATCH

    # Storage
    storage_dir: Path = field(default_factory=lambda: DEFAULT_STORAGE_DIR)

    # Node RPC
    rpc_url: str = DEFAULT_RPC_URL
    rpc_user: str = ""
    rpc_password: str = ""
    rpc_timeout: float = DEFAULT_RPC_TIMEOUT
    network: str = "mainnet"
    wallet_name: str = ""

    # Logging
    log_level: str = "INFO"

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")
        if self.payout_height_offset < 0:
            raise ValueError(
                f"payout_height_offset must not be negative, got {self.payout_height_offset}"
            )
        self.storage_dir = Path(self.storage_dir)

    @classmethod
    def from_env(cls, **overrides) -> "RewardsConfig":
        """
        Build configuration from ASSETREWARDS_* environment variables.

        Args:
            **overrides: Explicit values that win over the environment

        Returns:
            RewardsConfig instance
        """
        values: Dict[str, Any] = {
            "native_currency": _env("NATIVE_CURRENCY", NATIVE_CURRENCY),
            "payout_height_offset": _env_int("PAYOUT_HEIGHT_OFFSET", FUTURE_BLOCK_HEIGHT_OFFSET),
            "batch_size": _env_int("BATCH_SIZE", MAX_PAYMENTS_PER_BATCH),
            "storage_dir": Path(_env("STORAGE_DIR", str(DEFAULT_STORAGE_DIR))).expanduser(),
            "rpc_url": _env("RPC_URL", DEFAULT_RPC_URL),
            "rpc_user": _env("RPC_USER", ""),
            "rpc_password": _env("RPC_PASSWORD", ""),
            "rpc_timeout": float(_env("RPC_TIMEOUT", str(DEFAULT_RPC_TIMEOUT))),
            "network": _env("NETWORK", "mainnet"),
            "wallet_name": _env("WALLET", ""),
            "log_level": _env("LOG_LEVEL", "INFO").upper(),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def to_dict(self) -> dict:
        """Convert to dictionary (RPC password masked)."""
        return {
            "native_currency": self.native_currency,
            "payout_height_offset": self.payout_height_offset,
            "batch_size": self.batch_size,
            "storage_dir": str(self.storage_dir),
            "rpc_url": self.rpc_url,
            "rpc_user": self.rpc_user,
            "rpc_password": "***" if self.rpc_password else "",
            "rpc_timeout": self.rpc_timeout,
            "network": self.network,
            "wallet_name": self.wallet_name,
            "log_level": self.log_level,
        }
