"""
assetrewards/blockchain/evrmore.py

Evrmore node adapter for the reward pipeline.

EvrmoreNode implements every collaborator on top of a node's JSON-RPC
interface:
- SnapshotProvider: getsnapshot
- AssetRegistry: getassetdata
- ChainInfo: getblockcount
- TransferMechanism: sendmany for EVR, a raw transaction with asset
  transfer outputs for assets (only spending from the source addresses
  when given)

Address validation is done locally with python-evrmorelib.

Usage:
    from assetrewards.blockchain.rpc import NodeRpcClient
    from assetrewards.blockchain.evrmore import EvrmoreNode

    node = EvrmoreNode(NodeRpcClient(url, user, password))
    height = await node.get_height()
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

import trio
from evrmore import SelectParams
from evrmore.wallet import P2PKHEvrmoreAddress, P2SHEvrmoreAddress

from ..config import COIN, NATIVE_CURRENCY, NATIVE_UNITS
from ..models import format_amount
from .interfaces import (
    AssetRegistry,
    ChainInfo,
    SnapshotProvider,
    TransferMechanism,
    TransferReceipt,
)
from .rpc import NodeRpcClient, NodeRpcError

logger = logging.getLogger("assetrewards.blockchain.evrmore")


# ============================================================================
# CONSTANTS
# ============================================================================

FEE_PER_OUTPUT = COIN // 100  # 0.01 EVR per output, change outputs included
DUST_THRESHOLD = 10_000  # EVR change below this is left to the fee
MIN_CONFIRMATIONS = 1
MAX_CONFIRMATIONS = 9_999_999


def to_smallest_units(value: Any, units: int) -> int:
    """Convert a node-reported decimal amount to smallest units."""
    return int(Decimal(str(value)).scaleb(units).to_integral_value())


class EvrmoreNode(SnapshotProvider, AssetRegistry, ChainInfo, TransferMechanism):
    """
    All reward collaborators backed by one Evrmore node.

    The node's wallet signs every transfer, so the wallet must hold the
    funding asset (and EVR for fees).
    """

    def __init__(
        self,
        rpc_client: NodeRpcClient,
        network: str = "mainnet",
        native_currency: str = NATIVE_CURRENCY,
        dry_run: bool = False,
    ):
        """
        Initialize EvrmoreNode.

        Args:
            rpc_client: Client for the node's RPC interface
            network: Chain parameters for address validation
                ('mainnet', 'testnet' or 'regtest')
            native_currency: Symbol of the native currency
            dry_run: If True, don't actually send transactions
        """
        self.rpc = rpc_client
        self.network = network
        self.native_currency = native_currency
        self.dry_run = dry_run
        SelectParams(network)

    async def _call(self, method: str, *params: Any) -> Any:
        return await trio.to_thread.run_sync(self.rpc.call, method, *params)

    # ------------------------------------------------------------------
    # ChainInfo / AssetRegistry
    # ------------------------------------------------------------------

    async def get_height(self) -> int:
        return int(await self._call("getblockcount"))

    async def get_units(self, asset: str) -> Optional[int]:
        """Decimal places of an asset (8 for EVR, None if unknown)."""
        if asset == self.native_currency:
            return NATIVE_UNITS
        try:
            data = await self._call("getassetdata", asset)
        except NodeRpcError as e:
            if e.code is None:
                raise
            logger.debug(f"Asset {asset} not found: {e}")
            return None
        if not data:
            return None
        return int(data["units"])

    # ------------------------------------------------------------------
    # SnapshotProvider
    # ------------------------------------------------------------------

    async def ownership_at(self, asset: str, height: int) -> Optional[List[Tuple[str, int]]]:
        """
        Fetch the ownership snapshot of an asset.

        Balances are converted to smallest units using the asset's units.
        Returns None when the node has no snapshot for that height.
        """
        units = await self.get_units(asset)
        if units is None:
            return None

        try:
            snapshot = await self._call("getsnapshot", asset, height)
        except NodeRpcError as e:
            if e.code is None:
                raise
            logger.warning(f"No snapshot of {asset} at height {height}: {e}")
            return None
        if not snapshot:
            return None

        return [
            (owner["address"], to_smallest_units(owner["amount_owned"], units))
            for owner in snapshot.get("owners", [])
        ]

    # ------------------------------------------------------------------
    # TransferMechanism
    # ------------------------------------------------------------------

    def is_valid_address(self, address: str) -> bool:
        """Is this a P2PKH or P2SH address of the selected network?"""
        if not isinstance(address, str) or not address:
            return False
        for address_class in (P2PKHEvrmoreAddress, P2SHEvrmoreAddress):
            try:
                address_class(address)
                return True
            except Exception as e:
                logger.debug(f"{address} is not a {address_class.__name__}: {e}")
        return False

    async def transfer(
        self,
        funding_asset: str,
        payments: Sequence[Tuple[str, int]],
        source_addresses: Sequence[str] = (),
    ) -> TransferReceipt:
        """Send one batch; RPC faults become a failed receipt."""
        if not payments:
            return TransferReceipt.failed("Empty batch")

        total = sum(amount for _, amount in payments)
        if self.dry_run:
            logger.info(
                f"DRY RUN: Would send {total} {funding_asset} units "
                f"to {len(payments)} addresses"
            )
            return TransferReceipt.succeeded(f"dry_run_{len(payments)}_{total}")

        try:
            if funding_asset == self.native_currency:
                return await self._send_native(payments)
            return await self._send_asset(funding_asset, payments, source_addresses)
        except NodeRpcError as e:
            logger.error(f"Failed to send {funding_asset} batch: {e}")
            return TransferReceipt.failed(str(e))

    async def _send_native(self, payments: Sequence[Tuple[str, int]]) -> TransferReceipt:
        """
        Pay EVR to many recipients in a single sendmany.

        The wallet balance is checked first so an underfunded batch fails
        without touching the node's wallet.
        """
        total = sum(amount for _, amount in payments)
        balance = to_smallest_units(await self._call("getbalance"), NATIVE_UNITS)
        if balance < total:
            error = (
                f"Insufficient funds: have {format_amount(balance, NATIVE_UNITS)}, "
                f"need {format_amount(total, NATIVE_UNITS)} {self.native_currency}"
            )
            logger.warning(error)
            return TransferReceipt.failed(error)

        amounts = {address: format_amount(amount, NATIVE_UNITS) for address, amount in payments}
        tx_hash = await self._call("sendmany", "", amounts)
        logger.info(f"Sent {len(payments)} {self.native_currency} payments in TX: {tx_hash}")
        return TransferReceipt.succeeded(tx_hash)

    async def _send_asset(
        self,
        asset: str,
        payments: Sequence[Tuple[str, int]],
        source_addresses: Sequence[str],
    ) -> TransferReceipt:
        """
        Send an asset to multiple recipients in a single raw transaction.

        Process:
        1. List UTXOs (of the source addresses when given)
        2. Select asset UTXOs covering the batch and one EVR UTXO for fees
        3. Build outputs: EVR change, asset transfers, asset change
        4. Sign and broadcast
        """
        units = await self.get_units(asset)
        if units is None:
            return TransferReceipt.failed(f"Unknown asset {asset}")

        params: List[Any] = [MIN_CONFIRMATIONS, MAX_CONFIRMATIONS]
        if source_addresses:
            params.append(list(source_addresses))
        utxos = await self._call("listunspent", *params)

        # Separate EVR UTXOs and funding asset UTXOs
        evr_utxos = []
        asset_utxos = []
        for utxo in utxos:
            if "asset" in utxo:
                if utxo.get("asset") == asset:
                    asset_utxos.append(utxo)
            elif utxo.get("amount", 0) > 0:
                evr_utxos.append(utxo)

        needed = sum(amount for _, amount in payments)

        selected_asset_utxos = []
        selected = 0
        for utxo in asset_utxos:
            if selected >= needed:
                break
            selected_asset_utxos.append(utxo)
            selected += to_smallest_units(utxo["amount"], units)

        if selected < needed:
            error = (
                f"Insufficient {asset}: have {format_amount(selected, units)}, "
                f"need {format_amount(needed, units)}"
            )
            logger.warning(error)
            return TransferReceipt.failed(error)

        fee = FEE_PER_OUTPUT * (len(payments) + 2)
        fee_utxo = None
        for utxo in evr_utxos:
            if to_smallest_units(utxo["amount"], NATIVE_UNITS) >= fee:
                fee_utxo = utxo
                break

        if fee_utxo is None:
            error = f"Insufficient {self.native_currency} for fees: need {format_amount(fee, NATIVE_UNITS)}"
            logger.warning(error)
            return TransferReceipt.failed(error)

        inputs = [{"txid": fee_utxo["txid"], "vout": fee_utxo["vout"]}]
        for utxo in selected_asset_utxos:
            inputs.append({"txid": utxo["txid"], "vout": utxo["vout"]})

        # EVR outputs must come before asset operations
        outputs: Dict[str, Any] = {}
        evr_change = to_smallest_units(fee_utxo["amount"], NATIVE_UNITS) - fee
        if evr_change > DUST_THRESHOLD:
            change_address = await self._call("getrawchangeaddress")
            outputs[change_address] = format_amount(evr_change, NATIVE_UNITS)

        for address, amount in payments:
            outputs[address] = {"transfer": {asset: format_amount(amount, units)}}

        asset_change = selected - needed
        if asset_change > 0:
            if source_addresses:
                asset_change_address = source_addresses[0]
            else:
                asset_change_address = await self._call("getnewaddress")
            outputs[asset_change_address] = {"transfer": {asset: format_amount(asset_change, units)}}

        raw_tx = await self._call("createrawtransaction", inputs, outputs)

        signed = await self._call("signrawtransaction", raw_tx)
        if not signed.get("complete"):
            error = f"Failed to sign transaction: {signed.get('errors', [])}"
            logger.error(error)
            return TransferReceipt.failed(error)

        tx_hash = await self._call("sendrawtransaction", signed["hex"])
        logger.info(f"Sent {len(payments)} {asset} payments in TX: {tx_hash}")
        return TransferReceipt.succeeded(tx_hash)
