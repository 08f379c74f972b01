"""
assetrewards/blockchain/rpc.py

Minimal JSON-RPC client for an Evrmore node.

Amounts are decoded as Decimal so values with 8 decimal places round-trip
exactly; callers send amounts as strings for the same reason.
"""

import json
import logging
from decimal import Decimal
from itertools import count
from typing import Any, Optional

import requests

from ..config import DEFAULT_RPC_TIMEOUT, DEFAULT_RPC_URL

logger = logging.getLogger("assetrewards.blockchain.rpc")


class NodeRpcError(Exception):
    """Node RPC call failed (transport error or error response)."""

    def __init__(self, message: str, code: Optional[int] = None, method: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.method = method


class NodeRpcClient:
    """
    JSON-RPC 1.0 client over HTTP.

    Usage:
        rpc = NodeRpcClient("http://127.0.0.1:8819", "user", "pass")
        height = rpc.call("getblockcount")
        data = rpc.call("getassetdata", "STOCK")

    Calls are blocking; async callers wrap them in trio.to_thread.run_sync.
    """

    def __init__(
        self,
        url: str = DEFAULT_RPC_URL,
        user: Optional[str] = None,
        password: Optional[str] = None,
        wallet: Optional[str] = None,
        timeout: float = DEFAULT_RPC_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize RPC client.

        Args:
            url: Node RPC endpoint
            user: RPC username
            password: RPC password
            wallet: Wallet name for wallet-scoped calls (multi-wallet nodes)
            timeout: Request timeout in seconds
            session: Optional requests session to reuse
        """
        self.url = url.rstrip("/")
        if wallet:
            self.url = f"{self.url}/wallet/{wallet}"
        self.auth = (user, password or "") if user else None
        self.timeout = timeout
        self.session = session or requests.Session()
        self._ids = count(1)

    def call(self, method: str, *params: Any) -> Any:
        """
        Invoke an RPC method.

        Returns:
            The decoded "result" member

        Raises:
            NodeRpcError: On transport failure or an error response
        """
        payload = {
            "jsonrpc": "1.0",
            "id": next(self._ids),
            "method": method,
            "params": list(params),
        }
        logger.debug(f"RPC {method} {list(params)}")

        try:
            response = self.session.post(
                self.url,
                data=json.dumps(payload, default=str),
                headers={"Content-Type": "application/json"},
                auth=self.auth,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"RPC {method} failed: {e}")
            raise NodeRpcError(f"RPC transport error: {e}", method=method)

        try:
            body = json.loads(response.text, parse_float=Decimal)
        except ValueError:
            # Nodes answer auth failures with an empty non-JSON body
            raise NodeRpcError(
                f"HTTP {response.status_code} from node: {response.text[:200]}",
                code=response.status_code,
                method=method,
            )

        error = body.get("error")
        if error:
            if not isinstance(error, dict):
                error = {"message": str(error)}
            logger.debug(f"RPC {method} returned error: {error}")
            raise NodeRpcError(
                error.get("message", str(error)),
                code=error.get("code"),
                method=method,
            )
        return body.get("result")
