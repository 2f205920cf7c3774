"""Base interfaces for RPC submission.

Submission flow:
1. Signed raw bytes go to submit(), which returns the tx id
2. get_status() polls the node: pending / confirmed / reverted
3. The orchestrator decides when to stop polling

Transport problems (connect errors, timeouts, 5xx, rate limits) raise
NetworkError and may be retried. Anything the node rejects on its merits
(revert, insufficient funds, bad nonce) raises ChainError and must not be.
"""

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import httpx

from gamewallet.errors import ChainError, DuplicateSubmissionError, NetworkError, WalletError

logger = logging.getLogger(__name__)

# JSON-RPC error codes that mean "node trouble, try again"
TRANSIENT_ERROR_CODES = {-32603, -32005, -32004, 429}

# Node messages for a transaction it already has (geth, erigon, nethermind, solana)
DUPLICATE_MARKERS = (
    "already known",
    "known transaction",
    "already imported",
    "nonce too low",
    "already been processed",
    "alreadyprocessed",
)


def is_duplicate_message(message: str) -> bool:
    message = message.lower()
    return any(marker in message for marker in DUPLICATE_MARKERS)


class TxStatus(str, Enum):
    """On-chain status of a submitted transaction."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


@dataclass
class TxReceipt:
    """Status snapshot for a transaction id."""
    tx_id: str
    status: TxStatus
    block_number: Optional[int] = None
    revert_reason: Optional[str] = None
    fee: Optional[int] = None


class RpcClient(ABC):
    """Abstract base class for chain RPC collaborators."""

    @abstractmethod
    async def submit(self, raw: bytes) -> str:
        """Broadcast a signed transaction.

        Returns:
            Transaction id (EVM hash or Solana signature)
        """
        pass

    @abstractmethod
    async def get_status(self, tx_id: str) -> TxReceipt:
        """Current status of a transaction."""
        pass


class JsonRpcClient(RpcClient):
    """httpx JSON-RPC transport shared by both networks."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize client.

        Args:
            rpc_url: Node endpoint
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._transport = transport
        self._ids = itertools.count(1)

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    def classify_error(self, method: str, error: dict) -> WalletError:
        """Map a JSON-RPC error object onto the error taxonomy."""
        code = error.get("code")
        message = error.get("message", "unknown error")
        if code in TRANSIENT_ERROR_CODES:
            return NetworkError(f"{method} failed: {message}")
        if is_duplicate_message(message):
            return DuplicateSubmissionError(message)
        return ChainError(message)

    async def _call(self, method: str, params: list) -> Any:
        """POST one JSON-RPC request and return its result.

        Raises:
            NetworkError: Transport failure, timeout, HTTP 5xx/429, bad JSON
            ChainError: Node rejected the request on its merits
        """
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": next(self._ids),
        }

        try:
            async with self._client() as client:
                response = await client.post(self.rpc_url, json=payload)
        except httpx.TimeoutException as e:
            logger.warning(f"RPC {method} timed out: {e}")
            raise NetworkError(f"{method} timed out")
        except httpx.HTTPError as e:
            logger.warning(f"RPC {method} transport error: {e}")
            raise NetworkError(f"{method} failed: {e}")

        if response.status_code != 200:
            logger.warning(f"RPC {method} returned HTTP {response.status_code}")
            raise NetworkError(f"{method} returned HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError:
            raise NetworkError(f"{method} returned invalid JSON")

        if data.get("error"):
            error = data["error"]
            if not isinstance(error, dict):
                error = {"message": str(error)}
            logger.error(f"RPC {method} error: {error.get('message')}")
            raise self.classify_error(method, error)

        return data.get("result")
