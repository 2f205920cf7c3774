"""Solana JSON-RPC collaborator."""

import base64
import logging
from dataclasses import dataclass, field
from typing import Optional

from gamewallet.codec.solana import associated_token_address
from gamewallet.errors import ChainError, DuplicateSubmissionError, InputError, NetworkError, WalletError
from gamewallet.rpc.base import (
    TRANSIENT_ERROR_CODES,
    JsonRpcClient,
    TxReceipt,
    TxStatus,
    is_duplicate_message,
)

logger = logging.getLogger(__name__)

# Confirmation levels at or above each commitment
COMMITMENT_LEVELS = {
    "processed": ("processed", "confirmed", "finalized"),
    "confirmed": ("confirmed", "finalized"),
    "finalized": ("finalized",),
}


@dataclass
class SimulationResult:
    success: bool
    error: Optional[str] = None
    logs: list[str] = field(default_factory=list)
    units_consumed: int = 0


class SolanaRpcClient(JsonRpcClient):
    """Broadcasts base64 transactions and polls signature statuses."""

    def __init__(self, rpc_url: str, commitment: str = "confirmed", **kwargs):
        super().__init__(rpc_url, **kwargs)
        if commitment not in COMMITMENT_LEVELS:
            raise InputError(f"Unknown commitment {commitment}")
        self.commitment = commitment

    def classify_error(self, method: str, error: dict) -> WalletError:
        code = error.get("code")
        message = error.get("message", "unknown error")
        if code in TRANSIENT_ERROR_CODES:
            return NetworkError(f"{method} failed: {message}")

        # Preflight failures carry program logs in data.logs
        logs = (error.get("data") or {}).get("logs") if isinstance(error.get("data"), dict) else None
        if logs:
            message = f"{message}: {logs[-1]}"
        if is_duplicate_message(message) or "AlreadyProcessed" in str(error.get("data")):
            return DuplicateSubmissionError(message)
        return ChainError(message)

    async def submit(self, raw: bytes) -> str:
        signature = await self._call(
            "sendTransaction",
            [
                base64.b64encode(raw).decode(),
                {"encoding": "base64", "preflightCommitment": self.commitment},
            ],
        )
        if not signature:
            raise NetworkError("sendTransaction returned no signature")
        logger.info(f"Broadcast Solana transaction {signature}")
        return signature

    async def get_status(self, tx_id: str) -> TxReceipt:
        result = await self._call(
            "getSignatureStatuses",
            [[tx_id], {"searchTransactionHistory": True}],
        )
        statuses = (result or {}).get("value") or [None]
        status = statuses[0]

        if status is None:
            return TxReceipt(tx_id=tx_id, status=TxStatus.PENDING)

        slot = status.get("slot")
        if status.get("err") is not None:
            return TxReceipt(
                tx_id=tx_id,
                status=TxStatus.REVERTED,
                block_number=slot,
                revert_reason=str(status["err"]),
            )

        if status.get("confirmationStatus") in COMMITMENT_LEVELS[self.commitment]:
            return TxReceipt(tx_id=tx_id, status=TxStatus.CONFIRMED, block_number=slot)

        return TxReceipt(tx_id=tx_id, status=TxStatus.PENDING, block_number=slot)

    async def get_latest_blockhash(self) -> str:
        result = await self._call("getLatestBlockhash", [{"commitment": self.commitment}])
        try:
            return result["value"]["blockhash"]
        except (KeyError, TypeError):
            raise NetworkError("getLatestBlockhash returned no blockhash")

    async def get_balance(self, address: str) -> int:
        """Lamports held by address."""
        result = await self._call("getBalance", [address, {"commitment": self.commitment}])
        return int((result or {}).get("value", 0))

    async def get_token_balance(self, owner: str, mint: str) -> int:
        """Raw token amount in the owner's associated token account (0 if absent)."""
        ata = str(associated_token_address(owner, mint))
        try:
            result = await self._call("getTokenAccountBalance", [ata, {"commitment": self.commitment}])
        except ChainError as e:
            if "could not find account" in str(e).lower():
                return 0
            raise
        return int(result["value"]["amount"])

    async def simulate(self, raw: bytes) -> SimulationResult:
        result = await self._call(
            "simulateTransaction",
            [
                base64.b64encode(raw).decode(),
                {"encoding": "base64", "commitment": self.commitment, "sigVerify": False},
            ],
        )
        value = (result or {}).get("value") or {}
        err = value.get("err")
        return SimulationResult(
            success=err is None,
            error=str(err) if err is not None else None,
            logs=value.get("logs") or [],
            units_consumed=value.get("unitsConsumed") or 0,
        )
