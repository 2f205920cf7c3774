"""Flow states, results and cancellation."""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from gamewallet.errors import ConsistencyError, WalletError
from gamewallet.hdwallet.derivation import Network


class FlowState(str, Enum):
    """Orchestration states."""
    IDLE = "idle"
    CHECKING_ALLOWANCE = "checking_allowance"
    APPROVING = "approving"
    DEPOSITING = "depositing"
    NOTIFYING_BACKEND = "notifying_backend"
    REQUESTING_SIGNATURE = "requesting_signature"
    WITHDRAWING = "withdrawing"
    TRANSFERRING = "transferring"
    DONE = "done"
    FAILED = "failed"
    UNCONFIRMED = "unconfirmed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    FlowState.DONE,
    FlowState.FAILED,
    FlowState.UNCONFIRMED,
    FlowState.CANCELLED,
})


class FlowCancelled(Exception):
    """Raised between steps once the CancelToken fires."""


class ConfirmationTimeout(WalletError):
    """Polling budget ran out before the transaction was confirmed or reverted."""

    def __init__(self, tx_hash: str, attempts: int):
        self.tx_hash = tx_hash
        self.attempts = attempts
        super().__init__(f"Transaction {tx_hash} not confirmed after {attempts} checks")


class CancelToken:
    """Cooperative cancellation, checked between steps.

    A transaction already submitted cannot be recalled; cancelling only
    stops the steps that follow it.
    """

    def __init__(self):
        self._cancelled = False
        self.reason = ""

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "") -> None:
        self._cancelled = True
        self.reason = reason

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise FlowCancelled(self.reason or "cancelled")


@dataclass
class FlowResult:
    """Outcome of one orchestrated flow.

    steps lists every state entered, in order. funds_moved is set once the
    value-moving transaction is confirmed on chain.
    """

    flow: str
    network: Network
    state: FlowState = FlowState.IDLE
    steps: list[FlowState] = field(default_factory=list)
    approve_tx: Optional[str] = None
    deposit_tx: Optional[str] = None
    withdraw_tx: Optional[str] = None
    transfer_tx: Optional[str] = None
    error: Optional[Exception] = None
    funds_moved: bool = False
    backend_response: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    finished_at: Optional[float] = None

    # Backend call still owed for a confirmed transfer: ("deposit" | "withdrawal" | "transfer", kwargs)
    pending_notification: Optional[tuple[str, dict[str, Any]]] = field(default=None, repr=False)

    @property
    def succeeded(self) -> bool:
        return self.state is FlowState.DONE

    @property
    def tx_hash(self) -> Optional[str]:
        """Hash of the value-moving transaction."""
        return self.deposit_tx or self.withdraw_tx or self.transfer_tx

    @property
    def needs_notification(self) -> bool:
        """Funds moved on chain but the backend has not recorded them."""
        return self.funds_moved and self.pending_notification is not None and (
            isinstance(self.error, ConsistencyError) or self.state is FlowState.CANCELLED
        )

    def to_dict(self) -> dict:
        return {
            "flow": self.flow,
            "network": self.network.value,
            "state": self.state.value,
            "steps": [s.value for s in self.steps],
            "approve_tx": self.approve_tx,
            "deposit_tx": self.deposit_tx,
            "withdraw_tx": self.withdraw_tx,
            "transfer_tx": self.transfer_tx,
            "funds_moved": self.funds_moved,
            "error": str(self.error) if self.error else None,
            "error_type": type(self.error).__name__ if self.error else None,
        }
