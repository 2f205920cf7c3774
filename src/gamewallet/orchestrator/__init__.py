"""Deposit, withdrawal and transfer orchestration."""

from gamewallet.orchestrator.flows import (
    DepositFlow,
    Flow,
    NftDepositFlow,
    SolanaDepositFlow,
    TransferFlow,
    WithdrawFlow,
)
from gamewallet.orchestrator.orchestrator import WalletOrchestrator
from gamewallet.orchestrator.retry import backoff_delay, retry_network, wait_for_confirmation
from gamewallet.orchestrator.states import (
    CancelToken,
    ConfirmationTimeout,
    FlowCancelled,
    FlowResult,
    FlowState,
)

__all__ = [
    "CancelToken",
    "ConfirmationTimeout",
    "DepositFlow",
    "Flow",
    "FlowCancelled",
    "FlowResult",
    "FlowState",
    "NftDepositFlow",
    "SolanaDepositFlow",
    "TransferFlow",
    "WalletOrchestrator",
    "WithdrawFlow",
    "backoff_delay",
    "retry_network",
    "wait_for_confirmation",
]
