"""Game backend collaborator: withdrawal authorizations and deposit records."""

from gamewallet.backend.client import Backend, BackendClient
from gamewallet.backend.contracts import (
    PoolTransactionRequest,
    SolanaWithdrawalAuthorization,
    TransactionDirection,
    TransactionType,
    WalletTransactionRequest,
    WithdrawalSignature,
)

__all__ = [
    "Backend",
    "BackendClient",
    "PoolTransactionRequest",
    "SolanaWithdrawalAuthorization",
    "TransactionDirection",
    "TransactionType",
    "WalletTransactionRequest",
    "WithdrawalSignature",
]
