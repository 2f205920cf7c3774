"""Exception hierarchy for the wallet engine.

Messages never carry key material, mnemonics or passwords.
"""

from typing import Optional


class WalletError(Exception):
    """Base class for all wallet engine errors."""
    pass


class InputError(WalletError):
    """Malformed caller input (mnemonic, password, address, amount)."""
    pass


class AuthError(InputError):
    """Keystore could not be opened: wrong password or corrupt envelope."""
    pass


class BackendRejectedError(InputError):
    """Backend answered with a 4xx for the request."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class CryptoError(WalletError):
    """Derivation or signing invariant violated. Indicates a bug, not bad input."""
    pass


class SigningError(WalletError):
    """Signing refused, e.g. the wallet is locked."""
    pass


class NetworkError(WalletError):
    """RPC node or backend unreachable, timed out or returned a server error."""
    pass


class ChainError(WalletError):
    """Transaction rejected or reverted on chain. Never retried."""

    def __init__(self, reason: str, tx_hash: Optional[str] = None):
        super().__init__(reason)
        self.reason = reason
        self.tx_hash = tx_hash


class DuplicateSubmissionError(ChainError):
    """Node already holds a transaction with these bytes or this nonce.

    Terminal for a first submission. On a resubmission of the same signed
    bytes it means the earlier attempt reached the node.
    """
    pass


class ConsistencyError(WalletError):
    """Funds moved on chain but the backend did not record the transfer."""

    def __init__(self, tx_hash: str, message: str = "funds moved but not recorded"):
        super().__init__(f"{message}: {tx_hash}")
        self.tx_hash = tx_hash


class LockTimeoutError(WalletError):
    """Raised when a lock cannot be acquired within the timeout period."""
    pass
