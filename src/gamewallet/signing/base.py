"""Base interface for transaction signing.

Signing flow:
1. Build unsigned transaction (EVM variant or Solana instruction set)
2. Caller hands over the session's unlocked KeyMaterial
3. Signer encodes, signs and verifies its own signature
4. SignedTransaction carries raw bytes, tx id and the recovered sender

Signers never cache keys. A missing or zeroed key is a SigningError.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from gamewallet.errors import SigningError
from gamewallet.hdwallet.derivation import KeyMaterial, Network
from gamewallet.transactions import SignedTransaction, UnsignedTransaction

logger = logging.getLogger(__name__)


class TransactionSigner(ABC):
    """Abstract base class for the per-network signers."""

    network: Network

    def check_key(self, key: Optional[KeyMaterial]) -> KeyMaterial:
        """Reject absent, zeroed or wrong-network keys."""
        if key is None or key.is_zeroed:
            raise SigningError("Wallet is locked")
        if key.network is not self.network:
            raise SigningError(
                f"{self.network.value} signer can not use a {key.network.value} key"
            )
        return key

    def check_transaction(self, tx: UnsignedTransaction) -> None:
        if getattr(tx, "network", None) is not self.network:
            raise SigningError(
                f"{self.network.value} signer can not sign {type(tx).__name__}"
            )

    @abstractmethod
    def sign(self, tx: UnsignedTransaction, key: Optional[KeyMaterial]) -> SignedTransaction:
        """Sign a transaction with the unlocked key.

        Raises:
            SigningError: Wallet locked or transaction from another network
            CryptoError: The produced signature failed self-verification
        """
        pass

    @abstractmethod
    def sign_message(self, message: bytes, key: Optional[KeyMaterial]) -> bytes:
        """Sign an arbitrary message for wallet ownership proofs."""
        pass

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(network={self.network.value})"
