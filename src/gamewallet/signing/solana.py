"""ed25519 signing for Solana legacy transactions."""

import logging
from typing import Optional

import base58
from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey
from solders.signature import Signature
from solders.transaction import Transaction

from gamewallet.codec import solana
from gamewallet.errors import CryptoError, InputError, SigningError
from gamewallet.hdwallet.derivation import KeyMaterial, Network
from gamewallet.signing.base import TransactionSigner
from gamewallet.transactions import SignedTransaction, SolanaInstructionSet

logger = logging.getLogger(__name__)


def verify_ed25519(public_key: bytes, message: bytes, signature: bytes) -> bool:
    try:
        VerifyKey(public_key).verify(message, signature)
        return True
    except (BadSignatureError, ValueError):
        return False


class SolanaSigner(TransactionSigner):
    """Compiles an instruction set into a message and signs it as fee payer.

    Only single-signer transactions are supported: the payer must be the
    unlocked wallet and no instruction may require another signature.
    """

    network = Network.SOLANA

    def sign(self, tx: SolanaInstructionSet, key: Optional[KeyMaterial]) -> SignedTransaction:
        self.check_transaction(tx)
        key = self.check_key(key)

        if not tx.recent_blockhash:
            raise InputError("Solana transaction needs a recent blockhash")
        if tx.payer != key.address:
            raise SigningError("Fee payer is not the unlocked wallet")

        message = solana.compile_message(tx.instructions, tx.payer, tx.recent_blockhash)
        if message.header.num_required_signatures != 1:
            raise SigningError(
                f"Transaction needs {message.header.num_required_signatures} signers, only the wallet can sign"
            )

        message_bytes = bytes(message)
        signature = SigningKey(key.private_key).sign(message_bytes).signature

        if not verify_ed25519(key.public_key, message_bytes, signature):
            raise CryptoError("Signature failed verification against wallet public key")

        transaction = Transaction.populate(message, [Signature(signature)])
        tx_id = base58.b58encode(signature).decode()

        logger.debug(f"Signed Solana transaction {tx_id} ({len(tx.instructions)} instructions)")

        return SignedTransaction(
            network=self.network,
            unsigned=tx,
            raw=bytes(transaction),
            tx_id=tx_id,
            sender=key.address,
            signature=signature,
            extra={"message": message_bytes},
        )

    def sign_message(self, message: bytes, key: Optional[KeyMaterial]) -> bytes:
        """Detached ed25519 signature over raw message bytes."""
        key = self.check_key(key)
        return SigningKey(key.private_key).sign(message).signature
