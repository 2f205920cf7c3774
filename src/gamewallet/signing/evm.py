"""secp256k1 signing for legacy EIP-155 transactions."""

import logging
from typing import Optional

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError

from gamewallet.codec import evm
from gamewallet.errors import CryptoError
from gamewallet.hdwallet.derivation import KeyMaterial, Network
from gamewallet.signing.base import TransactionSigner
from gamewallet.transactions import EvmTransaction, SignedTransaction

logger = logging.getLogger(__name__)


def recover_sender(tx: EvmTransaction, v: int, r: int, s: int) -> str:
    """Recover the checksum address that produced (v, r, s) over tx.

    Raises:
        CryptoError: v does not match the chain id or the signature is invalid
    """
    recovery_id = evm.recovery_id_from_v(v, tx.chain_id)
    if recovery_id not in (0, 1):
        raise CryptoError(f"v={v} is not valid for chain {tx.chain_id}")

    try:
        signature = keys.Signature(vrs=(recovery_id, r, s))
        public_key = signature.recover_public_key_from_msg_hash(evm.signing_hash(tx))
    except (BadSignature, ValidationError) as e:
        raise CryptoError(f"Signature recovery failed: {e}")
    return public_key.to_checksum_address()


class EvmSigner(TransactionSigner):
    """Signs EVM transactions with the session key.

    Example:
        signed = EvmSigner().sign(approve_tx, session.require_key())
        await rpc.submit(signed.raw)
    """

    network = Network.EVM

    def sign(self, tx: EvmTransaction, key: Optional[KeyMaterial]) -> SignedTransaction:
        self.check_transaction(tx)
        key = self.check_key(key)

        msg_hash = evm.signing_hash(tx)
        signature = keys.PrivateKey(key.private_key).sign_msg_hash(msg_hash)

        v = evm.eip155_v(signature.v, tx.chain_id)
        r, s = signature.r, signature.s

        sender = recover_sender(tx, v, r, s)
        if sender != key.address:
            raise CryptoError("Recovered sender does not match signing key")

        raw = evm.serialize_signed(tx, v, r, s)
        tx_hash = evm.transaction_hash(raw)

        logger.debug(f"Signed {tx.kind} nonce={tx.nonce} chain={tx.chain_id} hash={tx_hash}")

        return SignedTransaction(
            network=self.network,
            unsigned=tx,
            raw=raw,
            tx_id=tx_hash,
            sender=sender,
            signature=signature.to_bytes(),
            v=v,
            r=r,
            s=s,
        )

    def sign_message(self, message: bytes, key: Optional[KeyMaterial]) -> bytes:
        """EIP-191 personal_sign signature (r || s || v, v in 27/28)."""
        key = self.check_key(key)
        signed = Account.sign_message(encode_defunct(primitive=message), key.private_key)
        return bytes(signed.signature)

    @staticmethod
    def verify_message(message: bytes, signature: bytes, address: str) -> bool:
        recovered = Account.recover_message(encode_defunct(primitive=message), signature=signature)
        return recovered == evm.normalize_address(address)
