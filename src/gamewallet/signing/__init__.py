"""Transaction signing for EVM (secp256k1) and Solana (ed25519)."""

from gamewallet.hdwallet.derivation import Network
from gamewallet.signing.base import TransactionSigner
from gamewallet.signing.evm import EvmSigner, recover_sender
from gamewallet.signing.nonce import NonceManager, NonceReservation
from gamewallet.signing.solana import SolanaSigner, verify_ed25519


def get_signer(network: Network) -> TransactionSigner:
    """Signer for a network tag."""
    if Network(network) is Network.EVM:
        return EvmSigner()
    return SolanaSigner()


__all__ = [
    "EvmSigner",
    "NonceManager",
    "NonceReservation",
    "SolanaSigner",
    "TransactionSigner",
    "get_signer",
    "recover_sender",
    "verify_ed25519",
]
