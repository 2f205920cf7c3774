"""HD wallet: seed phrases and per-network key derivation."""

from gamewallet.hdwallet import mnemonic
from gamewallet.hdwallet.derivation import (
    EVM_PATH,
    SOLANA_PATH,
    DerivationPath,
    KeyMaterial,
    Network,
    derive,
    derive_from_mnemonic,
    evm_address,
    key_from_private_key,
    path_for,
    solana_address,
)

__all__ = [
    "mnemonic",
    "EVM_PATH",
    "SOLANA_PATH",
    "DerivationPath",
    "KeyMaterial",
    "Network",
    "derive",
    "derive_from_mnemonic",
    "evm_address",
    "key_from_private_key",
    "path_for",
    "solana_address",
]
