"""Per-chain binary encoding: EVM ABI/RLP and Solana Borsh/PDA."""

from gamewallet.codec import evm, solana

__all__ = ["evm", "solana"]
