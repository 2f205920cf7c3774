"""Multi-chain (EVM + Solana) game wallet engine."""

__version__ = "0.1.0"
