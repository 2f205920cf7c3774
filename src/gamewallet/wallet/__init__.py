"""Wallet sessions and lifecycle management."""

from gamewallet.wallet.manager import WalletManager, parse_secret
from gamewallet.wallet.session import WalletSession, display_address

__all__ = ["WalletManager", "WalletSession", "display_address", "parse_secret"]
