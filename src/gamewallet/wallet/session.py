"""Explicit unlocked-wallet session.

A session owns at most one KeyMaterial between login and logout. Flows take
the session as an argument; there is no process-wide "current wallet".
"""

import asyncio
import logging
import time
from typing import Optional

from gamewallet.errors import SigningError
from gamewallet.hdwallet.derivation import KeyMaterial, Network
from gamewallet.utils.display import display_address

logger = logging.getLogger(__name__)


class WalletSession:
    """Holds the unlocked key for one user until close().

    Usage:
        async with manager.login(user_id, password) as session:
            await orchestrator.deposit(session, ...)
        # key bytes are zeroed here
    """

    def __init__(self, user_id: str, key: KeyMaterial):
        self.user_id = user_id
        self.address = key.address
        self.network = key.network
        self.opened_at = time.time()
        self.lock = asyncio.Lock()
        self._key: Optional[KeyMaterial] = key

    @property
    def is_unlocked(self) -> bool:
        return self._key is not None and not self._key.is_zeroed

    def require_key(self) -> KeyMaterial:
        """The unlocked key.

        Raises:
            SigningError: Session was closed
        """
        if not self.is_unlocked:
            raise SigningError("Wallet is locked")
        return self._key

    def require_network(self, network: Network) -> None:
        if self.network is not Network(network):
            raise SigningError(f"Session holds a {self.network.value} wallet, not {Network(network).value}")

    def close(self) -> None:
        """Zero the key and drop it."""
        if self._key is not None:
            self._key.zero()
            self._key = None
            logger.info(f"Wallet session closed for {display_address(self.address)}")

    async def __aenter__(self) -> "WalletSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        if getattr(self, "_key", None) is not None:
            self._key.zero()

    def __repr__(self) -> str:
        state = "unlocked" if self.is_unlocked else "locked"
        return f"WalletSession(user={self.user_id}, {self.network.value}, {display_address(self.address)}, {state})"
