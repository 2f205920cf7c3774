"""Central EVM nonce assignment.

Each sender address gets its nonces from one place, under a per-address
lock. The next nonce is max(chain pending count, last committed + 1), so a
transaction still sitting in the mempool is never reused and a nonce whose
submission failed is handed out again.
"""

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from gamewallet.utils.display import display_address
from gamewallet.utils.locks import KeyedLock

logger = logging.getLogger(__name__)

NonceFetcher = Callable[[str], Awaitable[int]]


@dataclass
class NonceReservation:
    """A nonce held under the address lock until the context exits."""

    address: str
    nonce: int
    released: bool = False

    def release(self) -> None:
        """Give the nonce back even though the context exits cleanly."""
        self.released = True


class NonceManager:
    """Per-address nonce registry.

    Usage:
        async with nonces.reserve(address, rpc.get_transaction_count) as r:
            signed = signer.sign(tx.with_nonce(r.nonce), key)
            await rpc.submit(signed.raw)
        # committed: next reservation gets r.nonce + 1

    An exception inside the block releases the nonce.
    """

    def __init__(self, lock_timeout: Optional[float] = 120.0):
        self.lock_timeout = lock_timeout
        self._next: dict[str, int] = {}

    @staticmethod
    def _key(address: str) -> str:
        return address.lower()

    def peek(self, address: str) -> Optional[int]:
        """Next locally cached nonce, if any."""
        return self._next.get(self._key(address))

    def reset(self, address: str) -> None:
        """Forget the cached nonce (e.g. after the node dropped transactions)."""
        self._next.pop(self._key(address), None)

    @asynccontextmanager
    async def reserve(self, address: str, fetch_chain_nonce: NonceFetcher):
        key = self._key(address)

        async with KeyedLock(f"nonce:{key}", timeout=self.lock_timeout, operation="reserve_nonce"):
            chain_nonce = await fetch_chain_nonce(address)
            cached = self._next.get(key, 0)
            nonce = max(chain_nonce, cached)
            reservation = NonceReservation(address=address, nonce=nonce)

            logger.debug(f"Reserved nonce {nonce} for {display_address(address)} (chain={chain_nonce}, cached={cached})")

            try:
                yield reservation
            except BaseException:
                logger.info(f"Released nonce {nonce} for {display_address(address)} after failure")
                raise

            if reservation.released:
                logger.info(f"Released nonce {nonce} for {display_address(address)}")
            else:
                self._next[key] = nonce + 1
