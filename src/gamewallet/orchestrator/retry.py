"""Bounded retries and confirmation polling.

Only NetworkError is retried. ChainError and everything else propagates on
the first occurrence.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

from gamewallet.errors import ChainError, NetworkError
from gamewallet.orchestrator.states import ConfirmationTimeout
from gamewallet.rpc.base import RpcClient, TxReceipt, TxStatus

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    """base * 2**attempt, capped."""
    return min(base * (2 ** attempt), cap)


async def retry_network(
    operation: Callable[[], Awaitable[T]],
    attempts: int,
    base_delay: float,
    max_delay: float,
    description: str = "operation",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run operation up to `attempts` times while it raises NetworkError.

    Raises:
        NetworkError: Last failure once the budget is spent
    """
    attempts = max(1, attempts)
    for attempt in range(attempts):
        try:
            return await operation()
        except NetworkError as e:
            if attempt == attempts - 1:
                logger.error(f"{description} failed after {attempts} attempts: {e}")
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                f"{description} failed (attempt {attempt + 1}/{attempts}): {e}; retrying in {delay:.1f}s"
            )
            await sleep(delay)
    raise AssertionError("unreachable")


async def wait_for_confirmation(
    rpc: RpcClient,
    tx_hash: str,
    attempts: int,
    interval: float,
    max_interval: float,
    timeout: float,
    sleep: Sleep = asyncio.sleep,
) -> TxReceipt:
    """Poll until the transaction is confirmed or reverted.

    Transport errors while polling count as "still pending".

    Raises:
        ChainError: Transaction reverted
        ConfirmationTimeout: Attempts or timeout exhausted
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    attempts = max(1, attempts)

    for attempt in range(attempts):
        try:
            receipt = await rpc.get_status(tx_hash)
        except NetworkError as e:
            logger.warning(f"Status check for {tx_hash} failed: {e}")
        else:
            if receipt.status is TxStatus.CONFIRMED:
                logger.info(f"Transaction {tx_hash} confirmed in block {receipt.block_number}")
                return receipt
            if receipt.status is TxStatus.REVERTED:
                logger.error(f"Transaction {tx_hash} reverted: {receipt.revert_reason}")
                raise ChainError(receipt.revert_reason or "transaction reverted", tx_hash=tx_hash)

        if attempt == attempts - 1:
            break
        remaining = deadline - loop.time()
        if remaining <= 0:
            break
        await sleep(min(backoff_delay(attempt, interval, max_interval), remaining))

    logger.warning(f"Transaction {tx_hash} still unconfirmed after {attempt + 1} checks")
    raise ConfirmationTimeout(tx_hash, attempt + 1)
