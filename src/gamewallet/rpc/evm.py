"""EVM JSON-RPC collaborator (eth_* methods over httpx)."""

import logging
from typing import Optional

from gamewallet.codec import evm
from gamewallet.errors import NetworkError
from gamewallet.rpc.base import JsonRpcClient, TxReceipt, TxStatus

logger = logging.getLogger(__name__)


def _hex_int(value: Optional[str]) -> int:
    if not value:
        return 0
    return int(value, 16)


class EvmRpcClient(JsonRpcClient):
    """Reads chain state and broadcasts raw transactions."""

    async def submit(self, raw: bytes) -> str:
        tx_hash = await self._call("eth_sendRawTransaction", ["0x" + raw.hex()])
        if not tx_hash:
            raise NetworkError("eth_sendRawTransaction returned no hash")
        logger.info(f"Broadcast EVM transaction {tx_hash}")
        return tx_hash

    async def get_status(self, tx_id: str) -> TxReceipt:
        receipt = await self._call("eth_getTransactionReceipt", [tx_id])
        if receipt is None:
            return TxReceipt(tx_id=tx_id, status=TxStatus.PENDING)

        block_number = _hex_int(receipt.get("blockNumber"))
        gas_used = _hex_int(receipt.get("gasUsed"))
        gas_price = _hex_int(receipt.get("effectiveGasPrice"))
        fee = gas_used * gas_price if gas_price else None

        if _hex_int(receipt.get("status")) == 1:
            return TxReceipt(tx_id=tx_id, status=TxStatus.CONFIRMED, block_number=block_number, fee=fee)

        return TxReceipt(
            tx_id=tx_id,
            status=TxStatus.REVERTED,
            block_number=block_number,
            revert_reason=receipt.get("revertReason") or f"execution reverted in block {block_number}",
            fee=fee,
        )

    async def get_transaction_count(self, address: str, block: str = "pending") -> int:
        return _hex_int(await self._call("eth_getTransactionCount", [address, block]))

    async def gas_price(self) -> int:
        return _hex_int(await self._call("eth_gasPrice", []))

    async def chain_id(self) -> int:
        return _hex_int(await self._call("eth_chainId", []))

    async def get_balance(self, address: str) -> int:
        return _hex_int(await self._call("eth_getBalance", [address, "latest"]))

    async def call(self, to: str, data: bytes, sender: Optional[str] = None) -> str:
        """eth_call against latest state; returns the hex result."""
        tx = {"to": to, "data": "0x" + data.hex()}
        if sender:
            tx["from"] = sender
        return await self._call("eth_call", [tx, "latest"])

    async def estimate_gas(self, sender: str, to: str, data: bytes, value: int = 0) -> int:
        tx = {"from": sender, "to": to, "data": "0x" + data.hex(), "value": hex(value)}
        return _hex_int(await self._call("eth_estimateGas", [tx]))

    async def get_allowance(self, token: str, owner: str, spender: str) -> int:
        return evm.decode_uint(await self.call(token, evm.erc20_allowance(owner, spender)))

    async def get_token_balance(self, token: str, owner: str) -> int:
        return evm.decode_uint(await self.call(token, evm.erc20_balance_of(owner)))

    async def get_nft_balance(self, token: str, owner: str, token_id: int) -> int:
        return evm.decode_uint(await self.call(token, evm.erc1155_balance_of(owner, token_id)))
