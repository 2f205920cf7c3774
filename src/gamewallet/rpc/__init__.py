"""RPC submission collaborators."""

from gamewallet.rpc.base import JsonRpcClient, RpcClient, TxReceipt, TxStatus
from gamewallet.rpc.evm import EvmRpcClient
from gamewallet.rpc.solana import SimulationResult, SolanaRpcClient

__all__ = [
    "EvmRpcClient",
    "JsonRpcClient",
    "RpcClient",
    "SimulationResult",
    "SolanaRpcClient",
    "TxReceipt",
    "TxStatus",
]
