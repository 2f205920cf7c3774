"""Game backend collaborator.

Endpoints (relative to api_url):
    wallet/transaction          EVM withdrawal signatures and deposit/withdraw/transfer records
    solana/withdraw-signature   Solana withdrawal authorization
    solana/deposit              Solana deposit record
    solana/withdrawal           Solana withdrawal record
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ValidationError

from gamewallet.backend.contracts import (
    PoolTransactionRequest,
    SolanaWithdrawalAuthorization,
    TransactionDirection,
    TransactionType,
    WalletTransactionRequest,
    WithdrawalSignature,
)
from gamewallet.config import Settings
from gamewallet.errors import BackendRejectedError, NetworkError
from gamewallet.hdwallet.derivation import Network

logger = logging.getLogger(__name__)


class Backend(ABC):
    """What the orchestrator needs from the game backend."""

    @abstractmethod
    async def request_withdrawal_signature(
        self,
        currency: str,
        amount: int,
        address: str,
        network: Network = Network.EVM,
        token_id: Optional[int] = None,
    ):
        """Ask the backend to authorize a withdrawal.

        Returns:
            WithdrawalSignature (EVM) or SolanaWithdrawalAuthorization
        """
        pass

    @abstractmethod
    async def notify_deposit(
        self,
        tx_hash: str,
        user_id: str,
        amount: int,
        currency: str,
        network: Network = Network.EVM,
        transaction_type: TransactionType = TransactionType.TOKEN,
        wallet_address: Optional[str] = None,
    ) -> str:
        """Report a confirmed deposit so the game credits the user."""
        pass

    @abstractmethod
    async def notify_withdrawal(
        self,
        tx_hash: str,
        network: Network = Network.EVM,
        transaction_type: TransactionType = TransactionType.TOKEN,
    ) -> str:
        """Report a confirmed withdrawal."""
        pass

    @abstractmethod
    async def notify_transfer(
        self,
        tx_hash: str,
        transaction_type: TransactionType = TransactionType.TOKEN,
        wallet_address: Optional[str] = None,
    ) -> str:
        """Report a confirmed transfer from the user's wallet to an outside address."""
        pass


class BackendClient(Backend):
    """httpx implementation of the backend collaborator."""

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        game_id: str = "",
        chain_id: int = 1,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.game_id = game_id
        self.chain_id = chain_id
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs) -> "BackendClient":
        return cls(
            api_url=settings.api_url,
            api_key=settings.api_key,
            game_id=settings.game_id,
            chain_id=settings.evm_chain_id,
            timeout=settings.http_timeout,
            **kwargs,
        )

    @property
    def headers(self) -> dict:
        return {"X-API-Key": self.api_key, "X-Game-ID": self.game_id}

    async def _post(self, endpoint: str, body: BaseModel) -> Any:
        """POST a contract and return the decoded JSON (or text) body.

        Raises:
            NetworkError: Transport failure, timeout or 5xx
            BackendRejectedError: 4xx response
        """
        url = f"{self.api_url}/{endpoint}"
        payload = body.model_dump(mode="json", exclude_none=True)
        logger.info(f"POST {url}")

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(url, json=payload, headers=self.headers)
        except httpx.TimeoutException:
            raise NetworkError(f"POST {endpoint} timed out")
        except httpx.HTTPError as e:
            raise NetworkError(f"POST {endpoint} failed: {e}")

        if response.status_code >= 500 or response.status_code == 429:
            logger.error(f"POST {url} failed with status {response.status_code}")
            raise NetworkError(f"Backend returned HTTP {response.status_code} for {endpoint}")
        if response.status_code >= 400:
            logger.error(f"POST {url} rejected with status {response.status_code}: {response.text[:200]}")
            raise BackendRejectedError(
                f"Backend rejected {endpoint} with HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError:
            return response.text

    @staticmethod
    def _parse(model, data: Any, endpoint: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            logger.error(f"Unexpected {endpoint} response: {e.error_count()} validation errors")
            raise BackendRejectedError(f"Malformed response from {endpoint}")

    async def request_withdrawal_signature(
        self,
        currency: str,
        amount: int,
        address: str,
        network: Network = Network.EVM,
        token_id: Optional[int] = None,
    ):
        if Network(network) is Network.SOLANA:
            request = PoolTransactionRequest(
                direction=TransactionDirection.USERS_CRYPTO_WALLET,
                currency_id=currency,
                amount=amount,
                wallet_address=address,
            )
            data = await self._post("solana/withdraw-signature", request)
            return self._parse(SolanaWithdrawalAuthorization, data, "solana/withdraw-signature")

        is_nft = token_id is not None
        request = WalletTransactionRequest(
            chain_id=self.chain_id,
            transaction_type=TransactionType.NFT if is_nft else TransactionType.TOKEN,
            direction=TransactionDirection.USERS_CRYPTO_WALLET,
            currency_id=None if is_nft else currency,
            skin_id=str(token_id) if is_nft else None,
            amount=amount,
            connected_wallet_address=address,
        )
        data = await self._post("wallet/transaction", request)
        return self._parse(WithdrawalSignature, data, "wallet/transaction")

    async def notify_deposit(
        self,
        tx_hash: str,
        user_id: str,
        amount: int,
        currency: str,
        network: Network = Network.EVM,
        transaction_type: TransactionType = TransactionType.TOKEN,
        wallet_address: Optional[str] = None,
    ) -> str:
        if Network(network) is Network.SOLANA:
            request = PoolTransactionRequest(
                transaction_type=transaction_type,
                direction=TransactionDirection.GAME,
                transaction_hash=tx_hash,
                currency_id=currency,
                amount=amount,
                wallet_address=wallet_address or "",
                user_id=user_id,
            )
            return str(await self._post("solana/deposit", request))

        request = WalletTransactionRequest(
            chain_id=self.chain_id,
            transaction_type=transaction_type,
            direction=TransactionDirection.GAME,
            transaction_hash=tx_hash,
            currency_id=currency if transaction_type is TransactionType.TOKEN else None,
            skin_id=currency if transaction_type is TransactionType.NFT else None,
            amount=amount,
            connected_wallet_address=wallet_address,
            user_id=user_id,
        )
        return str(await self._post("wallet/transaction", request))

    async def notify_withdrawal(
        self,
        tx_hash: str,
        network: Network = Network.EVM,
        transaction_type: TransactionType = TransactionType.TOKEN,
    ) -> str:
        if Network(network) is Network.SOLANA:
            request = PoolTransactionRequest(
                transaction_type=transaction_type,
                direction=TransactionDirection.USERS_CRYPTO_WALLET,
                transaction_hash=tx_hash,
            )
            return str(await self._post("solana/withdrawal", request))

        request = WalletTransactionRequest(
            chain_id=self.chain_id,
            transaction_type=transaction_type,
            direction=TransactionDirection.USERS_CRYPTO_WALLET,
            transaction_hash=tx_hash,
        )
        return str(await self._post("wallet/transaction", request))

    async def notify_transfer(
        self,
        tx_hash: str,
        transaction_type: TransactionType = TransactionType.TOKEN,
        wallet_address: Optional[str] = None,
    ) -> str:
        request = WalletTransactionRequest(
            chain_id=self.chain_id,
            transaction_type=transaction_type,
            direction=TransactionDirection.EXTERNAL_WALLET_ADDRESS,
            transaction_hash=tx_hash,
            connected_wallet_address=wallet_address,
        )
        return str(await self._post("wallet/transaction", request))
