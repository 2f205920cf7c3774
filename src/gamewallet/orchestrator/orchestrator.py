"""Entry point for deposit, withdrawal and transfer flows."""

import asyncio
import logging
from typing import Optional, Sequence

from solders.instruction import Instruction

from gamewallet.backend.client import Backend, BackendClient
from gamewallet.codec import evm
from gamewallet.config import Settings, get_settings
from gamewallet.errors import ConsistencyError, InputError, WalletError
from gamewallet.hdwallet.derivation import Network
from gamewallet.orchestrator.flows import (
    DepositFlow,
    NftDepositFlow,
    SolanaDepositFlow,
    TransferFlow,
    TransitionCallback,
    WithdrawFlow,
)
from gamewallet.orchestrator.retry import Sleep, retry_network
from gamewallet.orchestrator.states import CancelToken, FlowResult, FlowState
from gamewallet.rpc.evm import EvmRpcClient
from gamewallet.rpc.solana import SolanaRpcClient
from gamewallet.signing.evm import EvmSigner
from gamewallet.signing.nonce import NonceManager
from gamewallet.signing.solana import SolanaSigner
from gamewallet.wallet.session import WalletSession

logger = logging.getLogger(__name__)


class WalletOrchestrator:
    """Runs multi-step flows for unlocked sessions.

    Usage:
        orchestrator = WalletOrchestrator.from_settings(settings)
        result = await orchestrator.deposit(session, token, amount, user_id)
        if result.needs_notification:
            await orchestrator.retry_notification(result)

    Flows never raise for chain or network trouble; the outcome is in the
    returned FlowResult. Bad arguments and locked sessions raise before any
    state is entered.
    """

    def __init__(
        self,
        backend: Backend,
        evm_rpc: Optional[EvmRpcClient] = None,
        solana_rpc: Optional[SolanaRpcClient] = None,
        settings: Optional[Settings] = None,
        nonces: Optional[NonceManager] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.settings = settings or get_settings()
        self.backend = backend
        self._evm_rpc = evm_rpc
        self._solana_rpc = solana_rpc
        self.nonces = nonces or NonceManager()
        self.sleep = sleep
        self.evm_signer = EvmSigner()
        self.solana_signer = SolanaSigner()

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "WalletOrchestrator":
        settings = settings or get_settings()
        return cls(
            backend=BackendClient.from_settings(settings),
            evm_rpc=EvmRpcClient(settings.get_rpc_url("EVM"), timeout=settings.http_timeout),
            solana_rpc=SolanaRpcClient(
                settings.get_rpc_url("SOLANA"),
                commitment=settings.solana_commitment,
                timeout=settings.http_timeout,
            ),
            settings=settings,
        )

    # ======================
    # Collaborators
    # ======================

    @property
    def evm_rpc(self) -> EvmRpcClient:
        if self._evm_rpc is None:
            raise InputError("EVM RPC is not configured")
        return self._evm_rpc

    @property
    def solana_rpc(self) -> SolanaRpcClient:
        if self._solana_rpc is None:
            raise InputError("Solana RPC is not configured")
        return self._solana_rpc

    @property
    def pool_address(self) -> str:
        if not self.settings.pool_contract_address:
            raise InputError("POOL_CONTRACT_ADDRESS is not configured")
        return self.settings.pool_contract_address

    @property
    def program_id(self) -> str:
        if not self.settings.solana_program_id:
            raise InputError("SOLANA_PROGRAM_ID is not configured")
        return self.settings.solana_program_id

    # ======================
    # Argument checks
    # ======================

    @staticmethod
    def _check_session(session: WalletSession, network: Network) -> None:
        session.require_key()
        session.require_network(network)

    @staticmethod
    def _check_amount(amount: int) -> None:
        if not isinstance(amount, int) or isinstance(amount, bool) or amount <= 0:
            raise InputError(f"Amount must be a positive integer, got {amount!r}")

    # ======================
    # Flows
    # ======================

    async def deposit(
        self,
        session: WalletSession,
        token: str,
        amount: int,
        user_id: str,
        cancel: Optional[CancelToken] = None,
        on_transition: Optional[TransitionCallback] = None,
    ) -> FlowResult:
        """ERC-20 deposit: allowance check, approval if needed, deposit, notify."""
        self._check_session(session, Network.EVM)
        self._check_amount(amount)
        flow = DepositFlow(
            self, session, token, amount, user_id, cancel=cancel, on_transition=on_transition
        )
        return await flow.run()

    async def deposit_nft(
        self,
        session: WalletSession,
        token: str,
        token_id: int,
        amount: int,
        user_id: str,
        cancel: Optional[CancelToken] = None,
        on_transition: Optional[TransitionCallback] = None,
    ) -> FlowResult:
        """ERC-1155 transfer into the pool, then notify."""
        self._check_session(session, Network.EVM)
        self._check_amount(amount)
        flow = NftDepositFlow(
            self, session, token, token_id, amount, user_id, cancel=cancel, on_transition=on_transition
        )
        return await flow.run()

    async def deposit_solana(
        self,
        session: WalletSession,
        mint: str,
        amount: int,
        user_id: str,
        create_vault_account: bool = False,
        cancel: Optional[CancelToken] = None,
        on_transition: Optional[TransitionCallback] = None,
    ) -> FlowResult:
        """SPL deposit into the pool vault, then notify."""
        self._check_session(session, Network.SOLANA)
        self._check_amount(amount)
        flow = SolanaDepositFlow(
            self,
            session,
            mint,
            amount,
            user_id,
            create_vault_account=create_vault_account,
            cancel=cancel,
            on_transition=on_transition,
        )
        return await flow.run()

    async def withdraw(
        self,
        session: WalletSession,
        currency: str,
        amount: int,
        token_id: Optional[int] = None,
        setup_instructions: Optional[Sequence[Instruction]] = None,
        cancel: Optional[CancelToken] = None,
        on_transition: Optional[TransitionCallback] = None,
    ) -> FlowResult:
        """Backend-authorized withdrawal on the session's network."""
        session.require_key()
        self._check_amount(amount)
        if setup_instructions and session.network is not Network.SOLANA:
            raise InputError("Setup instructions only apply to Solana withdrawals")
        flow = WithdrawFlow(
            self,
            session,
            currency,
            amount,
            token_id=token_id,
            setup_instructions=setup_instructions,
            cancel=cancel,
            on_transition=on_transition,
        )
        return await flow.run()

    async def transfer_token(
        self,
        session: WalletSession,
        token: str,
        to_address: str,
        amount: int,
        cancel: Optional[CancelToken] = None,
        on_transition: Optional[TransitionCallback] = None,
    ) -> FlowResult:
        """ERC-20 transfer to an address outside the game, then notify."""
        self._check_session(session, Network.EVM)
        self._check_amount(amount)
        flow = TransferFlow(
            self,
            session,
            evm.normalize_address(token),
            evm.normalize_address(to_address),
            amount,
            cancel=cancel,
            on_transition=on_transition,
        )
        return await flow.run()

    async def transfer_nft(
        self,
        session: WalletSession,
        token: str,
        to_address: str,
        token_id: int,
        amount: int = 1,
        cancel: Optional[CancelToken] = None,
        on_transition: Optional[TransitionCallback] = None,
    ) -> FlowResult:
        """ERC-1155 transfer to an address outside the game, then notify."""
        self._check_session(session, Network.EVM)
        self._check_amount(amount)
        flow = TransferFlow(
            self,
            session,
            evm.normalize_address(token),
            evm.normalize_address(to_address),
            amount,
            token_id=token_id,
            cancel=cancel,
            on_transition=on_transition,
        )
        return await flow.run()

    # ======================
    # Balances
    # ======================

    async def has_sufficient_balance_for_gas(
        self,
        address: str,
        gas_estimate: int,
        gas_price: Optional[int] = None,
        value: int = 0,
    ) -> bool:
        """Whether the native balance covers gas_estimate at gas_price, plus value.

        gas_price defaults to the configured GAS_PRICE_GWEI.
        """
        if gas_price is None:
            gas_price = evm.gwei_to_wei(self.settings.gas_price_gwei)
        balance = await self.evm_rpc.get_balance(address)
        required = gas_estimate * gas_price + value
        if balance < required:
            logger.warning(f"Balance {balance} wei is below the {required} wei needed for gas")
            return False
        return True

    # ======================
    # Backend notification
    # ======================

    async def send_notification(self, result: FlowResult) -> None:
        """Deliver the pending backend call for a confirmed transfer.

        Raises:
            ConsistencyError: Backend did not record the transfer
        """
        kind, kwargs = result.pending_notification
        if kind == "deposit":
            call = self.backend.notify_deposit
        elif kind == "transfer":
            call = self.backend.notify_transfer
        else:
            call = self.backend.notify_withdrawal

        try:
            response = await retry_network(
                lambda: call(**kwargs),
                attempts=self.settings.max_submit_attempts,
                base_delay=self.settings.retry_base_delay,
                max_delay=self.settings.retry_max_delay,
                description=f"notify {kind}",
                sleep=self.sleep,
            )
        except WalletError as e:
            logger.error(f"Backend did not record {kind} {result.tx_hash}: {e}")
            raise ConsistencyError(result.tx_hash) from e

        result.backend_response = response
        result.pending_notification = None

    async def retry_notification(self, result: FlowResult) -> FlowResult:
        """Re-run only NotifyingBackend for a transfer that already moved funds.

        Nothing is signed or submitted again.
        """
        if not result.needs_notification:
            raise InputError(f"Flow in state {result.state.value} has no pending notification")

        previous = result.state
        result.state = FlowState.NOTIFYING_BACKEND
        result.steps.append(FlowState.NOTIFYING_BACKEND)
        logger.info(f"[{result.flow}] {previous.value} -> {FlowState.NOTIFYING_BACKEND.value} (retry)")

        try:
            await self.send_notification(result)
        except ConsistencyError as e:
            result.error = e
            result.state = FlowState.FAILED
        else:
            result.error = None
            result.state = FlowState.DONE

        result.steps.append(result.state)
        logger.info(f"[{result.flow}] {FlowState.NOTIFYING_BACKEND.value} -> {result.state.value}")
        return result
