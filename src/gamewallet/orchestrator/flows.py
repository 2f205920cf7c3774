"""Deposit, withdrawal and transfer flows.

Deposit (EVM ERC-20):
    CheckingAllowance -> [Approving] -> Depositing -> NotifyingBackend -> Done

Deposit (EVM ERC-1155, Solana SPL):
    Depositing -> NotifyingBackend -> Done

Withdraw (EVM ERC-20/1155, Solana SPL):
    RequestingSignature -> Withdrawing -> NotifyingBackend -> Done

Transfer out (EVM ERC-20/1155):
    Transferring -> NotifyingBackend -> Done

Any step may end in Failed. Confirmation polling that runs out ends in
Unconfirmed. A CancelToken stops the flow between steps in Cancelled.
"""

import logging
import time
from dataclasses import replace
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, Optional, Sequence

from solders.instruction import Instruction

from gamewallet.backend.contracts import (
    SolanaWithdrawalAuthorization,
    TransactionType,
    WithdrawalSignature,
)
from gamewallet.codec import evm, solana
from gamewallet.errors import BackendRejectedError, DuplicateSubmissionError, InputError, WalletError
from gamewallet.hdwallet.derivation import Network
from gamewallet.orchestrator.retry import retry_network, wait_for_confirmation
from gamewallet.orchestrator.states import (
    CancelToken,
    ConfirmationTimeout,
    FlowCancelled,
    FlowResult,
    FlowState,
)
from gamewallet.rpc.base import RpcClient
from gamewallet.signing.solana import verify_ed25519
from gamewallet.transactions import (
    EvmApprove,
    EvmDeposit,
    EvmNftTransfer,
    EvmTransaction,
    EvmTransfer,
    EvmWithdraw,
    SignedTransaction,
    SolanaInstructionSet,
)
from gamewallet.wallet.session import WalletSession, display_address

if TYPE_CHECKING:
    from gamewallet.orchestrator.orchestrator import WalletOrchestrator

logger = logging.getLogger(__name__)

TransitionCallback = Callable[[FlowResult, FlowState, FlowState], None]


class Flow(ABC):
    """One run of a multi-step flow against an unlocked session."""

    name = "flow"

    def __init__(
        self,
        orchestrator: "WalletOrchestrator",
        session: WalletSession,
        cancel: Optional[CancelToken] = None,
        on_transition: Optional[TransitionCallback] = None,
    ):
        self.orchestrator = orchestrator
        self.settings = orchestrator.settings
        self.session = session
        self.cancel = cancel or CancelToken()
        self.on_transition = on_transition
        self.result = FlowResult(flow=self.name, network=session.network)

    # ======================
    # State machine
    # ======================

    def _transition(self, state: FlowState) -> None:
        previous = self.result.state
        self.result.state = state
        self.result.steps.append(state)
        logger.info(
            f"[{self.name}] {display_address(self.session.address)}: {previous.value} -> {state.value}"
        )
        if self.on_transition is not None:
            self.on_transition(self.result, previous, state)

    def _step(self, state: FlowState) -> None:
        """Enter the next non-terminal state unless cancelled."""
        self.cancel.raise_if_cancelled()
        self._transition(state)

    async def run(self) -> FlowResult:
        try:
            await self.execute()
        except FlowCancelled as e:
            logger.warning(f"[{self.name}] cancelled: {e}")
            self._transition(FlowState.CANCELLED)
        except ConfirmationTimeout as e:
            self.result.error = e
            self._transition(FlowState.UNCONFIRMED)
        except WalletError as e:
            logger.error(f"[{self.name}] failed in {self.result.state.value}: {type(e).__name__}: {e}")
            self.result.error = e
            self._transition(FlowState.FAILED)
        else:
            self._transition(FlowState.DONE)

        self.result.finished_at = time.time()
        return self.result

    @abstractmethod
    async def execute(self) -> None:
        """Run the steps; raise to end the flow."""
        pass

    # ======================
    # Shared steps
    # ======================

    async def _retry(self, operation, description: str):
        return await retry_network(
            operation,
            attempts=self.settings.max_submit_attempts,
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
            description=description,
            sleep=self.orchestrator.sleep,
        )

    async def _submit(self, rpc: RpcClient, signed: SignedTransaction, description: str) -> str:
        """Broadcast signed bytes, resubmitting the same bytes on NetworkError.

        A timed-out attempt may still have reached the node. If a later
        attempt is refused as a duplicate, the transaction is treated as
        submitted and confirmation polling decides its fate.
        """
        attempts = 0

        async def submit() -> str:
            nonlocal attempts
            attempts += 1
            try:
                return await rpc.submit(signed.raw)
            except DuplicateSubmissionError as e:
                if attempts == 1:
                    raise
                logger.warning(f"[{self.name}] node already has {signed.tx_id} ({e}); polling for it")
                return signed.tx_id

        return await self._retry(submit, f"submit {description}")

    async def _confirm(self, rpc: RpcClient, tx_hash: str, interval: float) -> None:
        await wait_for_confirmation(
            rpc,
            tx_hash,
            attempts=self.settings.confirmation_attempts,
            interval=interval,
            max_interval=self.settings.retry_max_delay,
            timeout=self.settings.confirmation_timeout,
            sleep=self.orchestrator.sleep,
        )

    async def _notify(self, kind: str, **kwargs) -> None:
        self.result.pending_notification = (kind, kwargs)
        self._step(FlowState.NOTIFYING_BACKEND)
        await self.orchestrator.send_notification(self.result)


class EvmFlow(Flow):
    """Nonce-managed EVM submission."""

    def _envelope(self, gas_price: int, gas_limit: int) -> dict:
        # nonce is assigned at submission time
        return {
            "nonce": 0,
            "gas_price": gas_price,
            "gas_limit": gas_limit,
            "chain_id": self.settings.evm_chain_id,
        }

    async def _gas_price(self) -> int:
        configured = evm.gwei_to_wei(self.settings.gas_price_gwei)
        network_price = await self._retry(self.orchestrator.evm_rpc.gas_price, "eth_gasPrice")
        evm.check_gas_price(configured, network_price)
        return configured

    async def _check_gas_balance(self, tx: EvmTransaction) -> None:
        """Refuse to sign when the wallet can not pay for gas (plus any value sent).

        Raises:
            InputError: Native balance too low
        """
        address = self.session.address
        if not await self._retry(
            lambda: self.orchestrator.has_sufficient_balance_for_gas(
                address, tx.gas_limit, gas_price=tx.gas_price, value=tx.value
            ),
            "eth_getBalance",
        ):
            required = tx.gas_limit * tx.gas_price + tx.value
            raise InputError(
                f"{display_address(address)} can not cover {required} wei for {tx.kind} gas"
            )

    async def _estimate_gas(self, tx: EvmTransaction) -> EvmTransaction:
        """Replace the default gas limit with the node's estimate."""
        rpc = self.orchestrator.evm_rpc
        estimate = await self._retry(
            lambda: rpc.estimate_gas(self.session.address, tx.to, tx.data, tx.value), "eth_estimateGas"
        )
        if estimate <= 0:
            return tx
        logger.debug(f"[{self.name}] gas estimate {estimate} for {tx.kind} (default {tx.gas_limit})")
        return replace(tx, gas_limit=estimate)

    async def _send_evm(self, tx: EvmTransaction, record: str) -> str:
        """Sign under the session lock with a reserved nonce and submit.

        The tx hash is stored in result.<record> before the first attempt.
        The same signed bytes are resubmitted on NetworkError; the nonce is
        released if submission ultimately fails.
        """
        await self._check_gas_balance(tx)
        rpc = self.orchestrator.evm_rpc

        async def fetch_nonce(address: str) -> int:
            return await self._retry(lambda: rpc.get_transaction_count(address), "eth_getTransactionCount")

        async with self.session.lock:
            key = self.session.require_key()
            async with self.orchestrator.nonces.reserve(self.session.address, fetch_nonce) as reservation:
                signed = self.orchestrator.evm_signer.sign(tx.with_nonce(reservation.nonce), key)
                setattr(self.result, record, signed.tx_id)
                logger.info(f"[{self.name}] submitting {tx.kind} {signed.tx_id} (nonce {reservation.nonce})")
                tx_hash = await self._submit(rpc, signed, tx.kind)

        if tx_hash.lower() != signed.tx_id.lower():
            logger.warning(f"[{self.name}] node returned {tx_hash}, expected {signed.tx_id}")
        return signed.tx_id

    async def _confirm_evm(self, tx_hash: str) -> None:
        await self._confirm(self.orchestrator.evm_rpc, tx_hash, self.settings.confirmation_interval)


class SolanaFlow(Flow):
    """Blockhash-stamped Solana submission."""

    async def _send_solana(self, instructions: Sequence[Instruction], description: str, record: str) -> str:
        rpc = self.orchestrator.solana_rpc
        blockhash = await self._retry(rpc.get_latest_blockhash, "getLatestBlockhash")
        tx = SolanaInstructionSet(
            payer=self.session.address,
            instructions=list(instructions),
            recent_blockhash=blockhash,
            description=description,
        )

        async with self.session.lock:
            signed = self.orchestrator.solana_signer.sign(tx, self.session.require_key())

        setattr(self.result, record, signed.tx_id)
        logger.info(f"[{self.name}] submitting {description} {signed.tx_id}")
        await self._submit(rpc, signed, description)
        return signed.tx_id

    async def _confirm_solana(self, signature: str) -> None:
        await self._confirm(
            self.orchestrator.solana_rpc, signature, self.settings.solana_confirmation_interval
        )


class DepositFlow(EvmFlow):
    """ERC-20 deposit into the game pool."""

    name = "deposit"

    def __init__(self, orchestrator, session, token: str, amount: int, user_id: str, **kwargs):
        super().__init__(orchestrator, session, **kwargs)
        self.token = token
        self.amount = amount
        self.user_id = user_id

    async def execute(self) -> None:
        rpc = self.orchestrator.evm_rpc
        pool = self.orchestrator.pool_address
        owner = self.session.address

        self._step(FlowState.CHECKING_ALLOWANCE)
        allowance = await self._retry(
            lambda: rpc.get_allowance(self.token, owner, pool), "allowance check"
        )
        gas_price = await self._gas_price()

        if allowance < self.amount:
            self._step(FlowState.APPROVING)
            approve_amount = evm.MAX_UINT256 if self.settings.approve_unlimited else self.amount
            approve = EvmApprove(
                **self._envelope(gas_price, evm.GAS_LIMIT_APPROVE),
                token=self.token,
                spender=pool,
                amount=approve_amount,
            )
            await self._send_evm(approve, "approve_tx")
            # deposit would revert against an unconfirmed approval
            await self._confirm_evm(self.result.approve_tx)
        else:
            logger.info(f"[{self.name}] allowance {allowance} covers {self.amount}, skipping approval")

        self._step(FlowState.DEPOSITING)
        deposit = EvmDeposit(
            **self._envelope(gas_price, evm.GAS_LIMIT_DEPOSIT),
            pool=pool,
            token=self.token,
            amount=self.amount,
            user_id=self.user_id,
        )
        await self._send_evm(deposit, "deposit_tx")
        await self._confirm_evm(self.result.deposit_tx)
        self.result.funds_moved = True

        await self._notify(
            "deposit",
            tx_hash=self.result.deposit_tx,
            user_id=self.user_id,
            amount=self.amount,
            currency=self.token,
            network=Network.EVM,
            transaction_type=TransactionType.TOKEN,
            wallet_address=owner,
        )


class NftDepositFlow(EvmFlow):
    """ERC-1155 safeTransferFrom to the pool; the user id rides in the data field."""

    name = "nft_deposit"

    def __init__(self, orchestrator, session, token: str, token_id: int, amount: int, user_id: str, **kwargs):
        super().__init__(orchestrator, session, **kwargs)
        self.token = token
        self.token_id = token_id
        self.amount = amount
        self.user_id = user_id

    async def execute(self) -> None:
        gas_price = await self._gas_price()

        self._step(FlowState.DEPOSITING)
        transfer = EvmNftTransfer(
            **self._envelope(gas_price, evm.GAS_LIMIT_NFT_TRANSFER),
            token=self.token,
            sender=self.session.address,
            recipient=self.orchestrator.pool_address,
            token_id=self.token_id,
            amount=self.amount,
            payload=self.user_id.encode("utf-8"),
        )
        await self._send_evm(transfer, "deposit_tx")
        await self._confirm_evm(self.result.deposit_tx)
        self.result.funds_moved = True

        await self._notify(
            "deposit",
            tx_hash=self.result.deposit_tx,
            user_id=self.user_id,
            amount=self.amount,
            currency=str(self.token_id),
            network=Network.EVM,
            transaction_type=TransactionType.NFT,
            wallet_address=self.session.address,
        )


class SolanaDepositFlow(SolanaFlow):
    """SPL deposit_spl into the pool vault."""

    name = "solana_deposit"

    def __init__(
        self,
        orchestrator,
        session,
        mint: str,
        amount: int,
        user_id: str,
        create_vault_account: bool = False,
        **kwargs,
    ):
        super().__init__(orchestrator, session, **kwargs)
        self.mint = mint
        self.amount = amount
        self.user_id = user_id
        self.create_vault_account = create_vault_account

    def build_instructions(self) -> list[Instruction]:
        program_id = self.orchestrator.program_id
        instructions = []
        if self.create_vault_account:
            vault = solana.pool_vault_address(program_id)
            instructions.append(
                solana.create_ata_idempotent_instruction(self.session.address, vault, self.mint)
            )
        instructions.append(
            solana.deposit_spl_instruction(
                program_id, self.session.address, self.mint, self.amount, self.user_id
            )
        )
        return instructions

    async def execute(self) -> None:
        self._step(FlowState.DEPOSITING)
        await self._send_solana(self.build_instructions(), "deposit_spl", "deposit_tx")
        await self._confirm_solana(self.result.deposit_tx)
        self.result.funds_moved = True

        await self._notify(
            "deposit",
            tx_hash=self.result.deposit_tx,
            user_id=self.user_id,
            amount=self.amount,
            currency=self.mint,
            network=Network.SOLANA,
            transaction_type=TransactionType.TOKEN,
            wallet_address=self.session.address,
        )


class WithdrawFlow(EvmFlow, SolanaFlow):
    """Backend-authorized withdrawal from the pool to the session's wallet.

    The authorization is requested once per run and submitted as received.
    """

    name = "withdraw"

    def __init__(
        self,
        orchestrator,
        session,
        currency: str,
        amount: int,
        token_id: Optional[int] = None,
        setup_instructions: Optional[Sequence[Instruction]] = None,
        **kwargs,
    ):
        super().__init__(orchestrator, session, **kwargs)
        self.currency = currency
        self.amount = amount
        self.token_id = token_id
        self.setup_instructions = list(setup_instructions or [])
        self.authorization = None

    @property
    def transaction_type(self) -> TransactionType:
        return TransactionType.NFT if self.token_id is not None else TransactionType.TOKEN

    def check_authorization(self, authorization) -> None:
        """Reject authorizations that can not succeed on chain.

        Raises:
            BackendRejectedError: Expired, wrong recipient or bad signature
        """
        if authorization.is_expired():
            raise BackendRejectedError("Withdrawal authorization has expired")

        if isinstance(authorization, WithdrawalSignature):
            if authorization.wallet_address.lower() != self.session.address.lower():
                raise BackendRejectedError("Withdrawal authorization names a different wallet")
            return

        if authorization.wallet_address != self.session.address:
            raise BackendRejectedError("Withdrawal authorization names a different wallet")
        if authorization.sig_ix_index > len(self.setup_instructions):
            raise BackendRejectedError(
                f"SigIxIndex {authorization.sig_ix_index} is past the withdraw instruction"
            )
        if not verify_ed25519(
            authorization.public_key_bytes(),
            authorization.message_bytes(),
            authorization.signature_bytes(),
        ):
            raise BackendRejectedError("Withdrawal authorization signature does not verify")

    def build_evm_transaction(self, authorization: WithdrawalSignature, gas_price: int) -> EvmWithdraw:
        token_id = authorization.token_id if authorization.token_id is not None else self.token_id
        return EvmWithdraw(
            **self._envelope(gas_price, evm.GAS_LIMIT_WITHDRAW),
            pool=authorization.contract_address,
            token=authorization.token_address,
            recipient=authorization.wallet_address,
            amount=authorization.amount,
            withdraw_nonce=authorization.nonce,
            signature=authorization.signature_bytes(),
            user_id=authorization.user_id if self.settings.use_withdraw_v2 else None,
            token_id=token_id,
        )

    def build_solana_instructions(self, authorization: SolanaWithdrawalAuthorization) -> list[Instruction]:
        """Setup instructions with the ed25519 check at SigIxIndex, then withdraw_spl."""
        verify_ix = solana.ed25519_verify_instruction(
            authorization.public_key_bytes(),
            authorization.message_bytes(),
            authorization.signature_bytes(),
            instruction_index=authorization.sig_ix_index,
        )
        withdraw_ix = solana.withdraw_spl_instruction(
            authorization.program_id or self.orchestrator.program_id,
            payer=self.session.address,
            mint=authorization.mint,
            to=authorization.wallet_address,
            amount=authorization.amount,
            nonce=authorization.nonce,
            user_id=authorization.user_id,
            sig_ix_index=authorization.sig_ix_index,
        )
        instructions = list(self.setup_instructions)
        instructions.insert(authorization.sig_ix_index, verify_ix)
        instructions.append(withdraw_ix)
        return instructions

    async def execute(self) -> None:
        network = self.session.network
        backend = self.orchestrator.backend

        self._step(FlowState.REQUESTING_SIGNATURE)
        self.authorization = await self._retry(
            lambda: backend.request_withdrawal_signature(
                self.currency, self.amount, self.session.address, network, self.token_id
            ),
            "withdrawal signature request",
        )
        self.check_authorization(self.authorization)

        if network is Network.EVM:
            gas_price = await self._gas_price()
            self._step(FlowState.WITHDRAWING)
            await self._send_evm(self.build_evm_transaction(self.authorization, gas_price), "withdraw_tx")
            await self._confirm_evm(self.result.withdraw_tx)
        else:
            self._step(FlowState.WITHDRAWING)
            await self._send_solana(
                self.build_solana_instructions(self.authorization), "withdraw_spl", "withdraw_tx"
            )
            await self._confirm_solana(self.result.withdraw_tx)
        self.result.funds_moved = True

        await self._notify(
            "withdrawal",
            tx_hash=self.result.withdraw_tx,
            network=network,
            transaction_type=self.transaction_type,
        )


class TransferFlow(EvmFlow):
    """ERC-20 or ERC-1155 transfer from the session's wallet to an outside address.

    Transferring -> NotifyingBackend -> Done
    """

    name = "transfer"

    def __init__(
        self,
        orchestrator,
        session,
        token: str,
        recipient: str,
        amount: int,
        token_id: Optional[int] = None,
        **kwargs,
    ):
        super().__init__(orchestrator, session, **kwargs)
        self.token = token
        self.recipient = recipient
        self.amount = amount
        self.token_id = token_id

    @property
    def transaction_type(self) -> TransactionType:
        return TransactionType.NFT if self.token_id is not None else TransactionType.TOKEN

    def build_transaction(self, gas_price: int) -> EvmTransaction:
        if self.token_id is None:
            return EvmTransfer(
                **self._envelope(gas_price, evm.GAS_LIMIT_TRANSFER),
                recipient=self.recipient,
                amount=self.amount,
                token=self.token,
            )
        # no user id rides along on transfers out of the game
        return EvmNftTransfer(
            **self._envelope(gas_price, evm.GAS_LIMIT_NFT_TRANSFER),
            token=self.token,
            sender=self.session.address,
            recipient=self.recipient,
            token_id=self.token_id,
            amount=self.amount,
        )

    async def execute(self) -> None:
        gas_price = await self._gas_price()

        self._step(FlowState.TRANSFERRING)
        tx = await self._estimate_gas(self.build_transaction(gas_price))
        await self._send_evm(tx, "transfer_tx")
        await self._confirm_evm(self.result.transfer_tx)
        self.result.funds_moved = True

        await self._notify(
            "transfer",
            tx_hash=self.result.transfer_tx,
            transaction_type=self.transaction_type,
            wallet_address=self.session.address,
        )
