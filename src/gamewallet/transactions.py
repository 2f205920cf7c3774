"""Unsigned and signed transaction models.

Exactly two families exist and they never share an encoding:

    EVM:    EvmTransfer, EvmApprove, EvmDeposit, EvmWithdraw, EvmNftTransfer
            -> to/value/data/nonce/gas fields, RLP encoded
    Solana: SolanaInstructionSet
            -> payer, blockhash and an ordered instruction list

Every EVM variant carries the envelope fields (nonce, gas_price in wei,
gas_limit, chain_id) first and derives to/value/data from its own fields.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import ClassVar, Optional, Union

from solders.instruction import Instruction

from gamewallet.codec import evm
from gamewallet.hdwallet.derivation import Network


@dataclass
class EvmTransaction(ABC):
    """Fields shared by every EVM variant."""

    nonce: int
    gas_price: int
    gas_limit: int
    chain_id: int

    network: ClassVar[Network] = Network.EVM
    kind: ClassVar[str] = "call"

    @property
    @abstractmethod
    def to(self) -> str:
        """Contract or recipient the transaction is sent to."""
        pass

    @property
    def value(self) -> int:
        return 0

    @property
    def data(self) -> bytes:
        return b""

    def with_nonce(self, nonce: int):
        """Copy with a new nonce (nonces are assigned at submission time)."""
        return replace(self, nonce=nonce)


@dataclass
class EvmTransfer(EvmTransaction):
    """Native coin transfer when token is None, ERC-20 transfer otherwise."""

    recipient: str
    amount: int
    token: Optional[str] = None

    kind: ClassVar[str] = "transfer"

    @property
    def to(self) -> str:
        return self.token or self.recipient

    @property
    def value(self) -> int:
        return self.amount if self.token is None else 0

    @property
    def data(self) -> bytes:
        if self.token is None:
            return b""
        return evm.erc20_transfer(self.recipient, self.amount)


@dataclass
class EvmApprove(EvmTransaction):
    token: str
    spender: str
    amount: int

    kind: ClassVar[str] = "approve"

    @property
    def to(self) -> str:
        return self.token

    @property
    def data(self) -> bytes:
        return evm.erc20_approve(self.spender, self.amount)


@dataclass
class EvmDeposit(EvmTransaction):
    """depositERC20 into the game pool, credited to user_id."""

    pool: str
    token: str
    amount: int
    user_id: str

    kind: ClassVar[str] = "deposit"

    @property
    def to(self) -> str:
        return self.pool

    @property
    def data(self) -> bytes:
        return evm.pool_deposit_erc20(self.token, self.amount, self.user_id)


@dataclass
class EvmWithdraw(EvmTransaction):
    """Pool withdrawal authorized by a backend signature.

    token_id selects withdrawERC1155; user_id selects the v2 signatures.
    """

    pool: str
    token: str
    recipient: str
    amount: int
    withdraw_nonce: int
    signature: bytes
    user_id: Optional[str] = None
    token_id: Optional[int] = None

    kind: ClassVar[str] = "withdraw"

    @property
    def to(self) -> str:
        return self.pool

    @property
    def data(self) -> bytes:
        if self.token_id is not None:
            return evm.pool_withdraw_erc1155(
                self.token,
                self.recipient,
                self.token_id,
                self.amount,
                self.withdraw_nonce,
                self.signature,
                self.user_id,
            )
        return evm.pool_withdraw_erc20(
            self.token,
            self.recipient,
            self.amount,
            self.withdraw_nonce,
            self.signature,
            self.user_id,
        )


@dataclass
class EvmNftTransfer(EvmTransaction):
    """ERC-1155 safeTransferFrom; a deposit when recipient is the pool."""

    token: str
    sender: str
    recipient: str
    token_id: int
    amount: int
    payload: bytes = b""

    kind: ClassVar[str] = "nft_transfer"

    @property
    def to(self) -> str:
        return self.token

    @property
    def data(self) -> bytes:
        return evm.erc1155_safe_transfer_from(
            self.sender, self.recipient, self.token_id, self.amount, self.payload
        )


@dataclass
class SolanaInstructionSet:
    """Ordered instructions paid for and signed by payer."""

    payer: str
    instructions: list[Instruction]
    recent_blockhash: str = ""
    description: str = ""

    network: ClassVar[Network] = Network.SOLANA
    kind: ClassVar[str] = "instructions"


UnsignedTransaction = Union[
    EvmTransfer,
    EvmApprove,
    EvmDeposit,
    EvmWithdraw,
    EvmNftTransfer,
    SolanaInstructionSet,
]


@dataclass
class SignedTransaction:
    """A signed payload ready for submission.

    tx_id is the EVM transaction hash or the Solana base58 signature.
    """

    network: Network
    unsigned: UnsignedTransaction
    raw: bytes
    tx_id: str
    sender: str
    signature: bytes
    v: Optional[int] = None
    r: Optional[int] = None
    s: Optional[int] = None
    extra: dict = field(default_factory=dict)

    @property
    def raw_hex(self) -> str:
        return "0x" + self.raw.hex()
