"""Backend request/response contracts.

The backend issues withdrawal authorizations and records confirmed
deposits. Withdrawal authorizations are opaque credentials: the wallet
forwards them on chain and never constructs one itself.
"""

import time
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from gamewallet.errors import InputError


def _hex_bytes(value: str, name: str, length: Optional[int] = None) -> bytes:
    hex_part = value[2:] if value.startswith("0x") else value
    try:
        data = bytes.fromhex(hex_part)
    except ValueError:
        raise InputError(f"{name} is not valid hex")
    if length is not None and len(data) != length:
        raise InputError(f"{name} must be {length} bytes, got {len(data)}")
    return data


class TransactionType(str, Enum):
    """What kind of asset a wallet transaction moves."""
    TOKEN = "Token"
    NFT = "NFT"


class TransactionDirection(str, Enum):
    """Which way value moves relative to the game."""
    USERS_CRYPTO_WALLET = "UsersCryptoWallet"   # game -> user's wallet (withdraw)
    GAME = "Game"                               # user's wallet -> game (deposit)
    EXTERNAL_WALLET_ADDRESS = "ExternalWalletAddress"


class WalletTransactionRequest(BaseModel):
    """EVM request body for wallet/transaction."""

    chain_id: int = Field(..., description="EIP-155 chain id")
    transaction_type: TransactionType
    direction: TransactionDirection
    transaction_hash: Optional[str] = Field(None, description="Confirmed tx hash (notifications)")
    currency_id: Optional[str] = Field(None, description="Game currency / token id")
    skin_id: Optional[str] = Field(None, description="NFT skin id")
    amount: Optional[int] = Field(None, description="Amount in smallest units")
    connected_wallet_address: Optional[str] = Field(None, description="User wallet address")
    user_id: Optional[str] = Field(None, description="Game user id")


class PoolTransactionRequest(BaseModel):
    """Solana request body for the solana/* endpoints."""

    transaction_type: TransactionType = TransactionType.TOKEN
    direction: TransactionDirection
    transaction_hash: Optional[str] = None
    currency_id: Optional[str] = Field(None, description="Mint address")
    amount: Optional[int] = None
    wallet_address: str = ""
    user_id: Optional[str] = None


class WithdrawalSignature(BaseModel):
    """Backend authorization for an EVM pool withdrawal."""

    contract_address: str = Field(..., description="Pool contract to call")
    token_address: str = Field(..., description="ERC-20 / ERC-1155 contract")
    wallet_address: str = Field(..., description="Recipient")
    amount: int = Field(..., ge=0)
    nonce: int = Field(..., ge=0, description="Withdrawal nonce consumed by the pool")
    signature: str = Field(..., description="Backend signature (hex)")
    token_id: Optional[int] = Field(None, description="ERC-1155 id for NFT withdrawals")
    user_id: Optional[str] = None
    currency: Optional[str] = None
    expiry: Optional[int] = Field(None, description="Unix timestamp after which it is void")

    def signature_bytes(self) -> bytes:
        return _hex_bytes(self.signature, "signature")

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expiry is None:
            return False
        return (now if now is not None else time.time()) >= self.expiry


class SolanaWithdrawalAuthorization(BaseModel):
    """Backend authorization for a Solana pool withdrawal."""

    model_config = ConfigDict(populate_by_name=True)

    mint: str = Field(..., alias="Mint")
    wallet_address: str = Field(..., alias="WalletAddress")
    amount: int = Field(..., alias="Amount", ge=0)
    nonce: int = Field(..., alias="Nonce", ge=0)
    program_id: str = Field(..., alias="ProgramID")
    signature_hex: str = Field(..., alias="SignatureHex")
    sig_ix_index: int = Field(0, alias="SigIxIndex", ge=0, le=255)
    ed25519_public_key: str = Field(..., alias="Ed25519PublicKey")
    ed25519_message: str = Field(..., alias="Ed25519Message")
    user_id: str = Field("", alias="UserID")
    expiry: Optional[int] = Field(None, alias="Expiry")

    def public_key_bytes(self) -> bytes:
        return _hex_bytes(self.ed25519_public_key, "Ed25519PublicKey", 32)

    def message_bytes(self) -> bytes:
        return _hex_bytes(self.ed25519_message, "Ed25519Message")

    def signature_bytes(self) -> bytes:
        return _hex_bytes(self.signature_hex, "SignatureHex", 64)

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expiry is None:
            return False
        return (now if now is not None else time.time()) >= self.expiry
