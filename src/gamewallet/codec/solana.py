"""Solana instruction encoding.

- Anchor discriminators: sha256("global:" + method)[:8]
- Borsh arguments: little-endian ints, u32 length-prefixed bytes/strings
- Program derived addresses: bump searched from 255 down until the
  sha256 candidate is off the ed25519 curve
- Ed25519SigVerify instruction carrying a backend authorization
- Game pool deposit/withdraw instructions and the SPL helpers they need
"""

import hashlib
import logging
import struct
from typing import Sequence, Union

import base58
from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.message import Message
from solders.pubkey import Pubkey

from gamewallet.errors import CryptoError, InputError

logger = logging.getLogger(__name__)

SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
SYSVAR_INSTRUCTIONS_ID = Pubkey.from_string("Sysvar1nstructions1111111111111111111111111")
ED25519_PROGRAM_ID = Pubkey.from_string("Ed25519SigVerify111111111111111111111111111")
TOKEN_METADATA_PROGRAM_ID = Pubkey.from_string("metaqbxxUerdq28cj1RbAWkYQm3ybzjb6a8bt518x1s")

PDA_MARKER = b"ProgramDerivedAddress"
MAX_SEED_LEN = 32
MAX_SEEDS = 16

LAMPORTS_PER_SIGNATURE = 5000

# Pool program account seeds
CONFIG_SEED = b"config"
VAULT_SEED = b"vault"
NONCE_SEED = b"nonce"

# Ed25519 instruction layout
ED25519_HEADER_LEN = 16
ED25519_SIGNATURE_LEN = 64
ED25519_PUBKEY_LEN = 32

# SPL token instruction tags
SPL_TRANSFER_CHECKED = 12
ATA_CREATE_IDEMPOTENT = 1
SYSTEM_TRANSFER = 2

PubkeyLike = Union[Pubkey, str, bytes]


def to_pubkey(value: PubkeyLike) -> Pubkey:
    """Accept a Pubkey, base58 string or 32 raw bytes."""
    if isinstance(value, Pubkey):
        return value
    if isinstance(value, str):
        try:
            value = base58.b58decode(value)
        except ValueError:
            raise InputError(f"Invalid Solana public key: {value!r}")
    if isinstance(value, (bytes, bytearray)) and len(value) == 32:
        return Pubkey(bytes(value))
    raise InputError(f"Invalid Solana public key: {value!r}")


def discriminator(method_name: str) -> bytes:
    """Anchor instruction discriminator for a program method."""
    return hashlib.sha256(f"global:{method_name}".encode()).digest()[:8]


class BorshWriter:
    """Append-only Borsh encoder.

    Example:
        data = BorshWriter().raw(discriminator("deposit_spl")).u64(amount).string(uid).to_bytes()
    """

    def __init__(self):
        self._buf = bytearray()

    def _int(self, fmt: str, value: int, bits: int, signed: bool = False) -> "BorshWriter":
        if isinstance(value, bool) or not isinstance(value, int):
            raise InputError(f"Expected int, got {type(value).__name__}")
        low, high = (-(2 ** (bits - 1)), 2 ** (bits - 1)) if signed else (0, 2**bits)
        if not low <= value < high:
            raise InputError(f"Value {value} out of range for {'i' if signed else 'u'}{bits}")
        self._buf += struct.pack(fmt, value)
        return self

    def u8(self, value: int) -> "BorshWriter":
        return self._int("<B", value, 8)

    def u16(self, value: int) -> "BorshWriter":
        return self._int("<H", value, 16)

    def u32(self, value: int) -> "BorshWriter":
        return self._int("<I", value, 32)

    def u64(self, value: int) -> "BorshWriter":
        return self._int("<Q", value, 64)

    def i64(self, value: int) -> "BorshWriter":
        return self._int("<q", value, 64, signed=True)

    def boolean(self, value: bool) -> "BorshWriter":
        self._buf.append(1 if value else 0)
        return self

    def raw(self, data: bytes) -> "BorshWriter":
        self._buf += data
        return self

    def byte_vec(self, data: bytes) -> "BorshWriter":
        self.u32(len(data))
        self._buf += data
        return self

    def string(self, value: str) -> "BorshWriter":
        return self.byte_vec(value.encode("utf-8"))

    def pubkey(self, value: PubkeyLike) -> "BorshWriter":
        self._buf += bytes(to_pubkey(value))
        return self

    def to_bytes(self) -> bytes:
        return bytes(self._buf)


# ======================
# Program derived addresses
# ======================

def create_program_address(seeds: Sequence[bytes], program_id: PubkeyLike) -> Pubkey:
    """Hash seeds into an address, rejecting results on the ed25519 curve.

    Raises:
        InputError: Too many seeds or a seed longer than 32 bytes
        CryptoError: The candidate is a valid curve point
    """
    if len(seeds) > MAX_SEEDS:
        raise InputError(f"At most {MAX_SEEDS} seeds are allowed")

    hasher = hashlib.sha256()
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise InputError(f"Seed longer than {MAX_SEED_LEN} bytes")
        hasher.update(seed)
    hasher.update(bytes(to_pubkey(program_id)))
    hasher.update(PDA_MARKER)

    candidate = Pubkey(hasher.digest())
    if candidate.is_on_curve():
        raise CryptoError("Derived address is on curve")
    return candidate


def find_program_address(seeds: Sequence[bytes], program_id: PubkeyLike) -> tuple[Pubkey, int]:
    """Search bumps 255..0 for the first off-curve address.

    Returns:
        (address, bump)

    Raises:
        CryptoError: No bump produced an off-curve address
    """
    if len(seeds) > MAX_SEEDS - 1:
        raise InputError(f"At most {MAX_SEEDS - 1} seeds are allowed before the bump")
    for seed in seeds:
        if len(seed) > MAX_SEED_LEN:
            raise InputError(f"Seed longer than {MAX_SEED_LEN} bytes")

    for bump in range(255, -1, -1):
        try:
            return create_program_address([*seeds, bytes([bump])], program_id), bump
        except CryptoError:
            continue

    raise CryptoError("Unable to find a viable program address bump")


def associated_token_address(
    wallet: PubkeyLike,
    mint: PubkeyLike,
    token_program: PubkeyLike = TOKEN_PROGRAM_ID,
) -> Pubkey:
    """Associated token account of wallet for mint."""
    address, _ = find_program_address(
        [bytes(to_pubkey(wallet)), bytes(to_pubkey(token_program)), bytes(to_pubkey(mint))],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def metadata_address(mint: PubkeyLike) -> Pubkey:
    """Token metadata account for an NFT mint."""
    address, _ = find_program_address(
        [b"metadata", bytes(TOKEN_METADATA_PROGRAM_ID), bytes(to_pubkey(mint))],
        TOKEN_METADATA_PROGRAM_ID,
    )
    return address


def pool_config_address(program_id: PubkeyLike) -> Pubkey:
    return find_program_address([CONFIG_SEED], program_id)[0]


def pool_vault_address(program_id: PubkeyLike) -> Pubkey:
    return find_program_address([VAULT_SEED], program_id)[0]


def nonce_marker_address(program_id: PubkeyLike, nonce: int) -> Pubkey:
    """Account the program creates to burn a withdrawal nonce."""
    return find_program_address([NONCE_SEED, struct.pack("<Q", nonce)], program_id)[0]


# ======================
# Instructions
# ======================

def ed25519_verify_instruction(
    public_key: bytes,
    message: bytes,
    signature: bytes,
    instruction_index: int = 0,
) -> Instruction:
    """Ed25519SigVerify instruction with signature, key and message inline.

    Offsets point into this instruction's own data, so instruction_index
    must be the position the instruction will occupy in the transaction.
    """
    if len(public_key) != ED25519_PUBKEY_LEN:
        raise InputError("Ed25519 public key must be 32 bytes")
    if len(signature) != ED25519_SIGNATURE_LEN:
        raise InputError("Ed25519 signature must be 64 bytes")
    if len(message) > 0xFFFF:
        raise InputError("Ed25519 message too long")
    if not 0 <= instruction_index <= 0xFF:
        raise InputError(f"Instruction index {instruction_index} out of range")

    sig_offset = ED25519_HEADER_LEN
    pk_offset = sig_offset + ED25519_SIGNATURE_LEN
    msg_offset = pk_offset + ED25519_PUBKEY_LEN

    header = struct.pack(
        "<BBHHHHHHH",
        1,  # signature count
        0,  # padding
        sig_offset,
        instruction_index,
        pk_offset,
        instruction_index,
        msg_offset,
        len(message),
        instruction_index,
    )
    data = header + signature + public_key + message
    return Instruction(ED25519_PROGRAM_ID, data, [])


def deposit_spl_instruction(
    program_id: PubkeyLike,
    user: PubkeyLike,
    mint: PubkeyLike,
    amount: int,
    user_id: str,
) -> Instruction:
    """Pool deposit_spl(amount: u64, user_id: string)."""
    program_id = to_pubkey(program_id)
    user = to_pubkey(user)
    mint = to_pubkey(mint)

    vault = pool_vault_address(program_id)
    data = (
        BorshWriter()
        .raw(discriminator("deposit_spl"))
        .u64(amount)
        .string(user_id)
        .to_bytes()
    )
    accounts = [
        AccountMeta(pool_config_address(program_id), is_signer=False, is_writable=False),
        AccountMeta(vault, is_signer=False, is_writable=True),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(user, is_signer=True, is_writable=False),
        AccountMeta(associated_token_address(user, mint), is_signer=False, is_writable=True),
        AccountMeta(associated_token_address(vault, mint), is_signer=False, is_writable=True),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id, data, accounts)


def withdraw_spl_instruction(
    program_id: PubkeyLike,
    payer: PubkeyLike,
    mint: PubkeyLike,
    to: PubkeyLike,
    amount: int,
    nonce: int,
    user_id: str,
    sig_ix_index: int,
) -> Instruction:
    """Pool withdraw_spl(amount: u64, nonce: u64, user_id: string, sig_ix_index: u8)."""
    program_id = to_pubkey(program_id)
    payer = to_pubkey(payer)
    mint = to_pubkey(mint)
    to = to_pubkey(to)

    vault = pool_vault_address(program_id)
    data = (
        BorshWriter()
        .raw(discriminator("withdraw_spl"))
        .u64(amount)
        .u64(nonce)
        .string(user_id)
        .u8(sig_ix_index)
        .to_bytes()
    )
    accounts = [
        AccountMeta(pool_config_address(program_id), is_signer=False, is_writable=False),
        AccountMeta(payer, is_signer=True, is_writable=False),
        AccountMeta(vault, is_signer=False, is_writable=False),
        AccountMeta(nonce_marker_address(program_id, nonce), is_signer=False, is_writable=True),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(to, is_signer=False, is_writable=False),
        AccountMeta(associated_token_address(vault, mint), is_signer=False, is_writable=True),
        AccountMeta(associated_token_address(to, mint), is_signer=False, is_writable=True),
        AccountMeta(SYSVAR_INSTRUCTIONS_ID, is_signer=False, is_writable=False),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(ASSOCIATED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id, data, accounts)


def create_ata_idempotent_instruction(
    payer: PubkeyLike,
    owner: PubkeyLike,
    mint: PubkeyLike,
) -> Instruction:
    """Create owner's token account for mint unless it already exists."""
    payer = to_pubkey(payer)
    owner = to_pubkey(owner)
    mint = to_pubkey(mint)
    accounts = [
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(associated_token_address(owner, mint), is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=False, is_writable=False),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(ASSOCIATED_TOKEN_PROGRAM_ID, bytes([ATA_CREATE_IDEMPOTENT]), accounts)


def transfer_spl_instruction(
    owner: PubkeyLike,
    mint: PubkeyLike,
    to: PubkeyLike,
    amount: int,
    decimals: int,
) -> Instruction:
    """SPL TransferChecked between the owner's and recipient's token accounts."""
    owner = to_pubkey(owner)
    mint = to_pubkey(mint)
    to = to_pubkey(to)
    data = BorshWriter().u8(SPL_TRANSFER_CHECKED).u64(amount).u8(decimals).to_bytes()
    accounts = [
        AccountMeta(associated_token_address(owner, mint), is_signer=False, is_writable=True),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(associated_token_address(to, mint), is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=True, is_writable=False),
    ]
    return Instruction(TOKEN_PROGRAM_ID, data, accounts)


def transfer_sol_instruction(sender: PubkeyLike, to: PubkeyLike, lamports: int) -> Instruction:
    """System program transfer."""
    data = BorshWriter().u32(SYSTEM_TRANSFER).u64(lamports).to_bytes()
    accounts = [
        AccountMeta(to_pubkey(sender), is_signer=True, is_writable=True),
        AccountMeta(to_pubkey(to), is_signer=False, is_writable=True),
    ]
    return Instruction(SYSTEM_PROGRAM_ID, data, accounts)


# ======================
# Messages
# ======================

def compile_message(
    instructions: Sequence[Instruction],
    payer: PubkeyLike,
    recent_blockhash: str,
) -> Message:
    """Legacy message with the payer as the single fee-paying signer."""
    if not instructions:
        raise InputError("Transaction needs at least one instruction")
    try:
        raw_hash = base58.b58decode(recent_blockhash)
    except ValueError:
        raise InputError(f"Invalid blockhash: {recent_blockhash}")
    if len(raw_hash) != 32:
        raise InputError(f"Invalid blockhash: {recent_blockhash}")
    blockhash = Hash(raw_hash)
    return Message.new_with_blockhash(list(instructions), to_pubkey(payer), blockhash)


def estimate_fee(num_signatures: int = 1) -> int:
    """Base fee in lamports; priority fees are not included."""
    return num_signatures * LAMPORTS_PER_SIGNATURE
