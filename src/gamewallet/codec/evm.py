"""EVM call data and legacy (EIP-155) transaction encoding.

Call data is a 4-byte keccak selector followed by 32-byte ABI words.
Static arguments (address, uintN, bool) sit in the head; string/bytes
arguments get a head offset and a length-prefixed, right-padded tail.

Transactions are RLP lists:
    signing payload: [nonce, gasPrice, gas, to, value, data, chainId, 0, 0]
    signed:          [nonce, gasPrice, gas, to, value, data, v, r, s]
"""

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional, Union

import rlp
from eth_utils import keccak, to_canonical_address, to_checksum_address

from gamewallet.errors import InputError

logger = logging.getLogger(__name__)

WORD = 32

MAX_UINT256 = 2**256 - 1

WEI_PER_GWEI = 10**9

# Gas limits used for each call type
GAS_LIMIT_NATIVE_TRANSFER = 21000
GAS_LIMIT_APPROVE = 50000
GAS_LIMIT_DEPOSIT = 90000
GAS_LIMIT_TRANSFER = 100000
GAS_LIMIT_NFT_TRANSFER = 100000
GAS_LIMIT_WITHDRAW = 150000

# Canonical signatures
TRANSFER = "transfer(address,uint256)"
APPROVE = "approve(address,uint256)"
ALLOWANCE = "allowance(address,address)"
BALANCE_OF = "balanceOf(address)"
ERC1155_BALANCE_OF = "balanceOf(address,uint256)"
SAFE_TRANSFER_FROM = "safeTransferFrom(address,address,uint256,uint256,bytes)"
DEPOSIT_ERC20 = "depositERC20(address,uint256,string)"
WITHDRAW_ERC20 = "withdrawERC20(address,address,uint256,uint256,bytes)"
WITHDRAW_ERC20_V2 = "withdrawERC20(address,address,uint256,uint256,bytes,string)"
WITHDRAW_ERC1155 = "withdrawERC1155(address,address,uint256,uint256,uint256,bytes)"
WITHDRAW_ERC1155_V2 = "withdrawERC1155(address,address,uint256,uint256,uint256,bytes,string)"

DYNAMIC_TYPES = ("bytes", "string")


def function_selector(signature: str) -> bytes:
    """First 4 bytes of keccak256 of the canonical signature."""
    return keccak(text=signature)[:4]


def parse_signature(signature: str) -> list[str]:
    """Argument types from "name(type1,type2)"."""
    if "(" not in signature or not signature.endswith(")"):
        raise InputError(f"Malformed function signature: {signature}")
    inner = signature[signature.index("(") + 1:-1]
    return [t.strip() for t in inner.split(",")] if inner else []


def normalize_address(address: str) -> str:
    """Checksum an address, raising InputError when it is not 20 bytes of hex."""
    try:
        return to_checksum_address(address)
    except (ValueError, TypeError):
        raise InputError(f"Invalid EVM address: {address}")


def address_bytes(address: str) -> bytes:
    try:
        return to_canonical_address(address)
    except (ValueError, TypeError):
        raise InputError(f"Invalid EVM address: {address}")


def encode_address(address: str) -> bytes:
    """Address left padded to one word."""
    return address_bytes(address).rjust(WORD, b"\x00")


def encode_uint(value: int, bits: int = 256) -> bytes:
    """Big-endian unsigned integer left padded to one word."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise InputError(f"uint{bits} expects an int, got {type(value).__name__}")
    if not 0 <= value < 2**bits:
        raise InputError(f"Value out of range for uint{bits}")
    return value.to_bytes(WORD, "big")


def encode_bool(value: bool) -> bytes:
    return encode_uint(1 if value else 0)


def _pad_right(data: bytes) -> bytes:
    remainder = len(data) % WORD
    if remainder:
        data += b"\x00" * (WORD - remainder)
    return data


def _encode_dynamic(value: Union[bytes, str]) -> bytes:
    if isinstance(value, str):
        value = value.encode("utf-8")
    if not isinstance(value, (bytes, bytearray)):
        raise InputError("bytes/string argument must be bytes or str")
    return encode_uint(len(value)) + _pad_right(bytes(value))


def _encode_static(abi_type: str, value) -> bytes:
    if abi_type == "address":
        return encode_address(value)
    if abi_type == "bool":
        return encode_bool(value)
    if abi_type.startswith("uint"):
        bits = int(abi_type[4:] or 256)
        return encode_uint(value, bits)
    raise InputError(f"Unsupported ABI type: {abi_type}")


def encode_arguments(types: list[str], values: list) -> bytes:
    """ABI-encode a flat argument list (head words then dynamic tails)."""
    if len(types) != len(values):
        raise InputError(f"Expected {len(types)} arguments, got {len(values)}")

    head_size = WORD * len(types)
    heads = []
    tails = b""

    for abi_type, value in zip(types, values):
        if abi_type in DYNAMIC_TYPES:
            heads.append(encode_uint(head_size + len(tails)))
            tails += _encode_dynamic(value)
        else:
            heads.append(_encode_static(abi_type, value))

    return b"".join(heads) + tails


def encode_call(signature: str, *args) -> bytes:
    """Selector plus encoded arguments for a function signature."""
    return function_selector(signature) + encode_arguments(parse_signature(signature), list(args))


def decode_uint(result: Union[str, bytes]) -> int:
    """Decode the first word of an eth_call result."""
    if isinstance(result, str):
        hex_part = result[2:] if result.startswith("0x") else result
        if not hex_part:
            return 0
        result = bytes.fromhex(hex_part)
    return int.from_bytes(result[:WORD], "big")


# ======================
# Call builders
# ======================

def erc20_transfer(to: str, amount: int) -> bytes:
    return encode_call(TRANSFER, to, amount)


def erc20_approve(spender: str, amount: int) -> bytes:
    return encode_call(APPROVE, spender, amount)


def erc20_allowance(owner: str, spender: str) -> bytes:
    return encode_call(ALLOWANCE, owner, spender)


def erc20_balance_of(owner: str) -> bytes:
    return encode_call(BALANCE_OF, owner)


def erc1155_balance_of(owner: str, token_id: int) -> bytes:
    return encode_call(ERC1155_BALANCE_OF, owner, token_id)


def erc1155_safe_transfer_from(sender: str, to: str, token_id: int, amount: int, data: bytes = b"") -> bytes:
    return encode_call(SAFE_TRANSFER_FROM, sender, to, token_id, amount, data)


def pool_deposit_erc20(token: str, amount: int, user_id: str) -> bytes:
    return encode_call(DEPOSIT_ERC20, token, amount, user_id)


def pool_withdraw_erc20(
    token: str,
    to: str,
    amount: int,
    nonce: int,
    signature: bytes,
    user_id: Optional[str] = None,
) -> bytes:
    """withdrawERC20, with the userID argument when user_id is given."""
    if user_id is None:
        return encode_call(WITHDRAW_ERC20, token, to, amount, nonce, signature)
    return encode_call(WITHDRAW_ERC20_V2, token, to, amount, nonce, signature, user_id)


def pool_withdraw_erc1155(
    token: str,
    to: str,
    token_id: int,
    amount: int,
    nonce: int,
    signature: bytes,
    user_id: Optional[str] = None,
) -> bytes:
    """withdrawERC1155, with the userID argument when user_id is given."""
    if user_id is None:
        return encode_call(WITHDRAW_ERC1155, token, to, token_id, amount, nonce, signature)
    return encode_call(WITHDRAW_ERC1155_V2, token, to, token_id, amount, nonce, signature, user_id)


# ======================
# Gas price
# ======================

def gwei_to_wei(gwei: Union[int, float, str, Decimal]) -> int:
    """Convert a caller-supplied gwei value into wei.

    Raises:
        InputError: Negative, non-numeric, or finer than 1 wei
    """
    try:
        value = Decimal(str(gwei)) * WEI_PER_GWEI
    except InvalidOperation:
        raise InputError(f"Invalid gas price: {gwei}")

    if not value.is_finite() or value < 0:
        raise InputError(f"Invalid gas price: {gwei}")
    if value != value.to_integral_value():
        raise InputError(f"Gas price {gwei} gwei is not a whole number of wei")
    return int(value)


def check_gas_price(gas_price_wei: int, network_gas_price_wei: int) -> bool:
    """Warn when the chosen gas price is below what the node suggests.

    Returns True if the price looks stale. Never raises; repricing is the
    caller's decision.
    """
    if network_gas_price_wei and gas_price_wei < network_gas_price_wei:
        logger.warning(
            f"Gas price {gas_price_wei / WEI_PER_GWEI:.2f} gwei is below network "
            f"suggestion {network_gas_price_wei / WEI_PER_GWEI:.2f} gwei; "
            f"transaction may be slow to confirm"
        )
        return True
    return False


# ======================
# RLP
# ======================

def _to_field(to: str) -> bytes:
    return address_bytes(to) if to else b""


def signing_payload(tx) -> bytes:
    """EIP-155 payload whose keccak is signed."""
    return rlp.encode([
        tx.nonce,
        tx.gas_price,
        tx.gas_limit,
        _to_field(tx.to),
        tx.value,
        tx.data,
        tx.chain_id,
        0,
        0,
    ])


def signing_hash(tx) -> bytes:
    return keccak(signing_payload(tx))


def serialize_signed(tx, v: int, r: int, s: int) -> bytes:
    """Raw transaction bytes ready for eth_sendRawTransaction."""
    return rlp.encode([
        tx.nonce,
        tx.gas_price,
        tx.gas_limit,
        _to_field(tx.to),
        tx.value,
        tx.data,
        v,
        r,
        s,
    ])


def transaction_hash(raw: bytes) -> str:
    return "0x" + keccak(raw).hex()


def eip155_v(recovery_id: int, chain_id: int) -> int:
    """Fold the recovery id into v for replay protection."""
    return recovery_id + 35 + 2 * chain_id


def recovery_id_from_v(v: int, chain_id: int) -> int:
    if v in (27, 28):
        return v - 27
    return v - 35 - 2 * chain_id
