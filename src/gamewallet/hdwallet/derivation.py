"""Hierarchical deterministic key derivation for the two supported networks.

EVM:    m/44'/60'/0'/0/0   BIP-32 over secp256k1, 0x... checksum address
Solana: m/44'/501'/0'/0'   SLIP-10 over ed25519 (hardened only), base58 pubkey

The paths are module constants; callers pick a Network, never a free-form
path string, so an EVM key can not be derived on the Solana branch or the
other way round.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import base58
from bip_utils import Bip32Secp256k1, Bip32Slip10Ed25519
from eth_keys import keys
from eth_keys.exceptions import ValidationError
from nacl.signing import SigningKey

from gamewallet.errors import CryptoError, InputError, SigningError
from gamewallet.hdwallet.mnemonic import to_seed_bytes

logger = logging.getLogger(__name__)

HARDENED_OFFSET = 0x80000000

MIN_SEED_BYTES = 16
MAX_SEED_BYTES = 64


class Network(str, Enum):
    """Supported chain families."""
    EVM = "evm"
    SOLANA = "solana"


@dataclass(frozen=True)
class DerivationPath:
    """Ordered (index, hardened) levels below the master key."""

    levels: tuple[tuple[int, bool], ...]

    @classmethod
    def parse(cls, path: str) -> "DerivationPath":
        """Parse "m/44'/60'/0'/0/0" style notation."""
        parts = path.strip().split("/")
        if not parts or parts[0] != "m":
            raise CryptoError(f"Derivation path must start with 'm': {path}")

        levels = []
        for part in parts[1:]:
            hardened = part.endswith("'") or part.endswith("h")
            digits = part.rstrip("'h")
            if not digits.isdigit():
                raise CryptoError(f"Bad derivation level '{part}' in {path}")
            levels.append((int(digits), hardened))
        return cls(tuple(levels))

    @property
    def coin_type(self) -> Optional[int]:
        if len(self.levels) < 2:
            return None
        return self.levels[1][0]

    def __str__(self) -> str:
        return "m" + "".join(
            f"/{index}'" if hardened else f"/{index}" for index, hardened in self.levels
        )


EVM_PATH = DerivationPath.parse("m/44'/60'/0'/0/0")
SOLANA_PATH = DerivationPath.parse("m/44'/501'/0'/0'")

COIN_TYPES = {
    Network.EVM: 60,
    Network.SOLANA: 501,
}


def path_for(network: Network) -> DerivationPath:
    """Preset derivation path for a network."""
    return EVM_PATH if Network(network) is Network.EVM else SOLANA_PATH


class KeyMaterial:
    """An unlocked private key and its public identity.

    The private key lives in a bytearray so zero() can overwrite it in place.
    Once zeroed, reading private_key raises SigningError instead of handing
    out a blank key.
    """

    def __init__(
        self,
        network: Network,
        private_key: bytes,
        public_key: bytes,
        address: str,
        derivation_path: Optional[DerivationPath] = None,
    ):
        self.network = Network(network)
        self.public_key = bytes(public_key)
        self.address = address
        self.derivation_path = derivation_path
        self._private_key = bytearray(private_key)
        self._zeroed = False

    @property
    def private_key(self) -> bytes:
        if self._zeroed:
            raise SigningError("Wallet is locked")
        return bytes(self._private_key)

    @property
    def is_zeroed(self) -> bool:
        return self._zeroed

    def zero(self) -> None:
        """Overwrite the private key bytes."""
        for i in range(len(self._private_key)):
            self._private_key[i] = 0
        self._zeroed = True

    def solana_secret_key(self) -> bytes:
        """64-byte secret||public form used by Solana wallets."""
        if self.network is not Network.SOLANA:
            raise CryptoError("Not a Solana key")
        return self.private_key + self.public_key

    def __eq__(self, other) -> bool:
        if not isinstance(other, KeyMaterial):
            return NotImplemented
        return (
            self.network is other.network
            and self.address == other.address
            and bytes(self._private_key) == bytes(other._private_key)
        )

    def __repr__(self) -> str:
        state = "zeroed" if self._zeroed else "unlocked"
        return f"KeyMaterial(network={self.network.value}, address={self.address}, {state})"

    __str__ = __repr__


def evm_address(public_key: bytes) -> str:
    """Checksum address of a 64-byte (or 65-byte 0x04 prefixed) secp256k1 key."""
    if len(public_key) == 65 and public_key[0] == 4:
        public_key = public_key[1:]
    return keys.PublicKey(public_key).to_checksum_address()


def solana_address(public_key: bytes) -> str:
    """Base58 of a raw 32-byte ed25519 public key."""
    if len(public_key) != 32:
        raise CryptoError(f"Solana public key must be 32 bytes, got {len(public_key)}")
    return base58.b58encode(public_key).decode()


def key_from_private_key(
    raw: bytes,
    network: Network,
    derivation_path: Optional[DerivationPath] = None,
) -> KeyMaterial:
    """Build KeyMaterial from raw private key bytes.

    EVM takes 32 bytes. Solana takes a 32-byte seed or the 64-byte
    secret||public form, whose public half must match.

    Raises:
        InputError: If the key has the wrong length or is out of range
    """
    network = Network(network)

    if network is Network.EVM:
        if len(raw) != 32:
            raise InputError("EVM private key must be 32 bytes")
        if not any(raw):
            raise InputError("EVM private key is out of range")
        try:
            private_key = keys.PrivateKey(raw)
        except ValidationError:
            raise InputError("EVM private key is out of range")
        public_key = private_key.public_key.to_bytes()
        return KeyMaterial(
            network,
            raw,
            public_key,
            private_key.public_key.to_checksum_address(),
            derivation_path,
        )

    if len(raw) not in (32, 64):
        raise InputError("Solana private key must be 32 or 64 bytes")

    secret = raw[:32]
    verify_key = bytes(SigningKey(secret).verify_key)
    if len(raw) == 64 and raw[32:] != verify_key:
        raise InputError("Solana keypair public half does not match secret")

    return KeyMaterial(network, secret, verify_key, solana_address(verify_key), derivation_path)


def derive(seed_bytes: bytes, path: DerivationPath, network: Network) -> KeyMaterial:
    """Walk a derivation path from a BIP-39 seed.

    Raises:
        CryptoError: On a malformed seed, an out-of-range index, a
            non-hardened ed25519 level or a path from another network
    """
    network = Network(network)

    if not MIN_SEED_BYTES <= len(seed_bytes) <= MAX_SEED_BYTES:
        raise CryptoError(f"Seed must be {MIN_SEED_BYTES}-{MAX_SEED_BYTES} bytes, got {len(seed_bytes)}")

    if path.coin_type != COIN_TYPES[network]:
        raise CryptoError(f"Path {path} does not belong to network {network.value}")

    if network is Network.EVM:
        ctx = Bip32Secp256k1.FromSeed(seed_bytes)
    else:
        ctx = Bip32Slip10Ed25519.FromSeed(seed_bytes)

    for index, hardened in path.levels:
        if not 0 <= index < HARDENED_OFFSET:
            raise CryptoError(f"Derivation index {index} out of range")
        if network is Network.SOLANA and not hardened:
            raise CryptoError("ed25519 derivation supports hardened levels only")
        ctx = ctx.ChildKey(index + HARDENED_OFFSET if hardened else index)

    raw = ctx.PrivateKey().Raw().ToBytes()
    key = key_from_private_key(raw, network, path)
    logger.debug(f"Derived {network.value} key at {path}")
    return key


def derive_from_mnemonic(phrase: str, network: Network, passphrase: str = "") -> KeyMaterial:
    """Seed phrase -> preset path for the network -> KeyMaterial."""
    network = Network(network)
    seed = to_seed_bytes(phrase, passphrase)
    return derive(seed, path_for(network), network)
