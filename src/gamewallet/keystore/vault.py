"""Password-encrypted keystore envelopes.

Version 2 (written): scrypt -> AES-256-GCM, cleartext fields bound as
associated data so editing the address or network breaks the tag.

Version 1 (read only): PBKDF2-HMAC-SHA256 (100k) -> Fernet. Kept so older
keystores open; upgrade() rewrites them as version 2.

A wrong password, a corrupted ciphertext and an unknown version all surface
as AuthError. Plaintext key bytes are never written to a store or a log.
"""

import base64
import hashlib
import json
import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from gamewallet.errors import AuthError, CryptoError, InputError
from gamewallet.hdwallet.derivation import KeyMaterial, Network, key_from_private_key
from gamewallet.keystore.storage import KeyValueStore
from gamewallet.utils.display import display_address

logger = logging.getLogger(__name__)

CURRENT_VERSION = 2
SUPPORTED_VERSIONS = (1, 2)

SALT_BYTES = 16
NONCE_BYTES = 12
KEY_BYTES = 32

PBKDF2_ITERATIONS = 100000

DEFAULT_SCRYPT = {"n": 2**15, "r": 8, "p": 1}


@dataclass
class EncryptedKeystore:
    """Persisted envelope. Binary fields are hex strings."""

    version: int
    kdf: str
    kdf_params: dict
    cipher: str
    salt: str
    nonce: str
    ciphertext: str
    address: str
    network: str
    has_mnemonic: bool = False

    def to_bytes(self) -> bytes:
        return json.dumps(asdict(self), sort_keys=True).encode()

    @classmethod
    def from_bytes(cls, data: bytes) -> "EncryptedKeystore":
        """Parse a stored envelope.

        Raises:
            AuthError: If the document is not a keystore
        """
        try:
            raw = json.loads(data)
            return cls(
                version=int(raw["version"]),
                kdf=raw["kdf"],
                kdf_params=dict(raw.get("kdf_params") or {}),
                cipher=raw["cipher"],
                salt=raw["salt"],
                nonce=raw.get("nonce", ""),
                ciphertext=raw["ciphertext"],
                address=raw["address"],
                network=raw["network"],
                has_mnemonic=bool(raw.get("has_mnemonic", False)),
            )
        except (ValueError, KeyError, TypeError):
            raise AuthError("Keystore is corrupt")

    def associated_data(self) -> bytes:
        return f"{self.version}|{self.network}|{self.address}".encode()


@dataclass
class UnlockedSecrets:
    """Everything a keystore protects."""

    key: KeyMaterial
    mnemonic: Optional[str] = field(default=None, repr=False)


def _scrypt_key(password: str, salt: bytes, params: dict) -> bytes:
    kdf = Scrypt(salt=salt, length=KEY_BYTES, n=params["n"], r=params["r"], p=params["p"])
    return kdf.derive(password.encode())


def derive_fernet_key(password: str, salt: bytes, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """Derive a Fernet key from a password using PBKDF2 (version 1 envelopes)."""
    key = hashlib.pbkdf2_hmac(
        "sha256",
        password.encode(),
        salt,
        iterations,
        dklen=KEY_BYTES,
    )
    return base64.urlsafe_b64encode(key)


def _plaintext(key: KeyMaterial, mnemonic: Optional[str]) -> bytes:
    payload = {"private_key": key.private_key.hex()}
    if mnemonic:
        payload["mnemonic"] = mnemonic
    return json.dumps(payload).encode()


class KeyVault:
    """Encrypts key material under a password and hands bytes to a store.

    Usage:
        vault = KeyVault(MemoryStore())
        store = vault.encrypt(key, "hunter22")
        vault.persist("user-1", store)
        key = vault.decrypt(vault.load("user-1"), "hunter22")
    """

    def __init__(
        self,
        storage: Optional[KeyValueStore] = None,
        scrypt_params: Optional[dict] = None,
        min_password_length: int = 6,
    ):
        self.storage = storage
        self.scrypt_params = dict(scrypt_params or DEFAULT_SCRYPT)
        self.min_password_length = min_password_length

    def check_password(self, password: str) -> None:
        """Raises InputError for passwords too short to accept on create/import."""
        if not isinstance(password, str) or len(password) < self.min_password_length:
            raise InputError(f"Password must be at least {self.min_password_length} characters")

    # ======================
    # Envelope
    # ======================

    def encrypt(
        self,
        key: KeyMaterial,
        password: str,
        mnemonic: Optional[str] = None,
    ) -> EncryptedKeystore:
        """Encrypt key material (and optionally its seed phrase) as a v2 envelope."""
        self.check_password(password)

        salt = os.urandom(SALT_BYTES)
        nonce = os.urandom(NONCE_BYTES)
        store = EncryptedKeystore(
            version=CURRENT_VERSION,
            kdf="scrypt",
            kdf_params=dict(self.scrypt_params),
            cipher="aes-256-gcm",
            salt=salt.hex(),
            nonce=nonce.hex(),
            ciphertext="",
            address=key.address,
            network=key.network.value,
            has_mnemonic=bool(mnemonic),
        )

        sym_key = _scrypt_key(password, salt, store.kdf_params)
        ciphertext = AESGCM(sym_key).encrypt(nonce, _plaintext(key, mnemonic), store.associated_data())
        store.ciphertext = ciphertext.hex()

        logger.info(f"Encrypted {store.network} keystore for {display_address(key.address)}")
        return store

    def encrypt_v1(self, key: KeyMaterial, password: str, mnemonic: Optional[str] = None) -> EncryptedKeystore:
        """Write the legacy PBKDF2/Fernet envelope."""
        salt = os.urandom(SALT_BYTES)
        token = Fernet(derive_fernet_key(password, salt)).encrypt(_plaintext(key, mnemonic))
        return EncryptedKeystore(
            version=1,
            kdf="pbkdf2-sha256",
            kdf_params={"iterations": PBKDF2_ITERATIONS},
            cipher="fernet",
            salt=salt.hex(),
            nonce="",
            ciphertext=token.hex(),
            address=key.address,
            network=key.network.value,
            has_mnemonic=bool(mnemonic),
        )

    def decrypt_secrets(self, store: EncryptedKeystore, password: str) -> UnlockedSecrets:
        """Open an envelope.

        Raises:
            AuthError: Wrong password, corrupt data or unsupported version
        """
        if store.version not in SUPPORTED_VERSIONS:
            raise AuthError(f"Unsupported keystore version {store.version}")

        try:
            salt = bytes.fromhex(store.salt)
            ciphertext = bytes.fromhex(store.ciphertext)
            network = Network(store.network)
        except ValueError:
            raise AuthError("Keystore is corrupt")

        try:
            if store.version == 1:
                iterations = int(store.kdf_params.get("iterations", PBKDF2_ITERATIONS))
                plaintext = Fernet(derive_fernet_key(password, salt, iterations)).decrypt(ciphertext)
            else:
                nonce = bytes.fromhex(store.nonce)
                sym_key = _scrypt_key(password, salt, store.kdf_params)
                plaintext = AESGCM(sym_key).decrypt(nonce, ciphertext, store.associated_data())
        except (InvalidTag, InvalidToken):
            logger.warning(f"Keystore decrypt failed for {display_address(store.address)}")
            raise AuthError("Wrong password or corrupt keystore")
        except (ValueError, KeyError, TypeError):
            raise AuthError("Keystore is corrupt")

        try:
            payload = json.loads(plaintext)
            raw = bytes.fromhex(payload["private_key"])
            key = key_from_private_key(raw, network)
        except (ValueError, KeyError, TypeError, InputError):
            raise AuthError("Keystore is corrupt")

        if key.address != store.address:
            key.zero()
            raise AuthError("Keystore address does not match its key")

        return UnlockedSecrets(key=key, mnemonic=payload.get("mnemonic"))

    def decrypt(self, store: EncryptedKeystore, password: str) -> KeyMaterial:
        """Open an envelope and return only the key."""
        return self.decrypt_secrets(store, password).key

    def upgrade(self, store: EncryptedKeystore, password: str) -> EncryptedKeystore:
        """Re-encrypt an older envelope at the current version."""
        if store.version == CURRENT_VERSION:
            return store
        secrets = self.decrypt_secrets(store, password)
        try:
            upgraded = self.encrypt(secrets.key, password, secrets.mnemonic)
        finally:
            secrets.key.zero()
        logger.info(f"Upgraded keystore for {display_address(store.address)} from v{store.version}")
        return upgraded

    # ======================
    # Persistence
    # ======================

    def _require_storage(self) -> KeyValueStore:
        if self.storage is None:
            raise CryptoError("KeyVault has no storage collaborator")
        return self.storage

    def persist(self, key: str, store: EncryptedKeystore) -> None:
        self._require_storage().write(key, store.to_bytes())

    def load(self, key: str) -> Optional[EncryptedKeystore]:
        data = self._require_storage().read(key)
        if data is None:
            return None
        return EncryptedKeystore.from_bytes(data)

    def exists(self, key: str) -> bool:
        return self._require_storage().exists(key)

    def delete(self, key: str) -> bool:
        return self._require_storage().delete(key)
