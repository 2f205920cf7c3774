"""Wallet lifecycle: create, import, login, logout, disconnect.

Keystores are stored per user id through the vault's storage collaborator.
Only the address and network are readable without the password.
"""

import logging
from typing import Optional

import base58

from gamewallet.config import Settings, get_settings
from gamewallet.errors import AuthError, InputError
from gamewallet.hdwallet import mnemonic
from gamewallet.hdwallet.derivation import (
    KeyMaterial,
    Network,
    derive_from_mnemonic,
    key_from_private_key,
)
from gamewallet.keystore.storage import FileStore
from gamewallet.keystore.vault import CURRENT_VERSION, KeyVault
from gamewallet.wallet.session import WalletSession, display_address

logger = logging.getLogger(__name__)


def _decode_hex(value: str) -> Optional[bytes]:
    hex_part = value[2:] if value.lower().startswith("0x") else value
    if len(hex_part) % 2:
        return None
    try:
        return bytes.fromhex(hex_part)
    except ValueError:
        return None


def parse_secret(secret: str, network: Network) -> tuple[KeyMaterial, Optional[str]]:
    """Turn a pasted seed phrase or private key into key material.

    Accepts:
        - 12..24 word BIP-39 phrase
        - EVM: 32-byte hex key, with or without 0x
        - Solana: 32/64-byte key as base58 or hex

    Returns:
        (key, normalized phrase or None)

    Raises:
        InputError: Nothing recognizable
    """
    network = Network(network)
    secret = (secret or "").strip()
    if not secret:
        raise InputError("Seed phrase or private key is required")

    if len(secret.split()) >= 12:
        if not mnemonic.validate(secret):
            raise InputError("Invalid seed phrase")
        phrase = mnemonic.normalize(secret)
        return derive_from_mnemonic(phrase, network), phrase

    raw = _decode_hex(secret)
    if network is Network.EVM:
        if raw is None or len(raw) != 32:
            raise InputError("EVM private key must be 32 bytes of hex")
        return key_from_private_key(raw, network), None

    if raw is None or len(raw) not in (32, 64):
        try:
            raw = base58.b58decode(secret)
        except ValueError:
            raise InputError("Solana private key must be base58 or hex")
    if len(raw) not in (32, 64):
        raise InputError("Solana private key must be 32 or 64 bytes")
    return key_from_private_key(raw, network), None


class WalletManager:
    """Owns the keystore and hands out sessions.

    Only one session per user is unlocked at a time; logging in again
    closes the previous session first.
    """

    def __init__(self, vault: Optional[KeyVault] = None, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        if vault is None:
            vault = KeyVault(
                FileStore(self.settings.keystore_path),
                scrypt_params={
                    "n": self.settings.scrypt_n,
                    "r": self.settings.scrypt_r,
                    "p": self.settings.scrypt_p,
                },
                min_password_length=self.settings.min_password_length,
            )
        self.vault = vault
        self._sessions: dict[str, WalletSession] = {}

    # ======================
    # Sessions
    # ======================

    def _open(self, user_id: str, key: KeyMaterial) -> WalletSession:
        previous = self._sessions.pop(user_id, None)
        if previous is not None:
            previous.close()
        session = WalletSession(user_id, key)
        self._sessions[user_id] = session
        logger.info(f"Wallet unlocked for user {user_id}: {display_address(key.address)}")
        return session

    def active_session(self, user_id: str) -> Optional[WalletSession]:
        session = self._sessions.get(user_id)
        if session is not None and session.is_unlocked:
            return session
        return None

    def logout(self, user_id: str) -> None:
        """Zero the user's key material."""
        session = self._sessions.pop(user_id, None)
        if session is not None:
            session.close()

    def logout_all(self) -> None:
        for user_id in list(self._sessions):
            self.logout(user_id)

    # ======================
    # Lifecycle
    # ======================

    def _store(self, user_id: str, key: KeyMaterial, password: str, phrase: Optional[str]) -> None:
        """Encrypt and persist; the key is zeroed if that fails."""
        try:
            self.vault.persist(user_id, self.vault.encrypt(key, password, mnemonic=phrase))
        except Exception:
            key.zero()
            raise

    def create_wallet(
        self,
        user_id: str,
        password: str,
        network: Network = Network.EVM,
        word_count: int = 12,
    ) -> tuple[WalletSession, str]:
        """Generate a new seed phrase, store it encrypted and unlock it.

        Returns:
            (session, seed phrase) - the phrase must be shown to the user once
        """
        self.vault.check_password(password)
        phrase = mnemonic.generate(word_count)
        key = derive_from_mnemonic(phrase, network)

        self._store(user_id, key, password, phrase)
        logger.info(f"Created {Network(network).value} wallet for user {user_id}")
        return self._open(user_id, key), phrase

    def import_wallet(
        self,
        user_id: str,
        secret: str,
        password: str,
        network: Network = Network.EVM,
    ) -> WalletSession:
        """Import a seed phrase or private key, store it encrypted and unlock it."""
        self.vault.check_password(password)
        key, phrase = parse_secret(secret, network)

        self._store(user_id, key, password, phrase)
        source = "seed phrase" if phrase else "private key"
        logger.info(f"Imported {key.network.value} wallet from {source} for user {user_id}")
        return self._open(user_id, key)

    def login(self, user_id: str, password: str) -> WalletSession:
        """Decrypt the stored keystore.

        Raises:
            InputError: No wallet stored for the user
            AuthError: Wrong password or corrupt keystore
        """
        store = self.vault.load(user_id)
        if store is None:
            raise InputError(f"No wallet stored for user {user_id}")

        unlocked = self.vault.decrypt_secrets(store, password)
        if store.version < CURRENT_VERSION:
            self._store(user_id, unlocked.key, password, unlocked.mnemonic)
            logger.info(f"Upgraded keystore for user {user_id} to v{CURRENT_VERSION}")

        return self._open(user_id, unlocked.key)

    def disconnect(self, user_id: str) -> bool:
        """Log out and delete the stored keystore."""
        self.logout(user_id)
        deleted = self.vault.delete(user_id)
        if deleted:
            logger.info(f"Deleted wallet for user {user_id}")
        return deleted

    # ======================
    # Queries
    # ======================

    def has_stored_wallet(self, user_id: str) -> bool:
        return self.vault.exists(user_id)

    def stored_address(self, user_id: str) -> Optional[str]:
        """Address from the keystore's cleartext fields; no password needed."""
        store = self.vault.load(user_id)
        return store.address if store else None

    def stored_network(self, user_id: str) -> Optional[Network]:
        store = self.vault.load(user_id)
        return Network(store.network) if store else None

    def verify_password(self, user_id: str, password: str) -> bool:
        store = self.vault.load(user_id)
        if store is None:
            return False
        try:
            self.vault.decrypt(store, password).zero()
            return True
        except AuthError:
            return False

    def change_password(self, user_id: str, old_password: str, new_password: str) -> None:
        self.vault.check_password(new_password)
        store = self.vault.load(user_id)
        if store is None:
            raise InputError(f"No wallet stored for user {user_id}")

        unlocked = self.vault.decrypt_secrets(store, old_password)
        try:
            self.vault.persist(user_id, self.vault.encrypt(unlocked.key, new_password, unlocked.mnemonic))
        finally:
            unlocked.key.zero()
        logger.info(f"Changed wallet password for user {user_id}")

    def export_mnemonic(self, user_id: str, password: str) -> Optional[str]:
        """Stored seed phrase, or None for wallets imported from a private key."""
        store = self.vault.load(user_id)
        if store is None:
            raise InputError(f"No wallet stored for user {user_id}")
        unlocked = self.vault.decrypt_secrets(store, password)
        unlocked.key.zero()
        return unlocked.mnemonic

    @staticmethod
    def export_private_key(session: WalletSession) -> str:
        """0x-hex for EVM, base58 secret||public for Solana."""
        key = session.require_key()
        if key.network is Network.EVM:
            return "0x" + key.private_key.hex()
        return base58.b58encode(key.solana_secret_key()).decode()
