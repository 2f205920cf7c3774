"""Tests for the encrypted keystore and its storage backends."""

import json
import os
import stat

import pytest

from conftest import EVM_ADDRESS, TEST_MNEMONIC, TEST_SCRYPT
from gamewallet.errors import AuthError, CryptoError, InputError
from gamewallet.keystore.storage import FileStore, MemoryStore
from gamewallet.keystore.vault import CURRENT_VERSION, EncryptedKeystore, KeyVault

PASSWORD = "correct horse"


class TestStorage:
    """Tests for MemoryStore and FileStore."""

    def test_memory_store_round_trip(self):
        """Test basic write/read/delete in memory."""
        store = MemoryStore()
        store.write("user-1", b"data")

        assert store.read("user-1") == b"data"
        assert store.exists("user-1")
        assert store.delete("user-1")
        assert store.read("user-1") is None
        assert not store.delete("user-1")

    @pytest.mark.parametrize("key", ["", "../etc/passwd", "a/b", ".hidden", "x" * 129])
    def test_rejects_unsafe_keys(self, key):
        """Test that keys which could escape the directory are rejected."""
        with pytest.raises(InputError):
            MemoryStore().write(key, b"data")

    def test_file_store_writes_private_file(self, tmp_path):
        """Test that keystore files are created with 0600 permissions."""
        store = FileStore(tmp_path / "keys")
        store.write("user-1", b"secret envelope")

        path = tmp_path / "keys" / "gamewallet_user-1.json"
        assert path.read_bytes() == b"secret envelope"
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_file_store_replaces_atomically(self, tmp_path):
        """Test that overwriting leaves no temp files behind."""
        store = FileStore(tmp_path)
        store.write("user-1", b"one")
        store.write("user-1", b"two")

        assert store.read("user-1") == b"two"
        assert [p.name for p in tmp_path.iterdir()] == ["gamewallet_user-1.json"]

    def test_file_store_keys_and_delete(self, tmp_path):
        """Test listing and deleting stored keys."""
        store = FileStore(tmp_path)
        store.write("b", b"2")
        store.write("a", b"1")

        assert store.keys() == ["a", "b"]
        assert store.delete("a")
        assert store.keys() == ["b"]
        assert FileStore(tmp_path / "missing").keys() == []


class TestKeyVault:
    """Tests for envelope encryption."""

    def test_encrypt_decrypt_round_trip(self, vault, evm_key):
        """Test that the right password restores the same key."""
        store = vault.encrypt(evm_key, PASSWORD)

        assert store.version == CURRENT_VERSION
        assert store.address == EVM_ADDRESS
        assert vault.decrypt(store, PASSWORD) == evm_key

    def test_ciphertext_hides_key(self, vault, evm_key):
        """Test that the serialized envelope does not contain the key or phrase."""
        data = vault.encrypt(evm_key, PASSWORD, mnemonic=TEST_MNEMONIC).to_bytes()

        assert evm_key.private_key.hex().encode() not in data
        assert b"abandon" not in data

    def test_wrong_password(self, vault, evm_key):
        """Test that a wrong password is an AuthError."""
        store = vault.encrypt(evm_key, PASSWORD)
        with pytest.raises(AuthError):
            vault.decrypt(store, "wrong password")

    def test_fresh_salt_and_nonce(self, vault, evm_key):
        """Test that encrypting twice never reuses salt, nonce or ciphertext."""
        first = vault.encrypt(evm_key, PASSWORD)
        second = vault.encrypt(evm_key, PASSWORD)

        assert first.salt != second.salt
        assert first.nonce != second.nonce
        assert first.ciphertext != second.ciphertext

    def test_tampered_ciphertext(self, vault, evm_key):
        """Test that a flipped ciphertext byte fails authentication."""
        store = vault.encrypt(evm_key, PASSWORD)
        raw = bytearray(bytes.fromhex(store.ciphertext))
        raw[0] ^= 0x01
        store.ciphertext = raw.hex()

        with pytest.raises(AuthError):
            vault.decrypt(store, PASSWORD)

    def test_tampered_address_fails_authentication(self, vault, evm_key):
        """Test that the cleartext address is bound to the ciphertext."""
        store = vault.encrypt(evm_key, PASSWORD)
        store.address = "0x0000000000000000000000000000000000000001"

        with pytest.raises(AuthError):
            vault.decrypt(store, PASSWORD)

    def test_unsupported_version(self, vault, evm_key):
        """Test that unknown envelope versions are refused."""
        store = vault.encrypt(evm_key, PASSWORD)
        store.version = 99

        with pytest.raises(AuthError):
            vault.decrypt(store, PASSWORD)

    def test_corrupt_document(self):
        """Test that non-keystore bytes are an AuthError."""
        with pytest.raises(AuthError):
            EncryptedKeystore.from_bytes(b"not json")
        with pytest.raises(AuthError):
            EncryptedKeystore.from_bytes(json.dumps({"version": 2}).encode())

    def test_mnemonic_stored_with_key(self, vault, solana_key):
        """Test that the seed phrase comes back with the key."""
        store = vault.encrypt(solana_key, PASSWORD, mnemonic=TEST_MNEMONIC)
        secrets = vault.decrypt_secrets(store, PASSWORD)

        assert store.has_mnemonic
        assert secrets.mnemonic == TEST_MNEMONIC
        assert secrets.key == solana_key

    def test_short_password_rejected(self, vault, evm_key):
        """Test that new envelopes need a minimum password length."""
        with pytest.raises(InputError):
            vault.encrypt(evm_key, "abc")

    def test_v1_envelope_readable_and_upgradable(self, vault, evm_key):
        """Test that legacy PBKDF2/Fernet envelopes still open and upgrade to v2."""
        legacy = vault.encrypt_v1(evm_key, PASSWORD, mnemonic=TEST_MNEMONIC)
        assert legacy.version == 1
        assert vault.decrypt(legacy, PASSWORD) == evm_key

        upgraded = vault.upgrade(legacy, PASSWORD)
        assert upgraded.version == CURRENT_VERSION
        assert vault.decrypt_secrets(upgraded, PASSWORD).mnemonic == TEST_MNEMONIC

    def test_v1_wrong_password(self, vault, evm_key):
        """Test that Fernet token failures map to AuthError."""
        legacy = vault.encrypt_v1(evm_key, PASSWORD)
        with pytest.raises(AuthError):
            vault.decrypt(legacy, "nope nope")

    def test_persist_and_load(self, evm_key, tmp_path):
        """Test that envelopes survive a round trip through FileStore."""
        vault = KeyVault(FileStore(tmp_path), scrypt_params=TEST_SCRYPT)
        vault.persist("user-1", vault.encrypt(evm_key, PASSWORD))

        assert vault.exists("user-1")
        loaded = vault.load("user-1")
        assert loaded.address == EVM_ADDRESS
        assert vault.decrypt(loaded, PASSWORD) == evm_key
        assert vault.delete("user-1")
        assert vault.load("user-1") is None

    def test_no_storage(self, evm_key):
        """Test that persistence without a store is a CryptoError."""
        with pytest.raises(CryptoError):
            KeyVault().load("user-1")
