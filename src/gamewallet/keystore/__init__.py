"""Encrypted key storage."""

from gamewallet.keystore.storage import FileStore, KeyValueStore, MemoryStore
from gamewallet.keystore.vault import EncryptedKeystore, KeyVault, UnlockedSecrets

__all__ = [
    "EncryptedKeystore",
    "FileStore",
    "KeyValueStore",
    "KeyVault",
    "MemoryStore",
    "UnlockedSecrets",
]
