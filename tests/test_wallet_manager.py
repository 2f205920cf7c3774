"""Tests for wallet lifecycle and sessions."""

import base58
import pytest

import gamewallet.wallet.manager as manager_module

from conftest import EVM_ADDRESS, EVM_PRIVATE_KEY, SOLANA_ADDRESS, TEST_MNEMONIC
from gamewallet.errors import AuthError, InputError, SigningError
from gamewallet.hdwallet.derivation import Network
from gamewallet.keystore.storage import FileStore
from gamewallet.keystore.vault import CURRENT_VERSION
from gamewallet.wallet import WalletManager, WalletSession, display_address, parse_secret

PASSWORD = "hunter22"


class TestParseSecret:
    """Tests for recognizing pasted secrets."""

    def test_mnemonic(self):
        """Test that a seed phrase derives the preset account."""
        key, phrase = parse_secret("  " + TEST_MNEMONIC.upper() + " ", Network.EVM)

        assert key.address == EVM_ADDRESS
        assert phrase == TEST_MNEMONIC

    def test_invalid_mnemonic(self):
        """Test that a 12 word phrase with a bad checksum is rejected."""
        with pytest.raises(InputError, match="Invalid seed phrase"):
            parse_secret(" ".join(["abandon"] * 12), Network.EVM)

    @pytest.mark.parametrize("secret", [EVM_PRIVATE_KEY, "0x" + EVM_PRIVATE_KEY, "0X" + EVM_PRIVATE_KEY.upper()])
    def test_evm_hex(self, secret):
        """Test hex private keys with and without prefix."""
        key, phrase = parse_secret(secret, Network.EVM)

        assert key.address == EVM_ADDRESS
        assert phrase is None

    @pytest.mark.parametrize("secret", ["", "0x1234", "not a key", "zz" * 32])
    def test_evm_rejects(self, secret):
        """Test malformed EVM secrets."""
        with pytest.raises(InputError):
            parse_secret(secret, Network.EVM)

    def test_solana_base58_keypair(self, solana_key):
        """Test the 64-byte base58 export format of Solana wallets."""
        secret = base58.b58encode(solana_key.solana_secret_key()).decode()
        key, _ = parse_secret(secret, Network.SOLANA)
        assert key.address == SOLANA_ADDRESS

    def test_solana_hex_seed(self, solana_key):
        """Test a 32-byte hex Solana seed."""
        key, _ = parse_secret(solana_key.private_key.hex(), Network.SOLANA)
        assert key.address == SOLANA_ADDRESS

    def test_solana_rejects_short(self):
        """Test that short Solana keys are rejected."""
        with pytest.raises(InputError):
            parse_secret(base58.b58encode(b"\x01" * 16).decode(), Network.SOLANA)


class TestDisplayAddress:
    """Tests for address shortening."""

    def test_shortens_long_addresses(self):
        """Test the 6...4 form."""
        assert display_address(EVM_ADDRESS) == "0x9858...da94"

    def test_short_values_unchanged(self):
        """Test that short strings pass through."""
        assert display_address("abc") == "abc"
        assert display_address("") == ""


class TestWalletSession:
    """Tests for the explicit session object."""

    def test_close_zeroes_key(self, evm_key):
        """Test that closing locks the session and zeroes the key."""
        session = WalletSession("user-1", evm_key)
        assert session.require_key() is evm_key

        session.close()

        assert not session.is_unlocked
        assert evm_key.is_zeroed
        with pytest.raises(SigningError):
            session.require_key()

    @pytest.mark.asyncio
    async def test_context_manager(self, solana_key):
        """Test that leaving the block closes the session."""
        async with WalletSession("user-1", solana_key) as session:
            assert session.is_unlocked
        assert not session.is_unlocked

    def test_require_network(self, evm_session):
        """Test the network guard."""
        evm_session.require_network(Network.EVM)
        with pytest.raises(SigningError):
            evm_session.require_network(Network.SOLANA)

    def test_repr_hides_key(self, evm_session):
        """Test that repr shows a short address and no secret."""
        text = repr(evm_session)
        assert EVM_PRIVATE_KEY not in text
        assert "0x9858...da94" in text


class TestWalletManager:
    """Tests for create/import/login/logout/disconnect."""

    def test_create_wallet(self, manager):
        """Test that a new wallet is stored and unlocked."""
        session, phrase = manager.create_wallet("user-1", PASSWORD)

        assert len(phrase.split()) == 12
        assert session.is_unlocked
        assert manager.has_stored_wallet("user-1")
        assert manager.stored_address("user-1") == session.address
        assert manager.stored_network("user-1") is Network.EVM
        assert manager.export_mnemonic("user-1", PASSWORD) == phrase

    def test_create_24_word_solana(self, manager):
        """Test a 24 word Solana wallet."""
        session, phrase = manager.create_wallet("user-2", PASSWORD, Network.SOLANA, word_count=24)

        assert len(phrase.split()) == 24
        assert session.network is Network.SOLANA

    def test_create_rejects_short_password(self, manager):
        """Test that nothing is stored when the password is too short."""
        with pytest.raises(InputError):
            manager.create_wallet("user-1", "abc")
        assert not manager.has_stored_wallet("user-1")

    def test_import_and_login(self, manager):
        """Test import, logout and login with the password."""
        session = manager.import_wallet("user-1", TEST_MNEMONIC, PASSWORD)
        assert session.address == EVM_ADDRESS

        manager.logout("user-1")
        assert not session.is_unlocked
        assert manager.active_session("user-1") is None

        again = manager.login("user-1", PASSWORD)
        assert again.address == EVM_ADDRESS
        assert manager.active_session("user-1") is again

    def test_login_wrong_password(self, manager):
        """Test that a wrong password is an AuthError and opens nothing."""
        manager.import_wallet("user-1", TEST_MNEMONIC, PASSWORD)
        manager.logout("user-1")

        with pytest.raises(AuthError):
            manager.login("user-1", "wrong-password")
        assert manager.active_session("user-1") is None

    def test_login_without_wallet(self, manager):
        """Test that logging in with nothing stored is an InputError."""
        with pytest.raises(InputError):
            manager.login("nobody", PASSWORD)

    def test_single_session_per_user(self, manager):
        """Test that logging in again closes the earlier session."""
        first = manager.import_wallet("user-1", TEST_MNEMONIC, PASSWORD)
        second = manager.login("user-1", PASSWORD)

        assert not first.is_unlocked
        assert second.is_unlocked

    def test_import_private_key_has_no_mnemonic(self, manager):
        """Test that private key imports export no seed phrase."""
        manager.import_wallet("user-1", EVM_PRIVATE_KEY, PASSWORD)
        assert manager.export_mnemonic("user-1", PASSWORD) is None

    def test_disconnect(self, manager):
        """Test that disconnect locks and deletes."""
        session = manager.import_wallet("user-1", TEST_MNEMONIC, PASSWORD)

        assert manager.disconnect("user-1")
        assert not session.is_unlocked
        assert not manager.has_stored_wallet("user-1")
        assert manager.stored_address("user-1") is None
        assert not manager.disconnect("user-1")

    def test_verify_and_change_password(self, manager):
        """Test password checks and rotation."""
        manager.import_wallet("user-1", TEST_MNEMONIC, PASSWORD)

        assert manager.verify_password("user-1", PASSWORD)
        assert not manager.verify_password("user-1", "other-pass")
        assert not manager.verify_password("nobody", PASSWORD)

        manager.change_password("user-1", PASSWORD, "new-password")
        assert manager.verify_password("user-1", "new-password")
        assert manager.export_mnemonic("user-1", "new-password") == TEST_MNEMONIC

    def test_login_upgrades_v1_keystore(self, manager, evm_key):
        """Test that a legacy envelope is rewritten as v2 on login."""
        manager.vault.persist("user-1", manager.vault.encrypt_v1(evm_key, PASSWORD, TEST_MNEMONIC))

        session = manager.login("user-1", PASSWORD)

        assert session.address == EVM_ADDRESS
        assert manager.vault.load("user-1").version == CURRENT_VERSION
        assert manager.export_mnemonic("user-1", PASSWORD) == TEST_MNEMONIC

    def test_export_private_key(self, manager):
        """Test the per-network export formats."""
        evm = manager.import_wallet("user-1", TEST_MNEMONIC, PASSWORD, Network.EVM)
        sol = manager.import_wallet("user-2", TEST_MNEMONIC, PASSWORD, Network.SOLANA)

        assert WalletManager.export_private_key(evm) == "0x" + EVM_PRIVATE_KEY
        exported = base58.b58decode(WalletManager.export_private_key(sol))
        assert len(exported) == 64
        assert base58.b58encode(exported[32:]).decode() == SOLANA_ADDRESS

    def test_export_requires_unlocked_session(self, manager):
        """Test that a closed session can not export."""
        session = manager.import_wallet("user-1", TEST_MNEMONIC, PASSWORD)
        manager.logout_all()

        with pytest.raises(SigningError):
            WalletManager.export_private_key(session)

    def test_file_backed_manager(self, settings, tmp_path):
        """Test the default FileStore vault from settings."""
        settings = settings.model_copy(update={"keystore_dir": str(tmp_path)})
        manager = WalletManager(settings=settings)
        manager.import_wallet("user-1", TEST_MNEMONIC, PASSWORD)

        assert isinstance(manager.vault.storage, FileStore)
        assert (tmp_path / "gamewallet_user-1.json").exists()
        assert WalletManager(settings=settings).stored_address("user-1") == EVM_ADDRESS


class TestStorageFailures:
    """Tests for keys left behind when the keystore can not be written."""

    @staticmethod
    def failing_storage(manager, monkeypatch):
        def write(key, data):
            raise OSError("disk full")

        monkeypatch.setattr(manager.vault.storage, "write", write)

    def test_import_zeroes_key(self, manager, monkeypatch, evm_key):
        """Test that a failed write wipes the imported key and opens nothing."""
        monkeypatch.setattr(manager_module, "parse_secret", lambda secret, network: (evm_key, None))
        self.failing_storage(manager, monkeypatch)

        with pytest.raises(OSError):
            manager.import_wallet("user-1", EVM_PRIVATE_KEY, PASSWORD)

        assert evm_key.is_zeroed
        assert manager.active_session("user-1") is None
        assert not manager.has_stored_wallet("user-1")

    def test_create_zeroes_key(self, manager, monkeypatch, solana_key):
        """Test that a failed write wipes the freshly derived key."""
        monkeypatch.setattr(manager_module, "derive_from_mnemonic", lambda phrase, network: solana_key)
        self.failing_storage(manager, monkeypatch)

        with pytest.raises(OSError):
            manager.create_wallet("user-1", PASSWORD, Network.SOLANA)

        assert solana_key.is_zeroed
        assert manager.active_session("user-1") is None
