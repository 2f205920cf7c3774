"""Pytest configuration and fixtures."""

import os

import pytest

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["DEBUG"] = "true"
os.environ["EVM_CHAIN_ID"] = "11155111"
os.environ["POOL_CONTRACT_ADDRESS"] = "0x5FbDB2315678afecb367f032d93F642f64180aa3"
os.environ["SOLANA_PROGRAM_ID"] = "Fg6PaFpoGXkYsidMpWTK6W2BeZ7FEfcYkg476zPFsLnS"
os.environ["API_KEY"] = "test-key"
os.environ["GAME_ID"] = "test-game"

from gamewallet.config import Settings
from gamewallet.hdwallet.derivation import Network, derive_from_mnemonic
from gamewallet.keystore.storage import MemoryStore
from gamewallet.keystore.vault import KeyVault
from gamewallet.utils.locks import clear_locks
from gamewallet.wallet.manager import WalletManager
from gamewallet.wallet.session import WalletSession

TEST_MNEMONIC = (
    "abandon abandon abandon abandon abandon abandon "
    "abandon abandon abandon abandon abandon about"
)

# Known vectors for TEST_MNEMONIC
EVM_PRIVATE_KEY = "1ab42cc412b618bdea3a599e3c9bae199ebf030895b039e9db1e30dafb12b727"
EVM_ADDRESS = "0x9858EfFD232B4033E47d90003D41EC34EcaEda94"
SOLANA_ADDRESS = "HAgk14JpMQLgt6rVgv7cBQFJWFto5Dqxi472uT3DKpqk"

# Cheap scrypt so keystore tests stay fast
TEST_SCRYPT = {"n": 2**4, "r": 8, "p": 1}


@pytest.fixture(autouse=True)
def reset_locks():
    """Locks bind to the event loop of the test that first contends them."""
    clear_locks()
    yield
    clear_locks()


@pytest.fixture
def settings() -> Settings:
    """Settings with zero backoff so retry tests run instantly."""
    return Settings(
        _env_file=None,
        evm_chain_id=11155111,
        pool_contract_address="0x5FbDB2315678afecb367f032d93F642f64180aa3",
        solana_program_id="Fg6PaFpoGXkYsidMpWTK6W2BeZ7FEfcYkg476zPFsLnS",
        gas_price_gwei=20,
        max_submit_attempts=4,
        retry_base_delay=0,
        retry_max_delay=0,
        confirmation_attempts=3,
        confirmation_interval=0,
        solana_confirmation_interval=0,
        confirmation_timeout=60,
        scrypt_n=TEST_SCRYPT["n"],
        scrypt_r=TEST_SCRYPT["r"],
        scrypt_p=TEST_SCRYPT["p"],
    )


@pytest.fixture
def vault() -> KeyVault:
    return KeyVault(MemoryStore(), scrypt_params=TEST_SCRYPT)


@pytest.fixture
def manager(vault, settings) -> WalletManager:
    return WalletManager(vault=vault, settings=settings)


@pytest.fixture
def evm_key():
    return derive_from_mnemonic(TEST_MNEMONIC, Network.EVM)


@pytest.fixture
def solana_key():
    return derive_from_mnemonic(TEST_MNEMONIC, Network.SOLANA)


@pytest.fixture
def evm_session(evm_key) -> WalletSession:
    session = WalletSession("user-1", evm_key)
    yield session
    session.close()


@pytest.fixture
def solana_session(solana_key) -> WalletSession:
    session = WalletSession("user-1", solana_key)
    yield session
    session.close()
