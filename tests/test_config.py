"""Tests for settings and retry helpers."""

import pytest

from gamewallet.config import Settings
from gamewallet.errors import ChainError, NetworkError
from gamewallet.orchestrator import backoff_delay, retry_network


class TestSettings:
    """Tests for environment-driven settings."""

    def test_env_overrides(self, monkeypatch):
        """Test that environment variables populate fields."""
        monkeypatch.setenv("GAS_PRICE_GWEI", "35")
        monkeypatch.setenv("USE_WITHDRAW_V2", "false")

        settings = Settings(_env_file=None)

        assert settings.gas_price_gwei == 35
        assert settings.use_withdraw_v2 is False
        assert settings.evm_chain_id == 11155111

    def test_rpc_lookup(self):
        """Test network tag aliases."""
        settings = Settings(_env_file=None, evm_rpc_url="http://evm", sol_rpc_url="http://sol")

        assert settings.get_rpc_url("evm") == "http://evm"
        assert settings.get_rpc_url("SOL") == "http://sol"
        assert settings.get_rpc_url("btc") == ""

    def test_safe_dict_redacts_key(self):
        """Test that the API key never appears in the summary."""
        settings = Settings(_env_file=None, api_key="super-secret")
        assert "super-secret" not in str(settings.get_safe_dict())
        assert settings.get_safe_dict()["backend"]["api_key"] == "***"


class TestRetry:
    """Tests for the bounded retry helper."""

    def test_backoff_delay(self):
        """Test doubling with a cap."""
        assert [backoff_delay(i, 0.5, 3) for i in range(5)] == [0.5, 1.0, 2.0, 3, 3]

    @pytest.mark.asyncio
    async def test_retries_network_errors(self):
        """Test that NetworkError is retried until success."""
        calls = []
        delays = []

        async def operation():
            calls.append(1)
            if len(calls) < 3:
                raise NetworkError("flaky")
            return "ok"

        async def sleep(delay):
            delays.append(delay)

        assert await retry_network(operation, attempts=4, base_delay=1, max_delay=10, sleep=sleep) == "ok"
        assert len(calls) == 3
        assert delays == [1, 2]

    @pytest.mark.asyncio
    async def test_chain_errors_not_retried(self):
        """Test that ChainError propagates on the first attempt."""
        calls = []

        async def operation():
            calls.append(1)
            raise ChainError("reverted")

        with pytest.raises(ChainError):
            await retry_network(operation, attempts=4, base_delay=0, max_delay=0)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_budget_exhausted(self):
        """Test that the last NetworkError is raised."""

        async def operation():
            raise NetworkError("down")

        with pytest.raises(NetworkError, match="down"):
            await retry_network(operation, attempts=2, base_delay=0, max_delay=0)
