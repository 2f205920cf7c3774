"""Application configuration using pydantic-settings.

Holds RPC endpoints, pool contract addresses, backend credentials and the
retry/confirmation policy used by the wallet orchestrator.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")

    # ======================
    # EVM
    # ======================
    evm_rpc_url: str = Field(
        default="https://eth.llamarpc.com", description="EVM JSON-RPC URL"
    )
    evm_chain_id: int = Field(default=1, description="EIP-155 chain id")
    gas_price_gwei: float = Field(default=20, description="Gas price in gwei for new transactions")
    pool_contract_address: str = Field(
        default="", description="Game pool contract receiving deposits and paying withdrawals"
    )
    use_withdraw_v2: bool = Field(
        default=True, description="Call withdraw functions that carry the userID argument"
    )
    approve_unlimited: bool = Field(
        default=False, description="Approve max uint256 instead of the exact deposit amount"
    )

    # ======================
    # Solana
    # ======================
    sol_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana RPC URL"
    )
    solana_program_id: str = Field(default="", description="Game pool program id (base58)")
    solana_commitment: str = Field(default="confirmed", description="Commitment level for RPC reads")

    # ======================
    # Backend
    # ======================
    api_url: str = Field(default="https://api.idosgames.com", description="Game backend base URL")
    api_key: str = Field(default="", description="Game backend API key")
    game_id: str = Field(default="", description="Game identifier sent with backend calls")
    http_timeout: float = Field(default=30.0, description="HTTP timeout in seconds")

    # ======================
    # Retry / confirmation policy
    # ======================
    max_submit_attempts: int = Field(default=4, description="Attempts for RPC submission")
    retry_base_delay: float = Field(default=1.0, description="First backoff delay in seconds")
    retry_max_delay: float = Field(default=30.0, description="Backoff delay cap in seconds")
    confirmation_attempts: int = Field(default=20, description="Receipt polls before Unconfirmed")
    confirmation_interval: float = Field(default=3.0, description="EVM receipt poll interval")
    solana_confirmation_interval: float = Field(default=2.0, description="Solana status poll interval")
    confirmation_timeout: float = Field(default=180.0, description="Overall confirmation timeout")

    # ======================
    # Keystore
    # ======================
    keystore_dir: str = Field(default="./data/keystore", description="Directory for encrypted keystores")
    scrypt_n: int = Field(default=2**15, description="scrypt CPU/memory cost")
    scrypt_r: int = Field(default=8, description="scrypt block size")
    scrypt_p: int = Field(default=1, description="scrypt parallelism")
    min_password_length: int = Field(default=6, description="Minimum wallet password length")

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def keystore_path(self) -> Path:
        return Path(self.keystore_dir)

    def get_rpc_url(self, network: str) -> str:
        """Get RPC URL for a network tag."""
        rpc_map = {
            "EVM": self.evm_rpc_url,
            "ETH": self.evm_rpc_url,
            "SOLANA": self.sol_rpc_url,
            "SOL": self.sol_rpc_url,
        }
        return rpc_map.get(network.upper(), "")

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "evm": {
                "rpc": self.evm_rpc_url,
                "chain_id": self.evm_chain_id,
                "gas_price_gwei": self.gas_price_gwei,
                "pool": self.pool_contract_address or "(not set)",
            },
            "solana": {
                "rpc": self.sol_rpc_url,
                "program_id": self.solana_program_id or "(not set)",
            },
            "backend": {
                "api_url": self.api_url,
                "api_key": "***" if self.api_key else "(not set)",
                "game_id": self.game_id or "(not set)",
            },
            "retry": {
                "max_submit_attempts": self.max_submit_attempts,
                "confirmation_attempts": self.confirmation_attempts,
            },
            "keystore_dir": self.keystore_dir,
        }


@lru_cache
def get_settings(env_file: Optional[str] = None) -> Settings:
    """Get cached settings instance."""
    if env_file:
        return Settings(_env_file=env_file)
    return Settings()
