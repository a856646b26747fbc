"""
Configuration management for the verification relayer.

All settings can be overridden via environment variables or a .env file.
The legacy deployment variable names (CELO_RPC, SEPOLIA_RPC,
PROOF_OF_HUMAN_CONTRACT, CENTRAL_WALLET_CONTRACT) are accepted as aliases.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .address import InvalidAddressError, normalize_address
from .errors import ConfigError
from .sync import ReconciliationPolicy


class Settings(BaseSettings):
    """Environment-based settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Source chain (proof-of-human registry, read-only)
    source_rpc_url: str = Field(
        default="https://forno.celo.org",
        validation_alias=AliasChoices("SOURCE_RPC_URL", "CELO_RPC"),
    )
    source_chain_id: int = Field(default=42220, validation_alias="SOURCE_CHAIN_ID")
    source_contract: str = Field(
        default="",
        description="Proof-of-human registry contract on the source chain",
        validation_alias=AliasChoices("SOURCE_CONTRACT", "PROOF_OF_HUMAN_CONTRACT"),
    )

    # Target chain (verification flag store, written by the relayer)
    target_rpc_url: str = Field(
        default="https://rpc.sepolia.org",
        validation_alias=AliasChoices("TARGET_RPC_URL", "SEPOLIA_RPC"),
    )
    target_chain_id: int = Field(default=11155111, validation_alias="TARGET_CHAIN_ID")
    target_contract: str = Field(
        default="",
        description="Verification flag store contract on the target chain",
        validation_alias=AliasChoices("TARGET_CONTRACT", "CENTRAL_WALLET_CONTRACT"),
    )
    relayer_private_key: str = Field(default="", validation_alias="RELAYER_PRIVATE_KEY")

    # Sync loop
    sync_interval_ms: int = Field(default=10_000, gt=0, validation_alias="RELAYER_INTERVAL_MS")
    discovery_window_blocks: int = Field(
        default=2000,
        gt=0,
        description="Trailing block window scanned for VerificationCompleted events",
        validation_alias="DISCOVERY_WINDOW_BLOCKS",
    )
    log_query_chunk_blocks: int = Field(
        default=2000,
        gt=0,
        description="Max block span per eth_getLogs request",
        validation_alias="LOG_QUERY_CHUNK_BLOCKS",
    )
    reconciliation_policy: ReconciliationPolicy = Field(
        default=ReconciliationPolicy.TRUST_DISCOVERY,
        description="trust-discovery (write every discovered address) or reverify-source",
        validation_alias="RECONCILIATION_POLICY",
    )

    # Transactions
    rpc_timeout_seconds: float = Field(default=30.0, gt=0, validation_alias="RPC_TIMEOUT_SECONDS")
    tx_timeout_seconds: float = Field(default=120.0, gt=0, validation_alias="TX_TIMEOUT_SECONDS")
    gas_limit: int = Field(
        default=100_000,
        gt=0,
        description="Floor for the per-transaction gas limit",
        validation_alias="GAS_LIMIT",
    )
    gas_headroom_percent: int = Field(default=20, ge=0, validation_alias="GAS_HEADROOM_PERCENT")
    fee_bump_percent: int = Field(default=20, ge=0, validation_alias="FEE_BUMP_PERCENT")

    # HTTP control plane
    # WARNING: the default binds all interfaces. Set API_TOKEN before exposing
    # the POST control endpoints beyond a private network.
    host: str = Field(default="0.0.0.0", validation_alias="HOST")
    port: int = Field(default=8001, validation_alias="PORT")
    api_token: Optional[str] = Field(default=None, validation_alias="API_TOKEN")
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000", "http://127.0.0.1:3000"],
        validation_alias="ALLOWED_ORIGINS",
    )

    # Logging
    log_level: str = Field(default="info", validation_alias="LOG_LEVEL")
    log_json: bool = Field(default=False, validation_alias="LOG_JSON")

    @property
    def sync_interval_seconds(self) -> float:
        """Sync interval in seconds."""
        return self.sync_interval_ms / 1000

    def require_relayer_config(self) -> None:
        """
        Check that everything needed to sign and submit is configured.

        Raises:
            ConfigError: listing every missing or malformed value
        """
        problems: list[str] = []

        if not self.relayer_private_key:
            problems.append("RELAYER_PRIVATE_KEY is not set")

        for name, value in (
            ("SOURCE_CONTRACT", self.source_contract),
            ("TARGET_CONTRACT", self.target_contract),
        ):
            if not value:
                problems.append(f"{name} is not set")
                continue
            try:
                normalize_address(value)
            except InvalidAddressError:
                problems.append(f"{name} is not a valid address: {value!r}")

        if problems:
            raise ConfigError("; ".join(problems))


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def load_settings(env_path: Optional[Path] = None) -> Settings:
    """Load settings, optionally from an explicit .env file."""
    return Settings(_env_file=env_path) if env_path else get_settings()
