"""
Tests for environment-based settings.
"""

import pytest

from verification_relayer.config import Settings
from verification_relayer.errors import ConfigError
from verification_relayer.sync import ReconciliationPolicy

from .conftest import SOURCE_CONTRACT, TARGET_CONTRACT, TEST_PRIVATE_KEY

ENV_KEYS = [
    "SOURCE_RPC_URL", "CELO_RPC", "TARGET_RPC_URL", "SEPOLIA_RPC",
    "SOURCE_CONTRACT", "PROOF_OF_HUMAN_CONTRACT", "TARGET_CONTRACT", "CENTRAL_WALLET_CONTRACT",
    "RELAYER_PRIVATE_KEY", "RELAYER_INTERVAL_MS", "RECONCILIATION_POLICY", "API_TOKEN",
]


@pytest.fixture
def clean_env(monkeypatch):
    """Remove relayer variables inherited from the shell."""
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


class TestDefaults:
    def test_defaults(self, clean_env):
        """Unset variables fall back to the public Celo/Sepolia endpoints."""
        settings = Settings(_env_file=None)
        assert settings.source_rpc_url == "https://forno.celo.org"
        assert settings.source_chain_id == 42220
        assert settings.target_chain_id == 11155111
        assert settings.sync_interval_ms == 10_000
        assert settings.sync_interval_seconds == 10.0
        assert settings.reconciliation_policy is ReconciliationPolicy.TRUST_DISCOVERY
        assert settings.api_token is None


class TestEnvironment:
    """Variable names and legacy aliases."""

    def test_primary_names(self, clean_env):
        clean_env.setenv("SOURCE_RPC_URL", "http://source:8545")
        clean_env.setenv("TARGET_RPC_URL", "http://target:8545")
        clean_env.setenv("RELAYER_INTERVAL_MS", "2500")
        clean_env.setenv("RECONCILIATION_POLICY", "reverify-source")

        settings = Settings(_env_file=None)
        assert settings.source_rpc_url == "http://source:8545"
        assert settings.target_rpc_url == "http://target:8545"
        assert settings.sync_interval_seconds == 2.5
        assert settings.reconciliation_policy is ReconciliationPolicy.REVERIFY_SOURCE

    def test_legacy_aliases(self, clean_env):
        """CELO_RPC / SEPOLIA_RPC / contract names from older deployments still work."""
        clean_env.setenv("CELO_RPC", "http://celo:8545")
        clean_env.setenv("SEPOLIA_RPC", "http://sepolia:8545")
        clean_env.setenv("PROOF_OF_HUMAN_CONTRACT", SOURCE_CONTRACT)
        clean_env.setenv("CENTRAL_WALLET_CONTRACT", TARGET_CONTRACT)

        settings = Settings(_env_file=None)
        assert settings.source_rpc_url == "http://celo:8545"
        assert settings.target_rpc_url == "http://sepolia:8545"
        assert settings.source_contract == SOURCE_CONTRACT
        assert settings.target_contract == TARGET_CONTRACT

    def test_interval_must_be_positive(self, clean_env):
        clean_env.setenv("RELAYER_INTERVAL_MS", "0")
        with pytest.raises(ValueError):
            Settings(_env_file=None)

    def test_env_file(self, clean_env, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(f"RELAYER_PRIVATE_KEY={TEST_PRIVATE_KEY}\nAPI_TOKEN=secret\n")

        settings = Settings(_env_file=env_file)
        assert settings.relayer_private_key == TEST_PRIVATE_KEY
        assert settings.api_token == "secret"


class TestRequireRelayerConfig:
    """Startup validation of signer and contract settings."""

    def test_complete_config_passes(self, settings):
        settings.require_relayer_config()

    def test_missing_private_key(self, settings):
        settings = settings.model_copy(update={"relayer_private_key": ""})
        with pytest.raises(ConfigError, match="RELAYER_PRIVATE_KEY"):
            settings.require_relayer_config()

    def test_missing_contracts_all_reported(self, settings):
        settings = settings.model_copy(update={"source_contract": "", "target_contract": ""})
        with pytest.raises(ConfigError) as exc_info:
            settings.require_relayer_config()
        assert "SOURCE_CONTRACT" in str(exc_info.value)
        assert "TARGET_CONTRACT" in str(exc_info.value)

    def test_malformed_contract(self, settings):
        settings = settings.model_copy(update={"target_contract": "0x1234"})
        with pytest.raises(ConfigError, match="not a valid address"):
            settings.require_relayer_config()
