"""
Tests for configuration and backend mode resolution.
"""
import pytest
from web3 import Web3

from shielded_actions.config import (
    BackendMode,
    ProverConfig,
    forwarder_address,
    normalize_token,
    token_address,
)
from shielded_actions.exceptions import InvalidInput


class TestResolveMode:
    """Tests for backend mode priority."""

    def test_defaults_to_mock(self):
        assert ProverConfig.resolve_mode(None, None, False) is BackendMode.MOCK

    def test_remote_key_wins_over_local(self):
        assert ProverConfig.resolve_mode(None, "key", True) is BackendMode.REMOTE

    def test_local_opt_in(self):
        assert ProverConfig.resolve_mode(None, None, True) is BackendMode.LOCAL

    def test_explicit_mode_wins(self):
        assert ProverConfig.resolve_mode("Local", "key", False) is BackendMode.LOCAL

    def test_unknown_explicit_mode(self):
        with pytest.raises(ValueError, match="Unknown backend mode"):
            ProverConfig.resolve_mode("cloud", None, False)


class TestFromEnv:
    """Tests for reading configuration from the environment."""

    def test_mock_defaults(self):
        config = ProverConfig.from_env({})
        assert config.mode is BackendMode.MOCK
        assert config.port == 3002
        assert config.job_timeout == 900.0
        assert config.worker_count == 4
        assert config.local_command == "local-prove"

    def test_remote_from_api_key(self):
        config = ProverConfig.from_env({
            "BONSAI_API_KEY": "secret",
            "BONSAI_IMAGE_ID": "abc123",
            "RISC0_VERSION": "2.0.0",
        })
        assert config.mode is BackendMode.REMOTE
        assert config.remote_api_key == "secret"
        assert config.remote_image_id == "abc123"
        assert config.risc0_version == "2.0.0"
        assert config.remote_url == "https://api.bonsai.xyz"

    def test_local_settings(self):
        config = ProverConfig.from_env({
            "LOCAL_PROVE": "1",
            "LOCAL_PROVER_CMD": "cargo run --release --bin local-prove --",
            "LOCAL_PROVER_DIR": "/opt/prover",
            "LOCAL_PROVER_REQUIRES": "cargo, r0vm",
            "SHIELDED_JOB_TIMEOUT": "60",
            "SHIELDED_WORKERS": "2",
            "PORT": "8080",
        })
        assert config.mode is BackendMode.LOCAL
        assert config.local_workdir == "/opt/prover"
        assert config.local_requires == ("cargo", "r0vm")
        assert config.job_timeout == 60.0
        assert config.worker_count == 2
        assert config.port == 8080

    def test_remote_without_key_rejected(self):
        with pytest.raises(ValueError, match="API key"):
            ProverConfig.from_env({"SHIELDED_BACKEND": "remote"})

    def test_remote_requires_https(self):
        with pytest.raises(ValueError, match="https"):
            ProverConfig.from_env({"BONSAI_API_KEY": "k", "BONSAI_API_URL": "http://bonsai.example.com"})

    def test_remote_allows_loopback_http(self):
        config = ProverConfig.from_env({"BONSAI_API_KEY": "k", "BONSAI_API_URL": "http://localhost:8081/"})
        assert config.remote_url == "http://localhost:8081"

    @pytest.mark.parametrize("overrides", [{"job_timeout": 0}, {"worker_count": 0}])
    def test_invalid_limits(self, overrides):
        with pytest.raises(ValueError):
            ProverConfig(**overrides)


class TestTokens:
    """Tests for the Sepolia token table."""

    def test_normalize_token(self):
        assert normalize_token("usdc") == "USDC"

    def test_unknown_token(self):
        with pytest.raises(InvalidInput, match="Unknown token"):
            normalize_token("DAI")

    def test_addresses_are_checksummed(self):
        usdc_forwarder = forwarder_address("USDC")
        assert Web3.is_checksum_address(usdc_forwarder)
        assert usdc_forwarder.lower() == "0x5256b82cb889f8845570b3a2f1c2af7d2f1567fe"
        assert token_address("weth").lower() == "0x7b79995e5f793a07bc00c21412e50ecae098e7f9"
