"""
Configuration for the Shielded Actions prover service.

The backend mode is resolved once, when the configuration is built, and is
never re-derived per request.
"""
import os
import logging
import urllib.parse
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from web3 import Web3

from .exceptions import InvalidInput

logger = logging.getLogger(__name__)

# Contract addresses on Sepolia
CONTRACTS: Dict[str, str] = {
    "protocol_adapter": "0x08c3bdc46B115cDc71Df076d9De96EeEBaa98525",
    "weth_forwarder": "0xD5307D777dC60b763b74945BF5A42ba93ce44e4b",
    "usdc_forwarder": "0x5256b82cB889f8845570b3a2f1C2af7d2F1567fE",
    "uniswap_forwarder": "0x9335Fa4A31E552378Ed29b94704c52b5635cd1AA",
    "weth": "0x7b79995e5f793A07Bc00c21412e50Ecae098E7f9",
    "usdc": "0x1c7D4B196Cb0C7B01d743Fbc6116a902379C7238",
}

# Token symbol -> (forwarder key, token key, decimals)
TOKENS: Dict[str, Dict[str, object]] = {
    "USDC": {"forwarder": "usdc_forwarder", "token": "usdc", "decimals": 6},
    "WETH": {"forwarder": "weth_forwarder", "token": "weth", "decimals": 18},
}

NETWORK = "sepolia"


class BackendMode(str, Enum):
    """Proving backend selected at startup"""
    MOCK = "mock"
    LOCAL = "local"
    REMOTE = "remote"


def normalize_token(token: str) -> str:
    """
    Return the canonical upper-case symbol for a supported token.

    Raises:
        InvalidInput: If the token is not supported
    """
    if not isinstance(token, str) or token.upper() not in TOKENS:
        raise InvalidInput(f"Unknown token: {token}. Supported: {', '.join(TOKENS)}")
    return token.upper()


def forwarder_address(token: str) -> str:
    """Get the checksummed forwarder contract address for a token"""
    key = TOKENS[normalize_token(token)]["forwarder"]
    return Web3.to_checksum_address(CONTRACTS[key])


def token_address(token: str) -> str:
    """Get the checksummed ERC20 contract address for a token"""
    key = TOKENS[normalize_token(token)]["token"]
    return Web3.to_checksum_address(CONTRACTS[key])


def _validate_service_url(name: str, url: str) -> None:
    parsed = urllib.parse.urlparse(url)
    host = parsed.hostname or ""
    is_local = host in ("localhost", "127.0.0.1", "::1")
    if parsed.scheme != "https" and not is_local:
        raise ValueError(f"{name} must use https:// for security (got: {parsed.scheme}://)")


@dataclass
class ProverConfig:
    """
    Runtime configuration for the prover service.

    Attributes:
        mode: Backend used for every request of this process
        remote_url: Base URL of the remote proving service
        remote_api_key: Credential for the remote proving service
        remote_image_id: Guest image id registered with the remote service
        risc0_version: Version header sent to the remote service
        local_command: External proving toolchain command
        local_workdir: Working directory of the toolchain (default: a staging
            directory under the artifact cache)
        local_requires: Tools that must be on PATH before invoking the toolchain
        artifact_dir: Directory of the durable artifact cache
        job_timeout: Upper bound in seconds for a single proving call
        poll_interval: Seconds between remote session status checks
        worker_count: Number of background proving workers
        lock_timeout: Seconds to wait for the job table lock
        port: HTTP listening port
    """
    mode: BackendMode = BackendMode.MOCK
    remote_url: str = "https://api.bonsai.xyz"
    remote_api_key: Optional[str] = None
    remote_image_id: Optional[str] = None
    risc0_version: str = "1.4.0"
    local_command: str = "local-prove"
    local_workdir: Optional[str] = None
    local_requires: Tuple[str, ...] = ()
    artifact_dir: str = "artifacts"
    job_timeout: float = 900.0
    poll_interval: float = 5.0
    worker_count: int = 4
    lock_timeout: float = 10.0
    port: int = 3002

    def __post_init__(self):
        self.mode = BackendMode(self.mode)
        if self.mode is BackendMode.REMOTE:
            if not self.remote_api_key:
                raise ValueError("Remote mode requires an API key (BONSAI_API_KEY)")
            _validate_service_url("remote_url", self.remote_url)
        if self.job_timeout <= 0:
            raise ValueError("job_timeout must be positive")
        if self.worker_count < 1:
            raise ValueError("worker_count must be at least 1")

    @staticmethod
    def resolve_mode(
        explicit: Optional[str],
        remote_api_key: Optional[str],
        local_opt_in: bool
    ) -> BackendMode:
        """
        Resolve the backend mode.

        An explicit mode wins; otherwise a remote credential selects the
        remote service, the local opt-in selects the local toolchain, and
        mock is the default.
        """
        if explicit:
            try:
                return BackendMode(explicit.strip().lower())
            except ValueError:
                raise ValueError(
                    f"Unknown backend mode '{explicit}'. Expected one of: "
                    f"{', '.join(m.value for m in BackendMode)}"
                )
        if remote_api_key:
            return BackendMode.REMOTE
        if local_opt_in:
            return BackendMode.LOCAL
        return BackendMode.MOCK

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "ProverConfig":
        """
        Build the configuration from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            ProverConfig instance
        """
        env = os.environ if environ is None else environ
        api_key = env.get("BONSAI_API_KEY") or None
        mode = cls.resolve_mode(
            env.get("SHIELDED_BACKEND"),
            api_key,
            env.get("LOCAL_PROVE") == "1",
        )

        config = cls(
            mode=mode,
            remote_url=env.get("BONSAI_API_URL", "https://api.bonsai.xyz").rstrip("/"),
            remote_api_key=api_key,
            remote_image_id=env.get("BONSAI_IMAGE_ID") or None,
            risc0_version=env.get("RISC0_VERSION", "1.4.0"),
            local_command=env.get("LOCAL_PROVER_CMD", "local-prove"),
            local_workdir=env.get("LOCAL_PROVER_DIR") or None,
            local_requires=tuple(
                tool.strip() for tool in env.get("LOCAL_PROVER_REQUIRES", "").split(",") if tool.strip()
            ),
            artifact_dir=env.get("SHIELDED_ARTIFACT_DIR", "artifacts"),
            job_timeout=float(env.get("SHIELDED_JOB_TIMEOUT", "900")),
            poll_interval=float(env.get("SHIELDED_POLL_INTERVAL", "5")),
            worker_count=int(env.get("SHIELDED_WORKERS", "4")),
            port=int(env.get("PORT", "3002")),
        )
        if mode is BackendMode.MOCK:
            logger.warning("No BONSAI_API_KEY or LOCAL_PROVE=1 found, running in mock mode")
        else:
            logger.info(f"Prover backend mode: {mode.value}")
        return config
