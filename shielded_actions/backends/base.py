"""
Backend layer for proof generation.

This module defines the interface every proving backend implements and the
factory that picks the backend for the configured mode. The mode is decided
once, when the service starts.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..artifacts import ArtifactCache
from ..config import BackendMode, ProverConfig
from ..exceptions import NotFound
from ..models import ProofRequest, ProofResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProvingTask:
    """One unit of proving work handed to a backend"""
    job_id: str
    proof_id: str
    request: ProofRequest
    timeout: float

    @property
    def kind(self) -> str:
        return self.request.kind


class ProverBackend(ABC):
    """
    Abstract base class for proving backends.

    ``prove`` either returns a completed result or, for asynchronous
    services, a pending result whose progress is read with
    ``session_status``.
    """

    mode: BackendMode

    @abstractmethod
    def is_available(self) -> bool:
        """
        Check whether the backend's external dependencies are reachable.

        Returns:
            True if the backend can serve requests
        """
        pass

    @abstractmethod
    def prove(self, task: ProvingTask) -> ProofResult:
        """
        Produce a proof for the task.

        Args:
            task: The proving task

        Returns:
            Completed or pending proof result

        Raises:
            DependencyUnavailable: If the proving toolchain is not reachable
            BackendFailure: If proving fails
        """
        pass

    def session_status(self, proof_id: str) -> ProofResult:
        """
        Re-query an asynchronous proving session.

        Raises:
            NotFound: If no session is registered for the proof id
        """
        raise NotFound(f"Proof not found: {proof_id}")

    def close(self) -> None:
        """Release any open connections or resources."""
        pass


def get_backend(config: ProverConfig, cache: Optional[ArtifactCache] = None) -> ProverBackend:
    """
    Build the backend for the configured mode.

    Args:
        config: Service configuration
        cache: Artifact cache shared with the backend

    Returns:
        Backend implementation
    """
    cache = cache or ArtifactCache(config.artifact_dir)

    if config.mode is BackendMode.LOCAL:
        from .local import LocalBackend
        backend = LocalBackend(
            command=config.local_command,
            cache=cache,
            workdir=config.local_workdir,
            required_tools=config.local_requires,
        )
    elif config.mode is BackendMode.REMOTE:
        from .remote import RemoteBackend
        backend = RemoteBackend(
            api_url=config.remote_url,
            api_key=config.remote_api_key,
            image_id=config.remote_image_id,
            risc0_version=config.risc0_version,
            cache=cache,
        )
    else:
        from .mock import MockBackend
        backend = MockBackend()

    logger.info(f"Using {config.mode.value} proving backend")
    return backend
