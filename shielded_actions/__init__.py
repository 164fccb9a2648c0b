"""
Shielded Actions prover service.

Turns shield, unshield and swap requests into zero-knowledge proofs of
resource-machine transactions, using a mock, local or remote proving backend.
"""
from .config import BackendMode, ProverConfig
from .exceptions import (
    BackendFailure,
    DependencyUnavailable,
    InvalidAddress,
    InvalidInput,
    LockError,
    NotFound,
    ProofTimeoutError,
    ShieldedActionsError,
)
from .models import JobStatus, JobView, ProofResult, parse_request
from .orchestrator import ProofOrchestrator
from .version import __version__

__all__ = [
    "BackendMode",
    "ProverConfig",
    "ProofOrchestrator",
    "parse_request",
    "JobStatus",
    "JobView",
    "ProofResult",
    "ShieldedActionsError",
    "InvalidInput",
    "InvalidAddress",
    "DependencyUnavailable",
    "BackendFailure",
    "ProofTimeoutError",
    "NotFound",
    "LockError",
    "__version__",
]
