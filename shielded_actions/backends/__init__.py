"""
Proving backends for the Shielded Actions prover service.
"""
from .base import ProverBackend, ProvingTask, get_backend
from .mock import MOCK_IMAGE_ID, MockBackend

__all__ = [
    "ProverBackend",
    "ProvingTask",
    "get_backend",
    "MockBackend",
    "MOCK_IMAGE_ID",
]
