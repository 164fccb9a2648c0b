"""
Mock proving backend.

Fabricates deterministic pseudo-proofs without touching any proving
machinery. Used for integration testing and frontend development.
"""
import hashlib
import json
import logging
import threading
from typing import Dict

from ..config import BackendMode
from ..exceptions import NotFound
from ..models import ProofResult, ProofStatus
from .base import ProverBackend, ProvingTask

logger = logging.getLogger(__name__)

MOCK_IMAGE_ID = "mock_shielded_actions_guest_v1"


class MockBackend(ProverBackend):
    """
    Backend that always succeeds immediately.

    The journal is the hex of the request's canonical journal JSON and the
    seal is sha256(journal || job id). No calldata is produced.
    """

    mode = BackendMode.MOCK

    def __init__(self):
        self._proofs: Dict[str, ProofResult] = {}
        self._lock = threading.Lock()

    def is_available(self) -> bool:
        """
        Check if the mock backend is available.

        Returns:
            Always True since the mock backend has no dependencies
        """
        return True

    def prove(self, task: ProvingTask) -> ProofResult:
        logger.info(f"Creating mock {task.kind} proof: {task.proof_id}")

        journal = json.dumps(task.request.journal_data(), sort_keys=True, separators=(",", ":"))
        seal = hashlib.sha256(journal.encode("utf-8") + task.job_id.encode("utf-8")).hexdigest()

        result = ProofResult(
            proof_id=task.proof_id,
            status=ProofStatus.COMPLETED,
            journal=journal.encode("utf-8").hex(),
            seal=seal,
            image_id=MOCK_IMAGE_ID,
            calldata=None,
        )
        with self._lock:
            self._proofs[task.proof_id] = result
        return result

    def session_status(self, proof_id: str) -> ProofResult:
        with self._lock:
            result = self._proofs.get(proof_id)
        if result is None:
            raise NotFound(f"Proof not found: {proof_id}")
        return result
