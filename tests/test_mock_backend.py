"""
Tests for the mock proving backend.
"""
import hashlib
import json

import pytest

from shielded_actions.backends import MOCK_IMAGE_ID, MockBackend, ProvingTask, get_backend
from shielded_actions.config import BackendMode, ProverConfig
from shielded_actions.exceptions import NotFound
from shielded_actions.models import ProofStatus, parse_request


@pytest.fixture
def task(shield_body):
    return ProvingTask(job_id="job1", proof_id="proof1", request=parse_request("shield", shield_body), timeout=10)


def test_mock_proof_is_deterministic(task):
    backend = MockBackend()
    first = backend.prove(task)
    second = backend.prove(task)

    journal = json.dumps(task.request.journal_data(), sort_keys=True, separators=(",", ":"))
    assert first == second
    assert first.status is ProofStatus.COMPLETED
    assert first.journal == journal.encode().hex()
    assert first.seal == hashlib.sha256(journal.encode() + b"job1").hexdigest()
    assert first.image_id == MOCK_IMAGE_ID
    assert first.calldata is None


def test_journal_never_contains_nullifier_key(task, shield_body):
    result = MockBackend().prove(task)
    key = shield_body["nullifier_key"][2:]
    assert key not in bytes.fromhex(result.journal).decode()


def test_session_status(task):
    backend = MockBackend()
    backend.prove(task)
    assert backend.session_status("proof1").proof_id == "proof1"
    with pytest.raises(NotFound):
        backend.session_status("unknown")


def test_mock_is_always_available():
    assert MockBackend().is_available()


def test_get_backend_defaults_to_mock(tmp_path):
    backend = get_backend(ProverConfig(artifact_dir=str(tmp_path)))
    assert isinstance(backend, MockBackend)
    assert backend.mode is BackendMode.MOCK
