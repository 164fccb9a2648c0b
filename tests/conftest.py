"""
Pytest fixtures for the Shielded Actions tests.
"""
import time

import pytest

from shielded_actions.artifacts import ArtifactCache
from shielded_actions.backends import _rate_limited_log
from shielded_actions.config import CONTRACTS, ProverConfig
from shielded_actions.resources import build_resource

SENDER = "0x1111111111111111111111111111111111111111"
RECIPIENT = "0x2222222222222222222222222222222222222222"
NULLIFIER_KEY = "0x" + "ab" * 32

_real_sleep = time.sleep


# Make time.sleep instantaneous so polling loops don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _reset_rate_limited_log():
    _rate_limited_log.reset()
    yield
    _rate_limited_log.reset()


@pytest.fixture
def cache(tmp_path):
    return ArtifactCache(tmp_path / "artifacts", lock_timeout=1)


@pytest.fixture
def mock_config(tmp_path):
    return ProverConfig(artifact_dir=str(tmp_path / "artifacts"), worker_count=2, lock_timeout=1)


@pytest.fixture
def shield_body():
    return {
        "token": "USDC",
        "amount": "1000000",
        "sender": SENDER,
        "nullifier_key": NULLIFIER_KEY,
    }


@pytest.fixture
def usdc_resource():
    return build_resource("USDC", 1000000, SENDER, NULLIFIER_KEY, CONTRACTS["usdc_forwarder"])


@pytest.fixture
def unshield_body(usdc_resource):
    return {
        "resource": usdc_resource,
        "recipient": RECIPIENT,
        "nullifier_key": NULLIFIER_KEY,
    }


@pytest.fixture
def swap_body(usdc_resource):
    return {
        "input_resource": usdc_resource,
        "output_token": "WETH",
        "min_amount_out": "500000000000000",
        "nullifier_key": NULLIFIER_KEY,
    }


@pytest.fixture
def wait_for():
    """Spin until a predicate is truthy; time.sleep is patched out in tests"""
    def _wait(predicate, attempts=500):
        for _ in range(attempts):
            if predicate():
                return True
            _real_sleep(0.01)
        return predicate()
    return _wait
