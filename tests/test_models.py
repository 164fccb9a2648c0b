"""
Tests for request validation and job views.
"""
import pytest

from shielded_actions.exceptions import InvalidInput
from shielded_actions.ids import hash_nullifier_key
from shielded_actions.models import (
    JobStatus,
    ProofJob,
    ProofResult,
    ProofStatus,
    ShieldRequest,
    SwapRequest,
    UnshieldRequest,
    parse_request,
)

SENDER = "0x1111111111111111111111111111111111111111"


class TestParseRequest:
    """Tests for parse_request."""

    def test_shield(self, shield_body):
        request = parse_request("shield", {**shield_body, "token": "usdc"})
        assert isinstance(request, ShieldRequest)
        assert request.token == "USDC"
        assert request.amount == 1000000
        assert request.sender == SENDER
        assert request.nullifier_key == "ab" * 32

    def test_unshield_derives_token_and_amount(self, unshield_body):
        request = parse_request("unshield", unshield_body)
        assert isinstance(request, UnshieldRequest)
        assert request.token == "USDC"
        assert request.amount == 1000000

    def test_unshield_amount_cannot_exceed_quantity(self, unshield_body):
        with pytest.raises(InvalidInput, match="exceeds resource quantity"):
            parse_request("unshield", {**unshield_body, "amount": "1000001"})

    def test_unshield_unknown_logic_ref(self, unshield_body):
        resource = {**unshield_body["resource"], "logic_ref": "00" * 32}
        with pytest.raises(InvalidInput, match="logic_ref"):
            parse_request("unshield", {**unshield_body, "resource": resource})

    def test_swap(self, swap_body):
        request = parse_request("swap", swap_body)
        assert isinstance(request, SwapRequest)
        assert request.output_token == "WETH"
        assert request.min_amount_out == 500000000000000

    @pytest.mark.parametrize("field,value", [
        ("amount", "1.5"),
        ("amount", -1),
        ("amount", str(2 ** 128)),
        ("sender", "0x1234"),
        ("token", "DAI"),
        ("nullifier_key", "0xnothex"),
        ("nullifier_key", ""),
    ])
    def test_shield_rejects_malformed_fields(self, shield_body, field, value):
        with pytest.raises(InvalidInput, match=field):
            parse_request("shield", {**shield_body, field: value})

    def test_missing_field(self, shield_body):
        body = dict(shield_body)
        del body["sender"]
        with pytest.raises(InvalidInput, match="sender"):
            parse_request("shield", body)

    def test_unknown_kind(self, shield_body):
        with pytest.raises(InvalidInput, match="Unknown request kind"):
            parse_request("bridge", shield_body)

    def test_non_object_body(self):
        with pytest.raises(InvalidInput):
            parse_request("shield", ["not", "an", "object"])


class TestJournalData:
    """The journal carries a commitment to the nullifier key, never the key."""

    def test_shield_journal(self, shield_body):
        request = parse_request("shield", shield_body)
        journal = request.journal_data()
        assert "nullifier_key" not in journal
        assert journal["nullifier_key_commitment"] == hash_nullifier_key(shield_body["nullifier_key"])
        assert journal["amount"] == "1000000"

    def test_id_fields(self, shield_body, unshield_body):
        assert parse_request("shield", shield_body).id_fields() == ["USDC", "1000000", SENDER]
        assert parse_request("unshield", unshield_body).id_fields() == [unshield_body["recipient"]]


class TestJobView:
    """Tests for job snapshots."""

    def test_pending_view_omits_empty_fields(self, shield_body):
        job = ProofJob(job_id="abc", kind="shield", request=parse_request("shield", shield_body))
        body = job.view().to_response()
        assert body == {"job_id": "abc", "kind": "shield", "status": "pending"}

    def test_completed_view(self, shield_body):
        job = ProofJob(job_id="abc", kind="shield", request=parse_request("shield", shield_body))
        job.status = JobStatus.COMPLETED
        job.result = ProofResult(proof_id="p1", journal="6a", seal="5e", image_id="img", calldata=b"\xed\x3c")

        body = job.view().to_response()
        assert body["status"] == "completed"
        assert body["proof_id"] == "p1"
        assert body["calldata"] == "0xed3c"
        assert body["proof"] == {"journal": "6a", "seal": "5e", "image_id": "img"}

    def test_pending_result_has_no_proof(self):
        result = ProofResult(proof_id="p1", status=ProofStatus.PENDING)
        assert result.proof_data() is None
        assert result.calldata_hex() is None

    def test_terminal_states(self):
        assert JobStatus.COMPLETED.is_terminal
        assert JobStatus.FAILED.is_terminal
        assert not JobStatus.PENDING.is_terminal
        assert not JobStatus.GENERATING.is_terminal
