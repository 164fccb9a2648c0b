"""
Tests for ABI encoding of forwarder calls and external payloads.
"""
import pytest
from eth_abi import decode
from hypothesis import HealthCheck, given, settings, strategies as st
from web3 import Web3

from shielded_actions.exceptions import InvalidAddress, InvalidInput
from shielded_actions.payload import (
    SWAP_SELECTOR,
    TRANSFER_FROM_SELECTOR,
    TRANSFER_SELECTOR,
    DeletionCriterion,
    Direction,
    ExternalPayload,
    ForwarderCallIntent,
    build_external_payload,
    decode_abi_tuple,
    encode_abi_tuple,
    encode_bool,
    encode_swap_call,
    encode_transfer,
    encode_transfer_from,
    pad32,
    payload_words,
    should_emit_payload,
    to_address_bytes,
)

FORWARDER = bytes.fromhex("5256b82cb889f8845570b3a2f1c2af7d2f1567fe")
USER = bytes.fromhex("2222222222222222222222222222222222222222")

addresses = st.binary(min_size=20, max_size=20)
blobs = st.binary(max_size=200)


def expected_length(call_data: bytes, expected_output: bytes) -> int:
    return 96 + 32 + pad32(len(call_data)) + 32 + pad32(len(expected_output))


class TestAbiTuple:
    """Tests for the (address, bytes, bytes) tuple encoder."""

    def test_layout_of_head(self):
        """Head holds the padded address and both tail offsets."""
        call_data = b"\x01" * 68
        blob = encode_abi_tuple(FORWARDER, call_data, encode_bool(True))

        assert blob[:12] == b"\x00" * 12
        assert blob[12:32] == FORWARDER
        assert int.from_bytes(blob[32:64], "big") == 0x60
        assert int.from_bytes(blob[64:96], "big") == 96 + 32 + 96
        assert int.from_bytes(blob[96:128], "big") == 68

    def test_empty_fields(self):
        """Empty dynamic fields emit only a zero length word."""
        blob = encode_abi_tuple(FORWARDER, b"", b"")
        assert len(blob) == 96 + 32 + 32
        assert blob[96:] == b"\x00" * 64
        assert int.from_bytes(blob[64:96], "big") == 128

    def test_matches_reference_decoder(self):
        call_data = encode_transfer(USER, 1000)
        blob = encode_abi_tuple(FORWARDER, call_data, encode_bool(True))

        address, decoded_call, decoded_output = decode(["address", "bytes", "bytes"], blob)
        assert address == Web3.to_checksum_address(FORWARDER)
        assert decoded_call == call_data
        assert decoded_output == encode_bool(True)

    @settings(max_examples=50, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(address=addresses, call_data=blobs, expected_output=blobs)
    def test_length_and_round_trip(self, address, call_data, expected_output):
        """Property: length follows the padding formula and decoding inverts encoding."""
        blob = encode_abi_tuple(address, call_data, expected_output)
        assert len(blob) == expected_length(call_data, expected_output)
        assert decode_abi_tuple(blob) == (address, call_data, expected_output)

    def test_decode_rejects_truncated_blob(self):
        blob = encode_abi_tuple(FORWARDER, b"\x01" * 40, b"")
        with pytest.raises(InvalidInput):
            decode_abi_tuple(blob[:100])

    def test_decode_rejects_bad_offset(self):
        blob = bytearray(encode_abi_tuple(FORWARDER, b"\x01", b""))
        blob[32:64] = (10_000).to_bytes(32, "big")
        with pytest.raises(InvalidInput):
            decode_abi_tuple(bytes(blob))

    @pytest.mark.parametrize("address", [b"\x01" * 19, b"\x01" * 21, "0x1234", "not-hex", 42])
    def test_rejects_wrong_sized_address(self, address):
        """Addresses are never truncated or padded."""
        with pytest.raises(InvalidAddress):
            encode_abi_tuple(address, b"", b"")

    def test_invalid_address_is_invalid_input(self):
        with pytest.raises(InvalidInput):
            to_address_bytes("0x" + "11" * 32)


class TestErc20Calls:
    """Tests for ERC20 and swap call data."""

    def test_transfer_example(self):
        """transfer(0x2222..., 1000) has the canonical 68-byte encoding."""
        data = encode_transfer("0x2222222222222222222222222222222222222222", 1000)
        expected = (
            "a9059cbb"
            + "000000000000000000000000" + "22" * 20
            + "00" * 30 + "03e8"
        )
        assert data.hex() == expected
        assert len(data) == 68

    def test_transfer_from_selector_and_args(self):
        data = encode_transfer_from(USER, FORWARDER, 5)
        assert data[:4] == TRANSFER_FROM_SELECTOR
        sender, recipient, amount = decode(["address", "address", "uint256"], data[4:])
        assert sender.lower() == "0x" + USER.hex()
        assert recipient.lower() == "0x" + FORWARDER.hex()
        assert amount == 5

    def test_swap_call(self):
        token_out = "0x7b79995e5f793A07Bc00c21412e50Ecae098E7f9"
        data = encode_swap_call(1000000, 42, token_out)
        assert data[:4] == SWAP_SELECTOR
        amount_in, min_out, token = decode(["uint256", "uint256", "address"], data[4:])
        assert (amount_in, min_out, token) == (1000000, 42, Web3.to_checksum_address(token_out))

    @pytest.mark.parametrize("amount", [-1, 2 ** 256, "10", True])
    def test_rejects_bad_amount(self, amount):
        with pytest.raises(InvalidInput):
            encode_transfer(USER, amount)

    def test_encode_bool(self):
        assert encode_bool(True) == b"\x00" * 31 + b"\x01"
        assert encode_bool(False) == b"\x00" * 32


class TestExternalPayload:
    """Tests for the role-dependent external payload."""

    def test_role_asymmetry(self):
        """Shield emits on the created resource, unshield on the consumed one."""
        assert should_emit_payload(Direction.SHIELD, is_consumed=False)
        assert not should_emit_payload(Direction.SHIELD, is_consumed=True)
        assert should_emit_payload(Direction.UNSHIELD, is_consumed=True)
        assert not should_emit_payload(Direction.UNSHIELD, is_consumed=False)

    def test_shield_payload(self):
        intent = ForwarderCallIntent(FORWARDER, USER, 1000, Direction.SHIELD)

        assert build_external_payload(intent, is_consumed=True) == []
        payloads = build_external_payload(intent, is_consumed=False)
        assert len(payloads) == 1
        assert payloads[0].deletion_criterion == DeletionCriterion.NEVER == 1

        forwarder, call_data, expected_output = payloads[0].decode()
        assert forwarder == FORWARDER
        assert call_data == encode_transfer_from(USER, FORWARDER, 1000)
        assert expected_output == encode_bool(True)

    def test_unshield_payload(self):
        intent = ForwarderCallIntent(FORWARDER, USER, 1000, "unshield")

        assert build_external_payload(intent, is_consumed=False) == []
        payloads = build_external_payload(intent, is_consumed=True)
        assert len(payloads) == 1
        _, call_data, _ = payloads[0].decode()
        assert call_data[:4] == TRANSFER_SELECTOR
        assert call_data == encode_transfer(USER, 1000)

    def test_intent_accepts_hex_addresses(self):
        intent = ForwarderCallIntent("0x" + FORWARDER.hex(), "0x" + USER.hex(), 1, Direction.SHIELD)
        assert intent.forwarder_address == FORWARDER
        assert intent.user_address == USER

    def test_intent_amount_limited_to_uint128(self):
        with pytest.raises(InvalidInput):
            ForwarderCallIntent(FORWARDER, USER, 2 ** 128, Direction.SHIELD)

    def test_intent_rejects_short_address(self):
        with pytest.raises(InvalidAddress):
            ForwarderCallIntent(FORWARDER[:19], USER, 1, Direction.SHIELD)


class TestPayloadWords:
    """Tests for little-endian word packing."""

    def test_packs_little_endian(self):
        assert payload_words(b"\x01\x00\x00\x00\x02\x00\x00\x00") == [1, 2]

    def test_pads_last_word(self):
        assert payload_words(b"\xff") == [0xff]
        assert payload_words(b"") == []

    def test_external_payload_words(self):
        payload = ExternalPayload(blob=encode_abi_tuple(FORWARDER, b"", b""))
        assert len(payload.words()) == len(payload.blob) // 4
