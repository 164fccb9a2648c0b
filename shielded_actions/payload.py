"""
ABI encoding of forwarder calls embedded in a proof's public instance.

A verified proof carries an external payload
``abi.encode(address forwarder, bytes callData, bytes expectedOutput)``
which the protocol adapter decodes and dispatches to the forwarder contract.
The layout must match the on-chain ABI decoder byte for byte.
"""
import struct
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import List, Tuple, Union

from eth_abi import encode

from .exceptions import InvalidAddress, InvalidInput

WORD_SIZE = 32

# transfer(address,uint256)
TRANSFER_SELECTOR = bytes.fromhex("a9059cbb")
# transferFrom(address,address,uint256)
TRANSFER_FROM_SELECTOR = bytes.fromhex("23b872dd")
# exactInputSingle-style swap call routed through the Uniswap forwarder
SWAP_SELECTOR = bytes.fromhex("414bf389")

UINT128_MAX = 2 ** 128 - 1
UINT256_MAX = 2 ** 256 - 1

AddressLike = Union[bytes, str]


class Direction(str, Enum):
    """Direction of the token movement triggered by the forwarder call"""
    SHIELD = "shield"
    UNSHIELD = "unshield"


class DeletionCriterion(IntEnum):
    """When a committed blob may be dropped by the protocol adapter"""
    AFTER_TRANSACTION = 0
    NEVER = 1


def to_address_bytes(address: AddressLike, field: str = "address") -> bytes:
    """
    Convert an address to its 20 raw bytes.

    Args:
        address: 20 raw bytes or a hex string with or without 0x prefix
        field: Name used in error messages

    Returns:
        20-byte address

    Raises:
        InvalidAddress: If the address is not exactly 20 bytes
    """
    if isinstance(address, (bytes, bytearray)):
        raw = bytes(address)
    elif isinstance(address, str):
        hex_part = address[2:] if address.startswith(("0x", "0X")) else address
        try:
            raw = bytes.fromhex(hex_part)
        except ValueError:
            raise InvalidAddress(f"Invalid {field}: not a hex string: {address!r}")
    else:
        raise InvalidAddress(f"Invalid {field}: expected bytes or hex string, got {type(address).__name__}")

    if len(raw) != 20:
        raise InvalidAddress(f"Invalid {field}: must be 20 bytes, got {len(raw)}")
    return raw


def _check_uint(value: int, maximum: int, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidInput(f"{field} must be an integer, got {type(value).__name__}")
    if value < 0 or value > maximum:
        raise InvalidInput(f"{field} out of range: {value}")
    return value


def pad32(length: int) -> int:
    """Round a byte length up to the next multiple of 32"""
    return ((length + WORD_SIZE - 1) // WORD_SIZE) * WORD_SIZE


def _uint_word(value: int) -> bytes:
    return value.to_bytes(WORD_SIZE, "big")


def _dynamic_bytes(data: bytes) -> bytes:
    return _uint_word(len(data)) + data + b"\x00" * (pad32(len(data)) - len(data))


def encode_abi_tuple(forwarder_address: AddressLike, call_data: bytes, expected_output: bytes) -> bytes:
    """
    ABI-encode the tuple ``(address, bytes, bytes)``.

    Head: the address left-padded to 32 bytes, then the offsets of both
    dynamic fields measured from the start of the tuple. Tail: each dynamic
    field as a 32-byte length followed by its data right-padded to 32 bytes.

    Args:
        forwarder_address: Forwarder contract address
        call_data: Call data sent to the forwarder
        expected_output: Bytes the forwarder call must return

    Returns:
        Encoded tuple

    Raises:
        InvalidAddress: If the forwarder address is not 20 bytes
    """
    address = to_address_bytes(forwarder_address, "forwarder_address")
    call_data = bytes(call_data)
    expected_output = bytes(expected_output)

    head_size = 3 * WORD_SIZE
    call_data_offset = head_size
    expected_output_offset = call_data_offset + WORD_SIZE + pad32(len(call_data))

    return b"".join([
        b"\x00" * 12 + address,
        _uint_word(call_data_offset),
        _uint_word(expected_output_offset),
        _dynamic_bytes(call_data),
        _dynamic_bytes(expected_output),
    ])


def _read_dynamic(blob: bytes, offset: int, field: str) -> bytes:
    if offset % WORD_SIZE or offset + WORD_SIZE > len(blob):
        raise InvalidInput(f"Invalid offset for {field}: {offset}")
    length = int.from_bytes(blob[offset:offset + WORD_SIZE], "big")
    start = offset + WORD_SIZE
    if start + pad32(length) > len(blob):
        raise InvalidInput(f"Length of {field} exceeds payload: {length}")
    return blob[start:start + length]


def decode_abi_tuple(blob: bytes) -> Tuple[bytes, bytes, bytes]:
    """
    Decode an ``(address, bytes, bytes)`` tuple produced by encode_abi_tuple.

    Returns:
        Tuple of (forwarder address, call data, expected output)

    Raises:
        InvalidInput: If the blob is truncated or its offsets are inconsistent
    """
    if len(blob) < 3 * WORD_SIZE:
        raise InvalidInput(f"Payload too short: {len(blob)} bytes")
    if any(blob[:12]):
        raise InvalidInput("Address word has non-zero padding")
    address = blob[12:WORD_SIZE]
    call_data_offset = int.from_bytes(blob[WORD_SIZE:2 * WORD_SIZE], "big")
    expected_offset = int.from_bytes(blob[2 * WORD_SIZE:3 * WORD_SIZE], "big")
    call_data = _read_dynamic(blob, call_data_offset, "call_data")
    expected_output = _read_dynamic(blob, expected_offset, "expected_output")
    return address, call_data, expected_output


def encode_bool(value: bool) -> bytes:
    """ABI encoding of a boolean (32-byte word)"""
    return encode(["bool"], [bool(value)])


def encode_transfer(to: AddressLike, amount: int) -> bytes:
    """
    Call data for ``transfer(address to, uint256 amount)``.

    Raises:
        InvalidAddress: If ``to`` is not 20 bytes
        InvalidInput: If amount is not a uint256
    """
    recipient = to_address_bytes(to, "to")
    amount = _check_uint(amount, UINT256_MAX, "amount")
    return TRANSFER_SELECTOR + encode(["address", "uint256"], [recipient, amount])


def encode_transfer_from(from_address: AddressLike, to: AddressLike, amount: int) -> bytes:
    """
    Call data for ``transferFrom(address from, address to, uint256 amount)``.

    Raises:
        InvalidAddress: If an address is not 20 bytes
        InvalidInput: If amount is not a uint256
    """
    sender = to_address_bytes(from_address, "from")
    recipient = to_address_bytes(to, "to")
    amount = _check_uint(amount, UINT256_MAX, "amount")
    return TRANSFER_FROM_SELECTOR + encode(["address", "address", "uint256"], [sender, recipient, amount])


def encode_swap_call(amount_in: int, min_amount_out: int, token_out: AddressLike) -> bytes:
    """Call data for the swap forwarder: (amountIn, amountOutMinimum, tokenOut)"""
    amount_in = _check_uint(amount_in, UINT256_MAX, "amount_in")
    min_amount_out = _check_uint(min_amount_out, UINT256_MAX, "min_amount_out")
    token = to_address_bytes(token_out, "token_out")
    return SWAP_SELECTOR + encode(["uint256", "uint256", "address"], [amount_in, min_amount_out, token])


@dataclass(frozen=True)
class ForwarderCallIntent:
    """
    What a shielded action asks the forwarder contract to do.

    For a shield the user address is the source of ``transferFrom``; for an
    unshield it is the destination of ``transfer``.
    """
    forwarder_address: bytes
    user_address: bytes
    amount: int
    direction: Direction

    def __post_init__(self):
        object.__setattr__(self, "forwarder_address", to_address_bytes(self.forwarder_address, "forwarder_address"))
        object.__setattr__(self, "user_address", to_address_bytes(self.user_address, "user_address"))
        _check_uint(self.amount, UINT128_MAX, "amount")
        object.__setattr__(self, "direction", Direction(self.direction))

    def call_data(self) -> bytes:
        """ERC20 call data for this intent"""
        if self.direction is Direction.SHIELD:
            # Shield pulls the tokens into the forwarder
            return encode_transfer_from(self.user_address, self.forwarder_address, self.amount)
        return encode_transfer(self.user_address, self.amount)


@dataclass(frozen=True)
class ExternalPayload:
    """Blob committed in a logic instance's external payload list"""
    blob: bytes
    deletion_criterion: DeletionCriterion = DeletionCriterion.NEVER

    def decode(self) -> Tuple[bytes, bytes, bytes]:
        return decode_abi_tuple(self.blob)

    def words(self) -> List[int]:
        return payload_words(self.blob)


def should_emit_payload(direction: Direction, is_consumed: bool) -> bool:
    """
    Whether a resource in the given role carries the forwarder call.

    Shield: only the created resource. Unshield: only the consumed resource.
    """
    if Direction(direction) is Direction.SHIELD:
        return not is_consumed
    return is_consumed


def build_external_payload(intent: ForwarderCallIntent, is_consumed: bool) -> List[ExternalPayload]:
    """
    Build the external payload list for one resource of a shielded action.

    Args:
        intent: Forwarder call to trigger
        is_consumed: True for the consumed resource, False for the created one

    Returns:
        Empty list when this role does not trigger the call, otherwise a
        single payload wrapping ``(forwarder, callData, abi.encode(true))``
    """
    if not should_emit_payload(intent.direction, is_consumed):
        return []

    blob = encode_abi_tuple(intent.forwarder_address, intent.call_data(), encode_bool(True))
    return [ExternalPayload(blob=blob, deletion_criterion=DeletionCriterion.NEVER)]


def payload_words(blob: bytes) -> List[int]:
    """
    Pack a blob into little-endian u32 words, zero-padding the last word.

    This is how blobs are laid out inside the proving runtime's journal.
    """
    padded = bytes(blob) + b"\x00" * (-len(blob) % 4)
    return list(struct.unpack(f"<{len(padded) // 4}I", padded))
