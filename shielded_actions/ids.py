"""
Identifier and hashing helpers.
"""
import hashlib
import time
from typing import Iterable, Optional, Union

from .exceptions import InvalidInput

PROOF_ID_LENGTH = 16
EPHEMERAL_TEST_ARTIFACT = "ephemeral_test_tx.bin"


def sha256_hex(data: Union[str, bytes]) -> str:
    """
    Compute SHA-256 hash of data and return hex digest.

    Args:
        data: String or bytes to hash

    Returns:
        Hex digest string
    """
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).hexdigest()


def decode_hex(value: str, field: str = "value") -> bytes:
    """
    Decode a hex string with or without 0x prefix.

    Raises:
        InvalidInput: If the value is not valid hex
    """
    if not isinstance(value, str):
        raise InvalidInput(f"{field} must be a hex string, got {type(value).__name__}")
    hex_part = value[2:] if value.startswith(("0x", "0X")) else value
    try:
        return bytes.fromhex(hex_part)
    except ValueError as e:
        raise InvalidInput(f"Invalid hex for {field}: {str(e)}")


def generate_proof_id(kind: str, fields: Iterable[str], now_ns: Optional[int] = None) -> str:
    """
    Derive an opaque identifier for a job or proof.

    The digest covers the kind, the salient request fields and the wall-clock
    nanoseconds, so identical requests submitted at different times get
    different ids. Not meant to be unpredictable.

    Args:
        kind: Request kind (shield, unshield, swap)
        fields: Salient request fields
        now_ns: Timestamp override in nanoseconds

    Returns:
        16-character lowercase hex string
    """
    hasher = hashlib.sha256()
    hasher.update(kind.encode("utf-8"))
    for value in fields:
        hasher.update(str(value).encode("utf-8"))
    ns = time.time_ns() if now_ns is None else now_ns
    hasher.update(ns.to_bytes(16, "little"))
    return hasher.hexdigest()[:PROOF_ID_LENGTH]


def hash_nullifier_key(key_hex: str) -> str:
    """Commitment to a nullifier key: sha256 of its decoded bytes"""
    return hashlib.sha256(decode_hex(key_hex, "nullifier_key")).hexdigest()


def artifact_filename(kind: str, token: str, amount: int) -> str:
    """
    Filename of a cached proving artifact.

    Args:
        kind: Request kind
        token: Token symbol (any case)
        amount: Amount in token base units

    Returns:
        File name such as ``shield_usdc_1000000.bin``
    """
    return f"{kind}_{token.lower()}_{int(amount)}.bin"
