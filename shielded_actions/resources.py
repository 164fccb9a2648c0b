"""
Shielded resource helpers and the in-memory resource store.
"""
import json
import logging
import secrets
import threading
from contextlib import contextmanager
from typing import Any, Dict, List, Optional

from web3 import Web3

from .config import CONTRACTS, TOKENS, normalize_token
from .exceptions import InvalidInput
from .ids import decode_hex, sha256_hex

logger = logging.getLogger(__name__)


def hash_logic_ref(forwarder: str) -> str:
    return sha256_hex(Web3.to_checksum_address(forwarder))


def hash_label_ref(token: str) -> str:
    return sha256_hex(token)


def hash_value_ref(owner: str) -> str:
    return sha256_hex(owner)


def _canonical(data: Any) -> bytes:
    return json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")


def build_resource(
    token: str,
    amount: int,
    owner: str,
    nullifier_key: str,
    forwarder: str,
    value_ref: Optional[str] = None
) -> Dict[str, Any]:
    """
    Build a shielded resource description.

    Args:
        token: Token symbol
        amount: Quantity in token base units
        owner: Owner address, hashed into the value reference
        nullifier_key: Hex nullifier key of the owner
        forwarder: Forwarder address, hashed into the logic reference
        value_ref: Explicit value reference (swap outputs inherit the input's)

    Returns:
        Resource dictionary with hex fields
    """
    nk_commitment = sha256_hex(decode_hex(nullifier_key, "nullifier_key"))
    return {
        "logic_ref": hash_logic_ref(forwarder),
        "label_ref": hash_label_ref(token),
        "quantity": int(amount),
        "value_ref": value_ref if value_ref is not None else hash_value_ref(owner),
        "is_ephemeral": False,
        "nonce": secrets.token_bytes(32).hex(),
        "nk_commitment": nk_commitment,
        "rand_seed": secrets.token_bytes(32).hex(),
    }


def resource_commitment(resource: Dict[str, Any]) -> str:
    """Commitment to a resource: sha256 of its canonical JSON form"""
    return sha256_hex(_canonical(resource))


def resource_nullifier(resource: Dict[str, Any], nullifier_key: str) -> str:
    """Nullifier of a resource for the given key"""
    key = decode_hex(nullifier_key, "nullifier_key").hex()
    return sha256_hex(_canonical({"resource": resource, "nullifier_key": key}))


def token_for_logic_ref(logic_ref: str) -> str:
    """
    Map a resource logic reference back to its token symbol.

    Raises:
        InvalidInput: If the logic reference matches no known forwarder
    """
    ref = (logic_ref or "").lower()
    if ref.startswith("0x"):
        ref = ref[2:]
    for symbol, info in TOKENS.items():
        if hash_logic_ref(CONTRACTS[info["forwarder"]]) == ref:
            return symbol
    raise InvalidInput(f"Unknown logic_ref: {logic_ref}")


def forwarder_from_logic_ref(logic_ref: str) -> str:
    """Forwarder address encoded by a resource's logic reference"""
    symbol = token_for_logic_ref(logic_ref)
    return Web3.to_checksum_address(CONTRACTS[TOKENS[normalize_token(symbol)]["forwarder"]])


def generate_keypair() -> Dict[str, str]:
    """
    Generate a new nullifier key pair.

    Returns:
        Dictionary with hex ``private_key`` and its sha256 ``public_key``
    """
    private_key = secrets.token_bytes(32)
    return {
        "private_key": private_key.hex(),
        "public_key": sha256_hex(private_key),
    }


class ResourceStore:
    """Thread-safe in-memory index of shielded resources by commitment and owner"""

    def __init__(self):
        self._resources: Dict[str, Dict[str, Any]] = {}
        self._owners: Dict[str, List[str]] = {}
        self._spent = set()
        self._claimed = set()
        self._lock = threading.RLock()

    @staticmethod
    def _owner_key(owner: str) -> str:
        return owner.lower()

    def store(self, commitment: str, resource_data: Dict[str, Any]) -> None:
        """
        Store a new shielded resource.

        Args:
            commitment: Resource commitment (hex)
            resource_data: Record including an ``owner`` field
        """
        owner = resource_data.get("owner")
        if not owner:
            raise InvalidInput("Resource record must include an owner")
        with self._lock:
            self._resources[commitment] = resource_data
            commitments = self._owners.setdefault(self._owner_key(owner), [])
            if commitment not in commitments:
                commitments.insert(0, commitment)
        logger.debug(f"Stored resource {commitment[:16]}... for {owner}")

    def by_owner(self, owner: str) -> List[Dict[str, Any]]:
        """Unspent resources held by an owner, newest first"""
        with self._lock:
            commitments = self._owners.get(self._owner_key(owner), [])
            return [
                self._resources[c] for c in commitments
                if c in self._resources and c not in self._spent
            ]

    def mark_spent(self, commitment: str) -> None:
        with self._lock:
            self._claimed.discard(commitment)
            self._spent.add(commitment)

    def claim(self, commitment: str) -> None:
        """
        Reserve a resource for an action that will spend it.

        Raises:
            InvalidInput: If the resource is spent or claimed by an action in progress
        """
        with self._lock:
            if self.is_nullified(commitment):
                raise InvalidInput(f"Resource {commitment} has already been spent")
            if commitment in self._claimed:
                raise InvalidInput(f"Resource {commitment} is already being spent")
            self._claimed.add(commitment)

    def release(self, commitment: str) -> None:
        with self._lock:
            self._claimed.discard(commitment)

    @contextmanager
    def spending(self, commitment: str):
        """
        Claim a resource for the duration of the block and mark it spent when
        the block succeeds. The claim is dropped if the block raises.
        """
        self.claim(commitment)
        try:
            yield
        except BaseException:
            self.release(commitment)
            raise
        self.mark_spent(commitment)

    def is_nullified(self, commitment: str) -> bool:
        with self._lock:
            return commitment in self._spent
