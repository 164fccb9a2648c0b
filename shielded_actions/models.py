"""
Data models for the Shielded Actions prover service.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from web3 import Web3

from .config import normalize_token
from .exceptions import InvalidInput, ShieldedActionsError
from .ids import decode_hex, hash_nullifier_key
from .payload import UINT128_MAX, to_address_bytes
from .resources import token_for_logic_ref


class JobStatus(str, Enum):
    """Lifecycle of an orchestrator job"""
    PENDING = "pending"
    GENERATING = "generating"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ProofStatus(str, Enum):
    """Status of a proof as reported by a backend"""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


def _parse_amount(value: Any, field_name: str) -> int:
    if isinstance(value, bool):
        raise ValueError(f"{field_name} must be an integer amount in base units")
    if isinstance(value, int):
        amount = value
    elif isinstance(value, str) and value.strip().isdigit():
        amount = int(value.strip())
    else:
        raise ValueError(f"{field_name} must be an integer amount in base units, got {value!r}")
    if amount < 0 or amount > UINT128_MAX:
        raise ValueError(f"{field_name} out of range: {amount}")
    return amount


def _checksum(value: Any, field_name: str) -> str:
    try:
        raw = to_address_bytes(value, field_name)
    except ShieldedActionsError as e:
        raise ValueError(str(e))
    return Web3.to_checksum_address(raw)


def _hex_key(value: Any) -> str:
    try:
        raw = decode_hex(value, "nullifier_key")
    except ShieldedActionsError as e:
        raise ValueError(str(e))
    if not raw:
        raise ValueError("nullifier_key must not be empty")
    return raw.hex()


class Resource(BaseModel):
    """Shielded resource as exchanged with clients"""
    model_config = ConfigDict(extra="allow")

    logic_ref: str
    label_ref: str = ""
    quantity: int = Field(..., ge=0)
    value_ref: str = ""
    is_ephemeral: bool = False
    nonce: str = ""
    nk_commitment: str = ""
    rand_seed: str = ""


class ShieldRequest(BaseModel):
    """Deposit ERC20 tokens into a new shielded resource"""
    kind: Literal["shield"] = "shield"
    token: str
    amount: int
    sender: str
    nullifier_key: str

    @field_validator("token")
    @classmethod
    def _token(cls, v):
        try:
            return normalize_token(v)
        except ShieldedActionsError as e:
            raise ValueError(str(e))

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        return _parse_amount(v, "amount")

    @field_validator("sender", mode="before")
    @classmethod
    def _sender(cls, v):
        return _checksum(v, "sender")

    @field_validator("nullifier_key", mode="before")
    @classmethod
    def _key(cls, v):
        return _hex_key(v)

    def id_fields(self) -> List[str]:
        return [self.token, str(self.amount), self.sender]

    def journal_data(self) -> Dict[str, Any]:
        return {
            "action": "shield",
            "token": self.token,
            "amount": str(self.amount),
            "sender": self.sender,
            "nullifier_key_commitment": hash_nullifier_key(self.nullifier_key),
        }


class UnshieldRequest(BaseModel):
    """
    Withdraw a shielded resource back to ERC20 tokens.

    Token and amount default to the resource's forwarder token and quantity.
    """
    kind: Literal["unshield"] = "unshield"
    resource: Resource
    recipient: str
    nullifier_key: str
    token: Optional[str] = None
    amount: Optional[int] = None

    @field_validator("recipient", mode="before")
    @classmethod
    def _recipient(cls, v):
        return _checksum(v, "recipient")

    @field_validator("nullifier_key", mode="before")
    @classmethod
    def _key(cls, v):
        return _hex_key(v)

    @field_validator("amount", mode="before")
    @classmethod
    def _amount(cls, v):
        return None if v is None else _parse_amount(v, "amount")

    @model_validator(mode="after")
    def _derive(self):
        try:
            if self.token is None:
                self.token = token_for_logic_ref(self.resource.logic_ref)
            else:
                self.token = normalize_token(self.token)
        except ShieldedActionsError as e:
            raise ValueError(str(e))
        if self.amount is None:
            self.amount = _parse_amount(self.resource.quantity, "resource.quantity")
        elif self.amount > self.resource.quantity:
            raise ValueError(f"amount {self.amount} exceeds resource quantity {self.resource.quantity}")
        return self

    def id_fields(self) -> List[str]:
        return [self.recipient]

    def journal_data(self) -> Dict[str, Any]:
        return {
            "action": "unshield",
            "resource": self.resource.model_dump(),
            "recipient": self.recipient,
            "nullifier_key_commitment": hash_nullifier_key(self.nullifier_key),
        }


class SwapRequest(BaseModel):
    """Swap a shielded resource into a resource of another token"""
    kind: Literal["swap"] = "swap"
    input_resource: Resource
    output_token: str
    min_amount_out: int
    nullifier_key: str

    @field_validator("output_token")
    @classmethod
    def _token(cls, v):
        try:
            return normalize_token(v)
        except ShieldedActionsError as e:
            raise ValueError(str(e))

    @field_validator("min_amount_out", mode="before")
    @classmethod
    def _amount(cls, v):
        return _parse_amount(v, "min_amount_out")

    @field_validator("nullifier_key", mode="before")
    @classmethod
    def _key(cls, v):
        return _hex_key(v)

    def id_fields(self) -> List[str]:
        return [self.output_token, str(self.min_amount_out)]

    def journal_data(self) -> Dict[str, Any]:
        return {
            "action": "swap",
            "input_resource": self.input_resource.model_dump(),
            "output_token": self.output_token,
            "min_amount_out": str(self.min_amount_out),
            "nullifier_key_commitment": hash_nullifier_key(self.nullifier_key),
        }


ProofRequest = Union[ShieldRequest, UnshieldRequest, SwapRequest]

_REQUEST_TYPES = {
    "shield": ShieldRequest,
    "unshield": UnshieldRequest,
    "swap": SwapRequest,
}


def parse_request(kind: str, body: Dict[str, Any]) -> ProofRequest:
    """
    Validate a raw request body.

    Args:
        kind: shield, unshield or swap
        body: Decoded JSON body

    Returns:
        Typed request

    Raises:
        InvalidInput: If the kind is unknown or any field is malformed
    """
    model = _REQUEST_TYPES.get(kind)
    if model is None:
        raise InvalidInput(f"Unknown request kind: {kind}")
    if not isinstance(body, dict):
        raise InvalidInput(f"Request body must be an object, got {type(body).__name__}")
    try:
        return model.model_validate({**body, "kind": kind})
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidInput(f"Invalid {kind} request: {details}")


class ProofResult(BaseModel):
    """Proof artifact produced by a backend"""
    proof_id: str
    status: ProofStatus = ProofStatus.COMPLETED
    journal: str = ""
    seal: str = ""
    image_id: str = ""
    calldata: Optional[bytes] = None
    error: Optional[str] = None

    def calldata_hex(self) -> Optional[str]:
        return None if self.calldata is None else "0x" + self.calldata.hex()

    def proof_data(self) -> Optional[Dict[str, str]]:
        if self.status is not ProofStatus.COMPLETED:
            return None
        return {"journal": self.journal, "seal": self.seal, "image_id": self.image_id}


class JobView(BaseModel):
    """Read-only snapshot of a job"""
    job_id: str
    kind: str
    status: JobStatus
    proof_id: Optional[str] = None
    calldata: Optional[str] = None
    proof: Optional[Dict[str, str]] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    def to_response(self) -> Dict[str, Any]:
        """JSON body of the job-status endpoint, without empty fields"""
        data = self.model_dump(mode="json", exclude_none=True)
        data.pop("created_at", None)
        data.pop("updated_at", None)
        return data


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class ProofJob:
    """Mutable job record owned by the orchestrator"""
    job_id: str
    kind: str
    request: ProofRequest
    status: JobStatus = JobStatus.PENDING
    result: Optional[ProofResult] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    def touch(self) -> None:
        self.updated_at = _now()

    def view(self) -> JobView:
        result = self.result
        return JobView(
            job_id=self.job_id,
            kind=self.kind,
            status=self.status,
            proof_id=result.proof_id if result else None,
            calldata=result.calldata_hex() if result else None,
            proof=result.proof_data() if result else None,
            error=self.error,
            error_kind=self.error_kind,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
