"""
HTTP interface of the prover service.

Asynchronous clients submit to ``/api/prove/{kind}`` and poll
``/api/job/{job_id}``. The synchronous ``/api/{kind}`` routes prove inline
and return the full result together with the forwarder call to sign.
"""
import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from web3 import Web3

from .config import CONTRACTS, NETWORK, TOKENS, ProverConfig, forwarder_address, token_address
from .exceptions import (
    BackendFailure,
    DependencyUnavailable,
    InvalidInput,
    LockError,
    NotFound,
    ShieldedActionsError,
)
from .models import ProofResult, ShieldRequest, SwapRequest, UnshieldRequest, parse_request
from .orchestrator import ProofOrchestrator
from .payload import encode_swap_call, encode_transfer, encode_transfer_from
from .resources import (
    build_resource,
    forwarder_from_logic_ref,
    generate_keypair,
    resource_commitment,
    resource_nullifier,
)
from .version import __version__

logger = logging.getLogger(__name__)

SERVICE_NAME = "shielded-actions-prover"

_STATUS_CODES = [
    (InvalidInput, 400),
    (NotFound, 404),
    (DependencyUnavailable, 503),
    (BackendFailure, 502),
    (LockError, 500),
]

ENDPOINTS = [
    "POST /api/prove/{shield,unshield,swap} - Submit a proof job",
    "GET /api/job/:job_id - Poll a proof job",
    "GET /api/status/:proof_id - Status of a proof",
    "POST /api/shield - Create shield transaction proof",
    "POST /api/swap - Create shielded swap transaction proof",
    "POST /api/unshield - Create unshield transaction proof",
    "GET /api/resources/:address - Get shielded resources for address",
    "POST /api/generate-keypair - Generate a nullifier key pair",
]


def status_code_for(error: ShieldedActionsError) -> int:
    for error_type, code in _STATUS_CODES:
        if isinstance(error, error_type):
            return code
    return 500


def _hex(data: bytes) -> str:
    return "0x" + data.hex()


def _proof_body(result: ProofResult) -> Dict[str, Any]:
    body = {
        "proof_id": result.proof_id,
        "status": result.status.value,
        "journal": result.journal,
        "seal": result.seal,
        "image_id": result.image_id,
        "calldata": result.calldata_hex(),
    }
    if result.error:
        body["error"] = result.error
    return body


def _shield_response(orchestrator: ProofOrchestrator, request: ShieldRequest) -> Dict[str, Any]:
    forwarder = forwarder_address(request.token)
    call_data = encode_transfer_from(request.sender, forwarder, request.amount)
    result = orchestrator.prove(request)

    resource = build_resource(request.token, request.amount, request.sender, request.nullifier_key, forwarder)
    commitment = resource_commitment(resource)
    orchestrator.resources.store(commitment, {
        "owner": request.sender,
        "token": request.token,
        "amount": str(request.amount),
        "resource": resource,
        "commitment": commitment,
    })

    return {
        "proof": _proof_body(result),
        "resource_commitment": commitment,
        "resource": resource,
        "forwarder_call": {"to": forwarder, "data": _hex(call_data)},
    }


def _unshield_response(orchestrator: ProofOrchestrator, request: UnshieldRequest) -> Dict[str, Any]:
    resource = request.resource.model_dump()
    commitment = resource_commitment(resource)
    forwarder = forwarder_from_logic_ref(request.resource.logic_ref)
    call_data = encode_transfer(request.recipient, request.amount)

    with orchestrator.resources.spending(commitment):
        result = orchestrator.prove(request)

    return {
        "proof": _proof_body(result),
        "nullifier": resource_nullifier(resource, request.nullifier_key),
        "forwarder_call": {"to": forwarder, "data": _hex(call_data)},
    }


def _swap_response(orchestrator: ProofOrchestrator, request: SwapRequest) -> Dict[str, Any]:
    input_resource = request.input_resource.model_dump()
    commitment = resource_commitment(input_resource)
    call_data = encode_swap_call(
        request.input_resource.quantity,
        request.min_amount_out,
        token_address(request.output_token),
    )

    with orchestrator.resources.spending(commitment):
        result = orchestrator.prove(request)

    new_resource = build_resource(
        request.output_token,
        request.min_amount_out,
        owner="",
        nullifier_key=request.nullifier_key,
        forwarder=forwarder_address(request.output_token),
        value_ref=request.input_resource.value_ref or "00" * 32,
    )
    return {
        "proof": _proof_body(result),
        "nullifier": resource_nullifier(input_resource, request.nullifier_key),
        "new_resource_commitment": resource_commitment(new_resource),
        "new_resource": new_resource,
        "uniswap_call": {
            "to": Web3.to_checksum_address(CONTRACTS["uniswap_forwarder"]),
            "data": _hex(call_data),
        },
    }


_SYNC_HANDLERS = {
    "shield": _shield_response,
    "unshield": _unshield_response,
    "swap": _swap_response,
}


def create_app(
    orchestrator: Optional[ProofOrchestrator] = None,
    config: Optional[ProverConfig] = None
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        orchestrator: Orchestrator to serve; built from the config when omitted
        config: Service configuration; read from the environment when omitted

    Returns:
        FastAPI application
    """
    if orchestrator is None:
        orchestrator = ProofOrchestrator(config or ProverConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        orchestrator.shutdown(wait=False)

    app = FastAPI(title="Shielded Actions Prover", version=__version__, lifespan=lifespan)
    app.state.orchestrator = orchestrator
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["content-type", "authorization"],
    )

    @app.exception_handler(ShieldedActionsError)
    async def handle_service_error(request: Request, exc: ShieldedActionsError):
        code = status_code_for(exc)
        if code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc}")
        return JSONResponse(status_code=code, content={"error": str(exc), "error_kind": exc.error_kind})

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "service": SERVICE_NAME,
            "mode": orchestrator.mode.value,
            "backend_available": orchestrator.backend.is_available(),
        }

    @app.get("/api/info")
    def info():
        return {
            "version": __version__,
            "network": NETWORK,
            "mode": orchestrator.mode.value,
            "contracts": dict(CONTRACTS),
            "tokens": {
                symbol: {"address": token_address(symbol), "decimals": token["decimals"]}
                for symbol, token in TOKENS.items()
            },
            "endpoints": ENDPOINTS,
        }

    @app.post("/api/prove/{kind}")
    def submit_proof(kind: str, body: Any = Body(...)):
        request = parse_request(kind, body)
        return {"job_id": orchestrator.submit(request)}

    @app.get("/api/job/{job_id}")
    def get_job(job_id: str):
        return orchestrator.poll(job_id).to_response()

    @app.get("/api/jobs")
    def list_jobs():
        return {"jobs": [view.to_response() for view in orchestrator.list_jobs()]}

    @app.get("/api/status/{proof_id}")
    def get_proof_status(proof_id: str):
        return orchestrator.status(proof_id).to_response()

    @app.post("/api/generate-keypair")
    def create_keypair():
        return generate_keypair()

    @app.get("/api/resources/{address}")
    def get_resources(address: str):
        return {"address": address, "resources": orchestrator.resources.by_owner(address)}

    @app.post("/api/{kind}")
    def prove_sync(kind: str, body: Any = Body(...)):
        handler = _SYNC_HANDLERS.get(kind)
        if handler is None:
            raise NotFound(f"Unknown endpoint: /api/{kind}")
        return handler(orchestrator, parse_request(kind, body))

    return app
