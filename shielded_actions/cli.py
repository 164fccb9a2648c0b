"""
Command line interface for the Shielded Actions prover service.
"""
import argparse
import dataclasses
import json
import logging
import os
import sys
from typing import Any, Dict, List, Optional

from web3 import Web3

from .config import BackendMode, ProverConfig, forwarder_address
from .exceptions import ShieldedActionsError
from .ids import generate_proof_id
from .payload import Direction, ExternalPayload, ForwarderCallIntent, build_external_payload, encode_transfer
from .version import __version__

logger = logging.getLogger(__name__)


def _configure_logging(level: Optional[str]) -> None:
    level_name = (level or os.environ.get("SHIELDED_LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(
        level=getattr(logging, level_name, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    from .server import create_app

    config = ProverConfig.from_env()
    if args.backend:
        config = dataclasses.replace(config, mode=BackendMode(args.backend))
    port = args.port or config.port
    logger.info(f"Starting prover service on {args.host}:{port} in {config.mode.value} mode")
    uvicorn.run(create_app(config=config), host=args.host, port=port)
    return 0


def _encode_transfer(args: argparse.Namespace) -> int:
    print("0x" + encode_transfer(args.to, args.amount).hex())
    return 0


def _payload_json(payload: ExternalPayload) -> Dict[str, Any]:
    forwarder, call_data, expected_output = payload.decode()
    return {
        "blob": "0x" + payload.blob.hex(),
        "deletion_criterion": int(payload.deletion_criterion),
        "forwarder": Web3.to_checksum_address(forwarder),
        "call_data": "0x" + call_data.hex(),
        "expected_output": "0x" + expected_output.hex(),
        # u32 words as laid out in the guest journal
        "words": payload.words(),
    }


def _encode_payload(args: argparse.Namespace) -> int:
    forwarder = args.forwarder or forwarder_address(args.token)
    intent = ForwarderCallIntent(
        forwarder_address=forwarder,
        user_address=args.user,
        amount=args.amount,
        direction=Direction(args.direction),
    )
    payloads = build_external_payload(intent, is_consumed=args.consumed)
    print(json.dumps([_payload_json(p) for p in payloads], indent=2))
    return 0


def _ephemeral_test(args: argparse.Namespace) -> int:
    from .artifacts import ArtifactCache
    from .backends.local import LocalBackend

    config = ProverConfig.from_env()
    cache = ArtifactCache(args.artifact_dir or config.artifact_dir, lock_timeout=config.lock_timeout)
    backend = LocalBackend(
        command=config.local_command,
        cache=cache,
        workdir=config.local_workdir,
        required_tools=config.local_requires,
    )
    proof_id = generate_proof_id("test-ephemeral", [])
    result = backend.prove_ephemeral_test(proof_id, timeout=config.job_timeout)
    print(result.calldata_hex())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="shielded-actions",
        description="Proof generation service for shielded ERC20 actions.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        help="Logging level (default: SHIELDED_LOG_LEVEL or INFO)",
        default=None,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP service")
    serve.add_argument("--host", default="0.0.0.0", help="Interface to bind")
    serve.add_argument("--port", type=int, default=None, help="Port (default: PORT or 3002)")
    serve.add_argument(
        "--backend",
        choices=[m.value for m in BackendMode],
        help="Override the backend selected from the environment",
    )
    serve.set_defaults(func=_serve)

    transfer = subparsers.add_parser("encode-transfer", help="Print ERC20 transfer call data")
    transfer.add_argument("--to", required=True, help="Recipient address")
    transfer.add_argument("--amount", required=True, type=int, help="Amount in base units")
    transfer.set_defaults(func=_encode_transfer)

    payload = subparsers.add_parser("encode-payload", help="Print the external payload of one resource")
    payload.add_argument("--direction", required=True, choices=[d.value for d in Direction])
    payload.add_argument("--token", default="USDC", help="Token whose forwarder to call (default: USDC)")
    payload.add_argument("--forwarder", help="Explicit forwarder address")
    payload.add_argument("--user", required=True, help="User address")
    payload.add_argument("--amount", required=True, type=int, help="Amount in base units")
    payload.add_argument("--consumed", action="store_true", help="Encode for the consumed resource")
    payload.set_defaults(func=_encode_payload)

    ephemeral = subparsers.add_parser("ephemeral-test", help="Generate the ephemeral test transaction locally")
    ephemeral.add_argument("--artifact-dir", help="Artifact cache directory")
    ephemeral.set_defaults(func=_ephemeral_test)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.log_level)
    try:
        return args.func(args)
    except (ShieldedActionsError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
