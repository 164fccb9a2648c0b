"""
Remote proving backend.

Submits proving input to a Bonsai-compatible proving service and tracks the
resulting session. Submission returns immediately with a pending result; the
session is re-queried through ``session_status``.
"""
import json
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..artifacts import ArtifactCache, assemble_calldata
from ..config import BackendMode
from ..exceptions import BackendFailure, NotFound
from ..ids import decode_hex, sha256_hex
from ..models import ProofResult, ProofStatus
from ._rate_limited_log import rate_limited_log
from .base import ProverBackend, ProvingTask

logger = logging.getLogger(__name__)

_FAILED_STATES = {"FAILED", "TIMED_OUT", "ABORTED"}


@dataclass
class RemoteSession:
    """Local record of a session on the remote proving service"""
    proof_id: str
    input_id: str
    session_id: Optional[str]
    kind: str
    result: ProofResult


class RemoteBackend(ProverBackend):
    """Backend for a remote Bonsai-style proving service"""

    mode = BackendMode.REMOTE

    def __init__(
        self,
        api_url: str,
        api_key: str,
        image_id: Optional[str] = None,
        risc0_version: str = "1.4.0",
        cache: Optional[ArtifactCache] = None,
        retry_count: int = 3,
        timeout: int = 30
    ):
        """
        Initialize the remote backend.

        Args:
            api_url: Base URL of the proving service
            api_key: API key sent as ``x-api-key``
            image_id: Guest image id used to create sessions
            risc0_version: zkVM version sent as ``x-risc0-version``
            cache: Artifact cache for chain-ready calldata
            retry_count: Number of retries for HTTP requests
            timeout: Timeout for HTTP requests in seconds
        """
        if not api_key:
            raise ValueError("Remote proving service requires an API key")

        self.api_url = api_url.rstrip("/")
        self.image_id = image_id
        self.cache = cache
        self.timeout = timeout
        self._sessions: Dict[str, RemoteSession] = {}
        self._lock = threading.Lock()

        self.session = requests.Session()
        self.session.headers.update({
            "x-api-key": api_key,
            "x-risc0-version": risc0_version,
        })
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[500, 502, 503, 504],
            allowed_methods=["GET", "PUT"],
            raise_on_status=False,
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

        logger.info(f"Remote proving service configured at {self.api_url}")

    def is_available(self) -> bool:
        try:
            response = self.session.get(f"{self.api_url}/version", timeout=self.timeout)
        except requests.RequestException as e:
            logger.warning(f"Remote proving service unreachable: {e}")
            return False
        return response.status_code < 500

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"Remote prover request failed: {e}")
            raise BackendFailure(f"Remote prover request failed: {str(e)}", diagnostic=str(e))

        if response.status_code >= 400:
            body = response.text
            raise BackendFailure(f"Prover error ({response.status_code}): {body}", diagnostic=body)
        return response

    def _json(self, response: requests.Response) -> Dict[str, Any]:
        try:
            return response.json()
        except ValueError as e:
            raise BackendFailure(f"Invalid JSON response from remote prover: {str(e)}", diagnostic=response.text)

    def prove(self, task: ProvingTask) -> ProofResult:
        logger.info(f"Submitting {task.kind} proof to remote prover: {task.proof_id}")
        input_bytes = json.dumps(task.request.journal_data(), sort_keys=True).encode("utf-8")

        upload = self._json(self._request("GET", f"{self.api_url}/inputs/upload"))
        if "url" not in upload or "uuid" not in upload:
            raise BackendFailure(f"Missing upload url in remote prover response: {upload}")
        self._request("PUT", upload["url"], data=input_bytes)
        input_id = upload["uuid"]
        logger.info(f"Uploaded input to remote prover: {input_id}")

        session_id = None
        if self.image_id:
            created = self._json(self._request(
                "POST",
                f"{self.api_url}/sessions/create",
                json={"img": self.image_id, "input": input_id, "assumptions": [], "execute_only": False},
            ))
            session_id = created.get("uuid")
            if not session_id:
                raise BackendFailure(f"Missing session id in remote prover response: {created}")
            logger.info(f"Created remote proving session {session_id} for {task.proof_id}")
        else:
            logger.warning("No guest image id configured; input uploaded but no session created")

        result = ProofResult(
            proof_id=task.proof_id,
            status=ProofStatus.PENDING,
            image_id=self.image_id or "",
        )
        with self._lock:
            self._sessions[task.proof_id] = RemoteSession(
                proof_id=task.proof_id,
                input_id=input_id,
                session_id=session_id,
                kind=task.kind,
                result=result,
            )
        return result

    def session_status(self, proof_id: str) -> ProofResult:
        with self._lock:
            record = self._sessions.get(proof_id)
        if record is None:
            raise NotFound(f"Proof not found: {proof_id}")
        if record.result.status is not ProofStatus.PENDING or record.session_id is None:
            return record.result

        try:
            status = self._json(self._request("GET", f"{self.api_url}/sessions/status/{record.session_id}"))
        except BackendFailure as e:
            rate_limited_log(f"Remote session {record.session_id} status check failed: {e}", logger_instance=logger)
            raise

        state = str(status.get("status", "")).upper()
        if state == "SUCCEEDED":
            result = self._completed(record, status)
        elif state in _FAILED_STATES:
            error = status.get("error_msg") or f"Remote session {state.lower()}"
            logger.error(f"Remote session {record.session_id} {state}: {error}")
            result = record.result.model_copy(update={"status": ProofStatus.FAILED, "error": error})
        else:
            logger.debug(f"Remote session {record.session_id} is {state or 'unknown'}")
            return record.result

        with self._lock:
            record.result = result
        return result

    def _completed(self, record: RemoteSession, status: Dict[str, Any]) -> ProofResult:
        seal = ""
        receipt_url = status.get("receipt_url")
        if receipt_url:
            receipt = self._request("GET", receipt_url).content
            seal = receipt.hex()

        journal = status.get("journal") or ""
        calldata = None
        transaction = status.get("transaction")
        if transaction:
            calldata = assemble_calldata(decode_hex(transaction, "transaction"))
            if self.cache is not None:
                self.cache.store_path(self.cache.directory / f"{record.kind}_{record.proof_id}.bin", calldata)

        logger.info(f"Remote proof {record.proof_id} completed")
        return record.result.model_copy(update={
            "status": ProofStatus.COMPLETED,
            "journal": journal,
            "seal": seal or sha256_hex(record.input_id),
            "calldata": calldata,
        })

    def close(self) -> None:
        self.session.close()
