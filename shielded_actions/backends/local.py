"""
Local proving backend.

Delegates proof generation to the external ``local-prove`` toolchain, which
runs the zkVM locally (several minutes per proof) and writes the protocol
adapter calldata to ``{kind}_{token}_{amount}.bin`` in its working
directory. Results are published into the artifact cache, which is checked
before the toolchain is ever started.
"""
import hashlib
import logging
import shlex
import shutil
import subprocess
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from ..artifacts import ArtifactCache, split_calldata
from ..config import BackendMode
from ..exceptions import BackendFailure, DependencyUnavailable, ProofTimeoutError
from ..ids import EPHEMERAL_TEST_ARTIFACT, artifact_filename
from ..models import ProofResult, ProofStatus, ShieldRequest, UnshieldRequest
from .base import ProverBackend, ProvingTask

logger = logging.getLogger(__name__)

LOCAL_IMAGE_ID = "forwarder_logic_groth16"

INSTALL_HINT = (
    "Install RISC Zero with 'curl -L https://risczero.com/install | sh' and "
    "'rzup install', then build the prover with "
    "'cargo build --release --bin local-prove'."
)


class LocalBackend(ProverBackend):
    """Backend driving the external local proving toolchain"""

    mode = BackendMode.LOCAL

    def __init__(
        self,
        command: str,
        cache: ArtifactCache,
        workdir: Optional[str] = None,
        required_tools: Sequence[str] = ()
    ):
        """
        Initialize the local backend.

        Args:
            command: Toolchain command line, e.g. ``local-prove`` or
                ``cargo run --release --bin local-prove --``
            cache: Artifact cache to read and publish into
            workdir: Directory the toolchain runs in. When unset each run
                gets a private staging directory under the cache.
            required_tools: Extra executables that must be on PATH
        """
        self.argv = shlex.split(command)
        if not self.argv:
            raise ValueError("Local prover command must not be empty")
        self.cache = cache
        self.workdir = Path(workdir) if workdir else None
        self.required_tools = tuple(required_tools)
        self._key_locks: Dict[str, List] = {}
        self._key_locks_lock = threading.Lock()

    def _missing_tools(self) -> List[str]:
        tools = [self.argv[0], *self.required_tools]
        return [tool for tool in tools if shutil.which(tool) is None]

    def is_available(self) -> bool:
        return not self._missing_tools()

    def ensure_available(self) -> None:
        """
        Raises:
            DependencyUnavailable: If the toolchain or a required tool is not on PATH
        """
        missing = self._missing_tools()
        if missing:
            raise DependencyUnavailable(
                f"Local proving toolchain unavailable: {', '.join(missing)} not found on PATH. {INSTALL_HINT}"
            )

    @contextmanager
    def _key_lock(self, filename: str):
        """Serialize work on one artifact; entries are dropped once no caller holds them"""
        with self._key_locks_lock:
            entry = self._key_locks.setdefault(filename, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._key_locks_lock:
                entry[1] -= 1
                if not entry[1]:
                    del self._key_locks[filename]

    @staticmethod
    def _toolchain_args(task: ProvingTask) -> Tuple[str, int, List[str]]:
        request = task.request
        if isinstance(request, ShieldRequest):
            return request.token, request.amount, ["--sender", request.sender]
        if isinstance(request, UnshieldRequest):
            return request.token, request.amount, ["--recipient", request.recipient]
        raise BackendFailure(f"Local proving toolchain does not support {task.kind} requests")

    def prove(self, task: ProvingTask) -> ProofResult:
        token, amount, address_args = self._toolchain_args(task)
        filename = artifact_filename(task.kind, token, amount)

        with self._key_lock(filename):
            cached = self.cache.load(task.kind, token, amount)
            if cached is not None:
                logger.info(f"Using cached artifact {filename} for {task.proof_id}")
                return self._result(task.proof_id, cached)

            self.ensure_available()
            args = [task.kind, "--token", token.upper(), "--amount", str(amount), *address_args]
            produced = self._run(args, filename, task.timeout)
            split_calldata(produced)
            self.cache.store(task.kind, token, amount, produced)

            calldata = self.cache.load(task.kind, token, amount)
            if calldata is None:
                raise BackendFailure(f"Artifact {filename} disappeared after publishing")
            return self._result(task.proof_id, calldata)

    def prove_ephemeral_test(self, proof_id: str, timeout: float) -> ProofResult:
        """
        Generate (or reuse) the ephemeral test transaction.

        The ephemeral transaction uses zero-quantity resources rooted at the
        initial commitment root, so it verifies on a fresh deployment.
        """
        path = self.cache.directory / EPHEMERAL_TEST_ARTIFACT

        with self._key_lock(EPHEMERAL_TEST_ARTIFACT):
            cached = self.cache.load_path(path)
            if cached is None:
                self.ensure_available()
                produced = self._run(["test-ephemeral"], EPHEMERAL_TEST_ARTIFACT, timeout)
                split_calldata(produced)
                self.cache.store_path(path, produced)
                cached = self.cache.load_path(path)
            if cached is None:
                raise BackendFailure(f"Artifact {EPHEMERAL_TEST_ARTIFACT} disappeared after publishing")
            return self._result(proof_id, cached)

    def _run(self, args: List[str], filename: str, timeout: float) -> bytes:
        """
        Run the toolchain and return the artifact it wrote.

        Raises:
            DependencyUnavailable: If the command cannot be executed
            ProofTimeoutError: If the run exceeds the timeout
            BackendFailure: On non-zero exit or a missing output file
        """
        argv = [*self.argv, *args]
        logger.info(f"Running local prover: {' '.join(argv)} (timeout {timeout:.0f}s)")

        if self.workdir is not None:
            self.workdir.mkdir(parents=True, exist_ok=True)
            return self._run_in(argv, self.workdir, filename, timeout)

        staging_root = self.cache.directory / "staging"
        staging_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(dir=str(staging_root)) as staging:
            return self._run_in(argv, Path(staging), filename, timeout)

    def _run_in(self, argv: List[str], cwd: Path, filename: str, timeout: float) -> bytes:
        output_path = cwd / filename
        try:
            completed = subprocess.run(
                argv,
                cwd=str(cwd),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ProofTimeoutError(
                f"Local prover timed out after {timeout:.0f}s",
                diagnostic=_diagnostic(_text(e.stderr) or _text(e.stdout)),
            )
        except OSError as e:
            raise DependencyUnavailable(f"Failed to start local prover '{argv[0]}': {e}. {INSTALL_HINT}")

        if completed.returncode != 0:
            diagnostic = _diagnostic(completed.stderr or completed.stdout)
            logger.error(f"Local prover exited with status {completed.returncode}")
            raise BackendFailure(
                f"Local prover failed with exit status {completed.returncode}: {diagnostic}",
                diagnostic=diagnostic,
            )

        try:
            data = output_path.read_bytes()
        except FileNotFoundError:
            raise BackendFailure(
                f"Local prover did not produce {filename}",
                diagnostic=_diagnostic(completed.stdout),
            )
        finally:
            if self.workdir is not None and output_path.exists():
                output_path.unlink()

        logger.info(f"Local prover produced {filename} ({len(data)} bytes)")
        return data

    @staticmethod
    def _result(proof_id: str, calldata: bytes) -> ProofResult:
        return ProofResult(
            proof_id=proof_id,
            status=ProofStatus.COMPLETED,
            journal="",
            seal=hashlib.sha256(calldata).hexdigest(),
            image_id=LOCAL_IMAGE_ID,
            calldata=calldata,
        )


def _text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _diagnostic(text: str) -> str:
    return (text or "").strip()
