"""
Proof job orchestration.

Jobs move through ``pending -> generating -> completed | failed`` and never
go back. The job table is guarded by a reader/writer lock that is never held
while a backend is running; proving work reaches a fixed pool of worker
threads through a queue.
"""
import logging
import queue
import threading
import time
from contextlib import contextmanager
from functools import partial
from typing import Callable, Dict, List, Optional, Tuple

from .artifacts import ArtifactCache
from .backends.base import ProverBackend, ProvingTask, get_backend
from .config import BackendMode, ProverConfig
from .exceptions import BackendFailure, LockError, NotFound, ProofTimeoutError, ShieldedActionsError
from .ids import generate_proof_id
from .models import JobStatus, JobView, ProofJob, ProofRequest, ProofResult, ProofStatus
from .resources import ResourceStore

logger = logging.getLogger(__name__)

_STOP = None


class ReadWriteLock:
    """
    Non-reentrant reader/writer lock with bounded acquisition.

    Any number of readers may hold the lock at once; a writer holds it alone.
    """

    def __init__(self, timeout: float):
        self.timeout = timeout
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def _wait(self, predicate: Callable[[], bool], what: str) -> None:
        if not self._cond.wait_for(predicate, timeout=self.timeout):
            logger.error(f"Timed out after {self.timeout}s waiting for {what} lock on job table")
            raise LockError(f"Could not acquire {what} lock within {self.timeout}s")

    @contextmanager
    def read(self):
        with self._cond:
            self._wait(lambda: not self._writer, "read")
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self):
        with self._cond:
            self._wait(lambda: not self._writer and self._readers == 0, "write")
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class ProofOrchestrator:
    """
    Accepts proof requests, runs them on the configured backend and tracks
    their status.

    Example:
        orchestrator = ProofOrchestrator(ProverConfig.from_env())
        job_id = orchestrator.submit(parse_request("shield", body))
        view = orchestrator.poll(job_id)
    """

    def __init__(
        self,
        config: Optional[ProverConfig] = None,
        backend: Optional[ProverBackend] = None,
        cache: Optional[ArtifactCache] = None,
        resource_store: Optional[ResourceStore] = None,
        start_workers: bool = True
    ):
        """
        Initialize the orchestrator.

        Args:
            config: Service configuration (defaults to mock mode)
            backend: Backend override; built from the config when omitted
            cache: Artifact cache shared with the backend
            resource_store: Store of shielded resources created by this service
            start_workers: Start the worker pool immediately
        """
        self.config = config or ProverConfig()
        self.cache = cache or ArtifactCache(self.config.artifact_dir, lock_timeout=self.config.lock_timeout)
        self.backend = backend or get_backend(self.config, self.cache)
        self.resources = resource_store or ResourceStore()

        self._jobs: Dict[str, ProofJob] = {}
        self._proof_index: Dict[str, str] = {}
        self._lock = ReadWriteLock(self.config.lock_timeout)
        self._queue: "queue.Queue[Optional[Tuple[str, Callable[[], None]]]]" = queue.Queue()
        self._workers: List[threading.Thread] = []
        self._closed = False

        if start_workers:
            self.start()

    @property
    def mode(self) -> BackendMode:
        return self.backend.mode

    def start(self) -> None:
        """Start the worker pool if it is not running."""
        if self._workers:
            return
        for index in range(self.config.worker_count):
            worker = threading.Thread(
                target=self._worker_loop,
                name=f"prover-worker-{index}",
                daemon=True,
            )
            worker.start()
            self._workers.append(worker)
        logger.info(f"Started {len(self._workers)} proving workers ({self.mode.value} backend)")

    def _insert_job(self, request: ProofRequest) -> str:
        with self._lock.write():
            job_id = generate_proof_id(request.kind, ["job", *request.id_fields()])
            while job_id in self._jobs:
                job_id = generate_proof_id(request.kind, ["job", *request.id_fields()])
            self._jobs[job_id] = ProofJob(job_id=job_id, kind=request.kind, request=request)
        return job_id

    def submit(self, request: ProofRequest) -> str:
        """
        Accept a request for asynchronous proving.

        Args:
            request: Validated request (see ``models.parse_request``)

        Returns:
            Job id to poll

        Raises:
            LockError: If the job table lock cannot be acquired
        """
        if self._closed:
            raise RuntimeError("Orchestrator has been shut down")

        job_id = self._insert_job(request)
        self._queue.put((job_id, partial(self._run_job, job_id)))
        logger.info(f"Accepted {request.kind} job {job_id}")
        return job_id

    def prove(self, request: ProofRequest) -> ProofResult:
        """
        Prove a request inline and return the result.

        The job is recorded like an asynchronous one, so it can be polled
        afterwards. A remote backend returns a pending result; a worker then
        follows its session to completion under the job timeout.

        Raises:
            DependencyUnavailable: If the proving toolchain is not reachable
            BackendFailure: If proving fails
        """
        job_id = self._insert_job(request)
        task = self._begin(job_id)
        if task is None:
            raise NotFound(f"Job not found: {job_id}")

        deadline = time.monotonic() + task.timeout
        try:
            result = self.backend.prove(task)
        except Exception as e:
            self._record_failure(job_id, e)
            raise

        if result.status is ProofStatus.PENDING:
            self._attach_pending(job_id, result)
            follow = partial(self._follow_session, job_id, result.proof_id, deadline, task.timeout)
            self._queue.put((job_id, follow))
        else:
            self._commit(job_id, result)
        return result

    def poll(self, job_id: str) -> JobView:
        """
        Snapshot of a job.

        Raises:
            NotFound: If the job id is unknown
        """
        with self._lock.read():
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFound(f"Job not found: {job_id}")
            return job.view()

    def status(self, proof_id: str) -> JobView:
        """
        Snapshot of the job owning a proof id.

        A proof still pending on a remote session is re-queried first and the
        owning job updated with the outcome.

        Raises:
            NotFound: If the proof id is unknown
            BackendFailure: If the remote service cannot be queried
        """
        with self._lock.read():
            job_id = self._proof_index.get(proof_id)
            if job_id is None:
                raise NotFound(f"Proof not found: {proof_id}")
            job = self._jobs[job_id]
            pending = (
                not job.status.is_terminal
                and job.result is not None
                and job.result.status is ProofStatus.PENDING
            )
            view = job.view()

        if not pending:
            return view

        result = self.backend.session_status(proof_id)
        if result.status is not ProofStatus.PENDING:
            self._commit(job_id, result)
        return self.poll(job_id)

    def list_jobs(self) -> List[JobView]:
        """Snapshots of all jobs, oldest first"""
        with self._lock.read():
            jobs = sorted(self._jobs.values(), key=lambda job: job.created_at)
            return [job.view() for job in jobs]

    def shutdown(self, wait: bool = True) -> None:
        """
        Stop the worker pool.

        Jobs still queued behind the stop markers stay pending.
        """
        if self._closed:
            return
        self._closed = True
        for _ in self._workers:
            self._queue.put(_STOP)
        if wait:
            for worker in self._workers:
                worker.join()
        self.backend.close()
        logger.info("Proof orchestrator stopped")

    def _worker_loop(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                job_id, work = item
                work()
            except LockError:
                logger.error(f"Abandoning job {job_id}: job table lock unavailable")
            finally:
                self._queue.task_done()

    def _begin(self, job_id: str) -> Optional[ProvingTask]:
        with self._lock.write():
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.PENDING:
                return None
            job.status = JobStatus.GENERATING
            job.touch()
            request = job.request

        logger.info(f"Job {job_id} generating")
        return ProvingTask(
            job_id=job_id,
            proof_id=generate_proof_id(request.kind, request.id_fields()),
            request=request,
            timeout=self.config.job_timeout,
        )

    def _run_job(self, job_id: str) -> None:
        task = self._begin(job_id)
        if task is None:
            return

        deadline = time.monotonic() + task.timeout
        try:
            result = self.backend.prove(task)
            if result.status is ProofStatus.PENDING:
                self._attach_pending(job_id, result)
                result = self._await_session(result.proof_id, deadline, task.timeout)
        except Exception as e:
            self._record_failure(job_id, e)
            return

        self._commit(job_id, result)

    def _follow_session(self, job_id: str, proof_id: str, deadline: float, timeout: float) -> None:
        try:
            result = self._await_session(proof_id, deadline, timeout)
        except Exception as e:
            self._record_failure(job_id, e)
            return

        self._commit(job_id, result)

    def _await_session(self, proof_id: str, deadline: float, timeout: float) -> ProofResult:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ProofTimeoutError(f"Remote proof {proof_id} did not complete within {timeout:.0f}s")
            time.sleep(min(self.config.poll_interval, remaining))
            result = self.backend.session_status(proof_id)
            if result.status is not ProofStatus.PENDING:
                return result

    def _attach_pending(self, job_id: str, result: ProofResult) -> None:
        with self._lock.write():
            job = self._jobs[job_id]
            job.result = result
            job.touch()
            self._proof_index[result.proof_id] = job_id
        logger.info(f"Job {job_id} waiting on remote proof {result.proof_id}")

    def _commit(self, job_id: str, result: ProofResult) -> None:
        with self._lock.write():
            job = self._jobs[job_id]
            if job.status.is_terminal:
                return
            job.result = result
            self._proof_index[result.proof_id] = job_id
            if result.status is ProofStatus.FAILED:
                job.status = JobStatus.FAILED
                job.error = result.error or "Proof generation failed"
                job.error_kind = BackendFailure.error_kind
            else:
                job.status = JobStatus.COMPLETED
            job.touch()
            status = job.status

        if status is JobStatus.FAILED:
            logger.error(f"Job {job_id} failed: {result.error}")
        else:
            logger.info(f"Job {job_id} completed (proof {result.proof_id})")

    def _record_failure(self, job_id: str, error: Exception) -> None:
        if not isinstance(error, ShieldedActionsError):
            logger.exception(f"Unexpected error while proving job {job_id}")
            error = BackendFailure(f"Unexpected error: {str(error)}", diagnostic=repr(error))
        self._fail(job_id, error)

    def _fail(self, job_id: str, error: ShieldedActionsError) -> None:
        diagnostic = getattr(error, "diagnostic", None)
        with self._lock.write():
            job = self._jobs[job_id]
            if job.status.is_terminal:
                return
            job.status = JobStatus.FAILED
            job.error = diagnostic or str(error)
            job.error_kind = error.error_kind
            job.touch()
        logger.error(f"Job {job_id} failed ({error.error_kind}): {error}")
