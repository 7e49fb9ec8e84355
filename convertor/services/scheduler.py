"""
Dispatches pending jobs to process supervisors under a concurrency limit.

Threads involved:
    - Callers (CLI, pipeline) submit, cancel and remove jobs. Every scheduling
      decision is taken under the scheduler's lock.
    - Worker threads of a `ThreadPoolExecutor` each run one process supervisor.
      Workers never touch the job store; they post messages to a queue.
    - A single dispatcher thread drains that queue, applies progress and
      terminal results to the job store, frees the slot and admits the next
      pending job.

Because only the dispatcher writes terminal states, and it handles the
messages of a job in the order the job's worker posted them, progress always
reaches the store before the job's final status.
"""
import queue
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Dict, NamedTuple, Optional

from loguru import logger

from ..config.common import WORKER_POOL_SIZE
from ..config.settings import ConvertorSettings, validate_concurrency
from ..domain.exceptions import Cancelled, ConversionError, InvalidTransition
from ..domain.job import Job, JobSnapshot, JobStatus
from ..domain.media import MediaKind
from .job_store import JobStore
from .output_paths import resolve_output_path
from .plan_builder import EncodePlanBuilder, ThumbnailExtractor
from .supervisor import CancellationToken, ProcessSupervisor

SupervisorFactory = Callable[[CancellationToken], ProcessSupervisor]

_PROGRESS = "progress"
_FINISHED = "finished"


class JobOutcome(NamedTuple):
    status: JobStatus
    error_message: Optional[str] = None
    output_path: Optional[Path] = None


class _Message(NamedTuple):
    kind: str
    job_id: str
    payload: object


class Scheduler:
    """
    Bounded-concurrency dispatcher of the jobs held in a `JobStore`.

    Jobs submitted before `start()` only wait in the store; `start()` begins a
    batch that runs until no pending job is left (or `cancel_all()` stops it).
    """

    def __init__(
        self,
        store: JobStore,
        settings: ConvertorSettings,
        planner: Optional[EncodePlanBuilder] = None,
        thumbnailer: Optional[ThumbnailExtractor] = None,
        supervisor_factory: Optional[SupervisorFactory] = None,
    ):
        self.store = store
        self.settings = settings
        self.engine = settings.engine_executable()
        self.output_dir = settings.output_directory()
        self.planner = planner or EncodePlanBuilder(settings.use_hardware_acceleration)
        self.thumbnailer = thumbnailer or ThumbnailExtractor(self.engine)
        self._supervisor_factory = supervisor_factory or self._default_supervisor

        self._lock = threading.RLock()
        self._state_changed = threading.Condition(self._lock)
        self._max_concurrency = settings.max_concurrency
        self._running: Dict[str, CancellationToken] = {}
        self._admitted: Dict[str, Job] = {}
        self._reserved_outputs: Dict[str, Path] = {}
        self._started = False
        self._closed = False

        self._messages: "queue.Queue[Optional[_Message]]" = queue.Queue()
        self._executor = ThreadPoolExecutor(
            max_workers=WORKER_POOL_SIZE, thread_name_prefix="convert-worker"
        )
        self._dispatcher = threading.Thread(
            target=self._dispatch_loop, name="scheduler-dispatcher", daemon=True
        )
        self._dispatcher.start()

    def _default_supervisor(self, token: CancellationToken) -> ProcessSupervisor:
        return ProcessSupervisor(self.engine, token, self.settings.cancel_grace_seconds)

    # --- Introspection ---

    @property
    def running_count(self) -> int:
        with self._lock:
            return len(self._running)

    @property
    def max_concurrency(self) -> int:
        with self._lock:
            return self._max_concurrency

    @property
    def is_converting(self) -> bool:
        with self._lock:
            return self._started or bool(self._running)

    def reserved_output(self, job_id: str) -> Optional[Path]:
        with self._lock:
            return self._reserved_outputs.get(job_id)

    # --- Operations ---

    def submit(self, job: Job) -> JobSnapshot:
        """Adds `job` to the store; it is admitted as soon as a batch runs and a slot is free."""
        snapshot = self.store.add(job)
        with self._lock:
            self._admit_pending()
        return snapshot

    def start(self) -> None:
        """Starts a batch: admits pending jobs up to the concurrency limit."""
        with self._lock:
            if self._closed:
                raise RuntimeError("Scheduler has been shut down")
            if self._started:
                logger.debug("[Scheduler] Batch already running.")
                return
            self._started = True
            logger.info(
                f"[Scheduler] Starting batch: {self.store.count(JobStatus.PENDING)} pending, "
                f"max concurrency {self._max_concurrency}."
            )
            self._admit_pending()

    def set_concurrency(self, value: int) -> None:
        """
        Changes the maximum number of concurrently converting jobs.

        Lowering the limit never stops running jobs; it only delays admissions.
        """
        value = validate_concurrency(value)
        with self._lock:
            self._max_concurrency = value
            self.settings = self.settings.with_overrides(max_concurrency=value)
            self._admit_pending()

    def cancel(self, job_id: str) -> bool:
        """
        Cancels one job.

        A converting job's supervisor is stopped and the job ends 'cancelled'
        once the engine has exited. A pending job becomes 'cancelled' at once.
        A terminal or unknown job is left alone.

        Returns:
            True if a cancellation was performed or requested.
        """
        with self._lock:
            token = self._running.get(job_id)
            if token is not None:
                logger.info(f"[Scheduler] Cancelling job {job_id}.")
                token.cancel()
                return True
            job = self.store.get(job_id)
            if job is None or job.status is not JobStatus.PENDING:
                return False
            self.store.transition(job_id, JobStatus.CANCELLED)
            self._admit_pending()
            self._state_changed.notify_all()
            return True

    def cancel_all(self) -> None:
        """Stops the batch and every converting job; pending jobs stay pending."""
        with self._lock:
            self._started = False
            tokens = list(self._running.values())
            if tokens:
                logger.info(f"[Scheduler] Cancelling {len(tokens)} running job(s).")
            for token in tokens:
                token.cancel()
            self._state_changed.notify_all()

    def remove(self, job_id: str) -> bool:
        """
        Removes a job from the store, cancelling it first if it is converting.

        The slot of a removed converting job is freed when its engine has exited;
        the job object itself still reaches its terminal state then.
        """
        with self._lock:
            token = self._running.get(job_id)
            if token is not None:
                token.cancel()
            removed = self.store.remove(job_id) is not None
            if removed:
                logger.debug(f"[Scheduler] Removed job {job_id}.")
            self._admit_pending()
            self._state_changed.notify_all()
            return removed

    def clear(self) -> None:
        """Cancels everything and removes every job."""
        with self._lock:
            self.cancel_all()
            self.store.clear()
            self._reserved_outputs = {
                job_id: path for job_id, path in self._reserved_outputs.items()
                if job_id in self._running
            }

    def wait(self, timeout: Optional[float] = None) -> bool:
        """
        Blocks until the batch has drained: no job converting and no batch running.

        Returns:
            True if the scheduler became idle, False on timeout.
        """
        with self._state_changed:
            return self._state_changed.wait_for(
                lambda: not self._running and not self._started, timeout=timeout
            )

    def shutdown(self, cancel_running: bool = True) -> None:
        """Stops dispatching, optionally cancels running jobs, and joins every thread."""
        with self._lock:
            if self._closed:
                return
            if cancel_running:
                self.cancel_all()
            self._started = False
            self._closed = True
        self._executor.shutdown(wait=True)
        self._messages.put(None)
        self._dispatcher.join()
        logger.debug("[Scheduler] Shut down.")

    # --- Admission ---

    def _admit_pending(self) -> None:
        """Admission scan. Caller holds the lock."""
        if not self._started or self._closed:
            return
        while len(self._running) < self._max_concurrency:
            job = self.store.next_pending(exclude=self._running)
            if job is None:
                break
            self._admit(job)

        if not self._running and self.store.next_pending() is None:
            self._started = False
            logger.info("[Scheduler] Batch finished.")
            self._state_changed.notify_all()

    def _admit(self, job: Job) -> None:
        output_path = resolve_output_path(
            job.source_path,
            job.settings.output_format,
            self.output_dir,
            self._reserved_outputs.values(),
        )
        snapshot = self.store.transition(job.id, JobStatus.CONVERTING)
        token = CancellationToken()
        self._running[job.id] = token
        self._admitted[job.id] = job
        self._reserved_outputs[job.id] = output_path
        logger.info(
            f"[Scheduler] Converting {snapshot.name} -> {output_path.name} "
            f"({len(self._running)}/{self._max_concurrency})"
        )
        self._executor.submit(self._work, snapshot, output_path, token)

    # --- Worker side ---

    def _work(self, job: JobSnapshot, output_path: Path, token: CancellationToken) -> None:
        try:
            outcome = self._convert(job, output_path, token)
        except Exception as e:
            logger.exception(f"[Scheduler] Unexpected error while converting {job.name}")
            outcome = JobOutcome(JobStatus.FAILED, f"Unexpected error: {e}")
        self._messages.put(_Message(_FINISHED, job.id, outcome))

    def _convert(self, job: JobSnapshot, output_path: Path, token: CancellationToken) -> JobOutcome:
        thumbnail = None
        handed_over = False
        try:
            if (
                job.media_kind is MediaKind.VIDEO
                and job.settings.video_codec.is_passthrough
                and not token.is_cancelled
            ):
                destination = ThumbnailExtractor.thumbnail_path_for(job.id, output_path.parent)
                thumbnail = self.thumbnailer.extract(job.source_path, job.duration_seconds, destination)

            plan = self.planner.build(job, output_path, thumbnail)
            supervisor = self._supervisor_factory(token)

            def on_progress(value: float) -> None:
                self._messages.put(_Message(_PROGRESS, job.id, value))

            # From here on the supervisor removes the plan's temporary files.
            handed_over = True
            try:
                result = supervisor.run(plan, on_progress)
            except Cancelled as e:
                return JobOutcome(JobStatus.CANCELLED, str(e))
            except ConversionError as e:
                return JobOutcome(JobStatus.FAILED, str(e))
            return JobOutcome(JobStatus.COMPLETED, output_path=result)
        finally:
            if thumbnail is not None and not handed_over:
                self._discard_thumbnail(thumbnail)

    @staticmethod
    def _discard_thumbnail(path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"[Scheduler] Could not remove thumbnail {path}: {e}")

    # --- Dispatcher side ---

    def _dispatch_loop(self) -> None:
        while True:
            message = self._messages.get()
            if message is None:
                break
            try:
                if message.kind == _PROGRESS:
                    self.store.report_progress(message.job_id, message.payload)
                else:
                    self._finish(message.job_id, message.payload)
            except Exception:
                logger.exception(f"[Scheduler] Failed to apply {message.kind} of job {message.job_id}")

    def _finish(self, job_id: str, outcome: JobOutcome) -> None:
        with self._lock:
            self._running.pop(job_id, None)
            job = self._admitted.pop(job_id, None)
            if outcome.status is not JobStatus.COMPLETED:
                self._reserved_outputs.pop(job_id, None)
            try:
                snapshot = self.store.transition(
                    job_id,
                    outcome.status,
                    error_message=outcome.error_message,
                    output_path=outcome.output_path,
                )
                if snapshot is None and job is not None:
                    # Removed while converting: the caller may still hold the job.
                    job.transition(
                        outcome.status,
                        error_message=outcome.error_message,
                        output_path=outcome.output_path,
                    )
                    snapshot = job.snapshot()
            except InvalidTransition as e:
                logger.error(f"[Scheduler] {e}")
                snapshot = None

            if snapshot is not None:
                self._log_outcome(snapshot)
            self._admit_pending()
            self._state_changed.notify_all()

    @staticmethod
    def _log_outcome(snapshot: JobSnapshot) -> None:
        if snapshot.status is JobStatus.COMPLETED:
            logger.success(f"[Scheduler] Completed {snapshot.name} -> {snapshot.output_path}")
        elif snapshot.status is JobStatus.FAILED:
            logger.error(f"[Scheduler] Failed {snapshot.name}: {snapshot.error_message}")
        else:
            logger.info(f"[Scheduler] Cancelled {snapshot.name}")
