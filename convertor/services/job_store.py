"""
Holds every job of the session, keyed by job id, in submission order.

The store is the single place job state is read from. Mutations go through the
job's own transition methods; the store adds ordering, lookup and change
notification. Subscribers receive a `JobSnapshot` after each change. They are
called outside the store's lock, from whichever thread made the change (the
pipeline for additions, the scheduler's dispatcher for progress and status).
"""
import threading
from collections import OrderedDict
from pathlib import Path
from typing import Any, Callable, List, Optional

from loguru import logger

from ..domain.job import EncodeSettings, Job, JobSnapshot, JobStatus

JobListener = Callable[[JobSnapshot], None]


class JobStore:
    """An ordered, thread-safe collection of jobs with change notification."""

    def __init__(self):
        self._lock = threading.RLock()
        self._jobs: "OrderedDict[str, Job]" = OrderedDict()
        self._listeners: List[JobListener] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    # --- Subscription ---

    def subscribe(self, listener: JobListener) -> Callable[[], None]:
        """
        Registers `listener` for change notifications.

        Returns:
            A function that unsubscribes the listener.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, snapshot: JobSnapshot) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception(f"[JobStore] Listener failed for job {snapshot.id}")

    # --- Membership ---

    def add(self, job: Job) -> JobSnapshot:
        with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job {job.id} is already in the store")
            self._jobs[job.id] = job
        snapshot = job.snapshot()
        self._notify(snapshot)
        return snapshot

    def remove(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.pop(job_id, None)

    def clear(self) -> None:
        with self._lock:
            self._jobs.clear()

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def snapshot(self, job_id: str) -> Optional[JobSnapshot]:
        job = self.get(job_id)
        return job.snapshot() if job else None

    def snapshots(self) -> List[JobSnapshot]:
        with self._lock:
            jobs = list(self._jobs.values())
        return [job.snapshot() for job in jobs]

    def find_by_source(self, source_path: Path) -> Optional[Job]:
        target = Path(source_path).absolute()
        with self._lock:
            return next((job for job in self._jobs.values() if job.source_path == target), None)

    def next_pending(self, exclude=()) -> Optional[Job]:
        """Returns the earliest submitted pending job whose id is not in `exclude`."""
        with self._lock:
            for job in self._jobs.values():
                if job.id not in exclude and job.status is JobStatus.PENDING:
                    return job
        return None

    def count(self, status: JobStatus) -> int:
        with self._lock:
            jobs = list(self._jobs.values())
        return sum(1 for job in jobs if job.status is status)

    # --- Mutation ---

    def transition(self, job_id: str, status: JobStatus, **details: Any) -> Optional[JobSnapshot]:
        """
        Applies a status transition to a job and notifies subscribers.

        Returns:
            The new snapshot, or None if the job is no longer in the store.

        Raises:
            InvalidTransition: If the transition is not a legal edge.
        """
        job = self.get(job_id)
        if job is None:
            return None
        job.transition(status, **details)
        snapshot = job.snapshot()
        self._notify(snapshot)
        return snapshot

    def report_progress(self, job_id: str, value: float) -> bool:
        """Stores a progress value; non-increasing values are ignored. Returns True on change."""
        job = self.get(job_id)
        if job is None or not job.report_progress(value):
            return False
        self._notify(job.snapshot())
        return True

    def update_settings(self, job_id: str, **changes: Any) -> EncodeSettings:
        """
        Edits the settings of a pending job.

        Raises:
            KeyError: If no job has this id.
            JobNotEditable, InvalidSettings: See `Job.update_settings`.
        """
        job = self.get(job_id)
        if job is None:
            raise KeyError(job_id)
        settings = job.update_settings(**changes)
        self._notify(job.snapshot())
        return settings
