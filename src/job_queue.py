"""
Job Queue - Four-partition job state machine shared by the workers

pending -> processing -> completed | pending (retry) | failed
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict, deque
from datetime import datetime
from typing import Deque, Dict, Iterable, List, Optional, Tuple

from models import JobDescriptor, JobStatus, QueueStats

logger = logging.getLogger(__name__)

DEFAULT_RETRY_LIMIT = 3


class QueueListener:
    """Observer for queue transitions. Override the hooks you need.

    Hooks run after the transition is committed, outside the queue lock,
    and receive a copy of the job.
    """

    def on_job_added(self, job: JobDescriptor) -> None:
        pass

    def on_job_started(self, job: JobDescriptor) -> None:
        pass

    def on_job_completed(self, job: JobDescriptor) -> None:
        pass

    def on_job_retry(self, job: JobDescriptor) -> None:
        pass

    def on_job_failed(self, job: JobDescriptor) -> None:
        pass

    def on_queue_drained(self, stats: QueueStats) -> None:
        pass

    def on_queue_paused(self) -> None:
        pass

    def on_queue_resumed(self) -> None:
        pass


class JobQueue:
    """Thread-safe job queue with cross-partition dedup and bounded retries"""

    def __init__(self, retry_limit: int = DEFAULT_RETRY_LIMIT) -> None:
        self.retry_limit = retry_limit
        self._pending: Deque[JobDescriptor] = deque()
        self._processing: "OrderedDict[str, JobDescriptor]" = OrderedDict()
        self._completed: List[JobDescriptor] = []
        self._failed: List[JobDescriptor] = []
        self._index: Dict[str, JobStatus] = {}
        self._paused = False
        self._lock = threading.Lock()
        self._listeners: List[QueueListener] = []

    # === Observers ===

    def add_listener(self, listener: QueueListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: QueueListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, events: List[Tuple[str, tuple]]) -> None:
        for hook, args in events:
            for listener in list(self._listeners):
                try:
                    getattr(listener, hook)(*args)
                except Exception:
                    logger.warning("Queue listener %s failed in %s", listener, hook, exc_info=True)

    def _drained_event(self) -> List[Tuple[str, tuple]]:
        if not self._pending and not self._processing:
            return [("on_queue_drained", (self._stats_unlocked(),))]
        return []

    # === Transitions ===

    def enqueue(self, job: JobDescriptor) -> bool:
        """Add a job to the tail of pending. False if the id is already known."""
        with self._lock:
            if job.id in self._index:
                logger.debug("Job %s already queued (%s)", job.id, self._index[job.id].value)
                return False
            entry = job.model_copy(deep=True)
            entry.attempts = 0
            entry.status = JobStatus.PENDING
            entry.added_at = datetime.now()
            self._pending.append(entry)
            self._index[entry.id] = JobStatus.PENDING
            snapshot = entry.model_copy(deep=True)
        self._notify([("on_job_added", (snapshot,))])
        return True

    def enqueue_batch(self, jobs: Iterable[JobDescriptor]) -> int:
        added = 0
        for job in jobs:
            if self.enqueue(job):
                added += 1
        return added

    def dequeue(self) -> Optional[JobDescriptor]:
        """Move the head of pending to processing and return a copy of it."""
        with self._lock:
            if self._paused or not self._pending:
                return None
            job = self._pending.popleft()
            job.attempts += 1
            job.started_at = datetime.now()
            job.status = JobStatus.PROCESSING
            self._processing[job.id] = job
            self._index[job.id] = JobStatus.PROCESSING
            snapshot = job.model_copy(deep=True)
        self._notify([("on_job_started", (snapshot,))])
        return snapshot.model_copy(deep=True)

    def complete(self, job_id: str, result: Optional[dict] = None) -> bool:
        with self._lock:
            job = self._processing.pop(job_id, None)
            if job is None:
                return False
            job.completed_at = datetime.now()
            job.status = JobStatus.COMPLETED
            job.result = result
            self._completed.append(job)
            self._index[job_id] = JobStatus.COMPLETED
            events = [("on_job_completed", (job.model_copy(deep=True),))]
            events.extend(self._drained_event())
        self._notify(events)
        return True

    def fail(self, job_id: str, error: str, retryable: bool = False) -> bool:
        """Take a job out of processing; requeue it at the front or fail it for good."""
        with self._lock:
            job = self._processing.pop(job_id, None)
            if job is None:
                return False
            job.last_error = str(error)
            job.failed_at = datetime.now()
            if retryable and job.attempts < self.retry_limit:
                job.status = JobStatus.PENDING
                self._pending.appendleft(job)
                self._index[job_id] = JobStatus.PENDING
                events = [("on_job_retry", (job.model_copy(deep=True),))]
            else:
                job.status = JobStatus.FAILED
                self._failed.append(job)
                self._index[job_id] = JobStatus.FAILED
                events = [("on_job_failed", (job.model_copy(deep=True),))]
            events.extend(self._drained_event())
        self._notify(events)
        return True

    def pause(self) -> None:
        with self._lock:
            self._paused = True
        self._notify([("on_queue_paused", ())])

    def resume(self) -> None:
        with self._lock:
            self._paused = False
        self._notify([("on_queue_resumed", ())])

    def retry_failed(self) -> int:
        """Send every permanently failed job back to pending with a fresh attempt budget."""
        with self._lock:
            failed, self._failed = self._failed, []
            for job in failed:
                job.attempts = 0
                job.last_error = None
                job.failed_at = None
                job.status = JobStatus.PENDING
                self._pending.append(job)
                self._index[job.id] = JobStatus.PENDING
            return len(failed)

    def clear(self) -> None:
        with self._lock:
            self._pending.clear()
            self._processing.clear()
            self._completed = []
            self._failed = []
            self._index = {}

    # === Queries ===

    @property
    def is_paused(self) -> bool:
        with self._lock:
            return self._paused

    def is_drained(self) -> bool:
        with self._lock:
            return not self._pending and not self._processing

    def is_empty(self) -> bool:
        with self._lock:
            return not self._pending

    def has_available(self) -> bool:
        with self._lock:
            return not self._paused and bool(self._pending)

    def contains(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._index

    def status_of(self, job_id: str) -> Optional[JobStatus]:
        with self._lock:
            return self._index.get(job_id)

    def find(self, job_id: str) -> Optional[JobDescriptor]:
        """Return a copy of the job wherever it currently lives."""
        with self._lock:
            status = self._index.get(job_id)
            if status is None:
                return None
            if status == JobStatus.PROCESSING:
                return self._processing[job_id].model_copy(deep=True)
            partition: Iterable[JobDescriptor] = {
                JobStatus.PENDING: self._pending,
                JobStatus.COMPLETED: self._completed,
                JobStatus.FAILED: self._failed,
            }[status]
            for job in partition:
                if job.id == job_id:
                    return job.model_copy(deep=True)
            return None

    def failed_jobs(self) -> List[JobDescriptor]:
        with self._lock:
            return [job.model_copy(deep=True) for job in self._failed]

    def completed_jobs(self) -> List[JobDescriptor]:
        with self._lock:
            return [job.model_copy(deep=True) for job in self._completed]

    def _stats_unlocked(self) -> QueueStats:
        pending = len(self._pending)
        processing = len(self._processing)
        completed = len(self._completed)
        failed = len(self._failed)
        return QueueStats(
            pending=pending,
            processing=processing,
            completed=completed,
            failed=failed,
            total=pending + processing + completed + failed,
            paused=self._paused,
        )

    def stats(self) -> QueueStats:
        with self._lock:
            return self._stats_unlocked()

    def __len__(self) -> int:
        with self._lock:
            return len(self._index)
