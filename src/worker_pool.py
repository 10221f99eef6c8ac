"""
Worker Pool - Concurrent detail-page harvest
Each worker is a thread with its own rendering session.
"""

from __future__ import annotations

import logging
import random
import threading
from typing import Callable, Dict, List, Optional

from browser_session import RenderingSession, SessionFactory
from catalog_store import CatalogStore
from extractor import PLACEHOLDERS, extract_fields
from job_queue import JobQueue
from models import JobDescriptor, RecordFields

logger = logging.getLogger(__name__)

Extractor = Callable[[str, str], RecordFields]


def merge_record(job: JobDescriptor, fields: RecordFields) -> RecordFields:
    """Combine detail-page fields with the listing preview.

    A detail value wins unless it is empty or a placeholder; then the
    preview value is used, and the placeholder only when neither has one.
    """
    merged = fields.model_dump()
    preview = job.preview_fields
    for name, value in merged.items():
        if name in ("id", "scraped_at"):
            continue
        unknown = not value or value == PLACEHOLDERS.get(name)
        if unknown and preview.get(name):
            merged[name] = preview[name]
    merged["id"] = job.id
    merged["job_url"] = job.url
    return RecordFields(**merged)


class Worker:
    """Dequeues jobs until the queue drains or a stop is requested"""

    def __init__(
        self,
        worker_id: int,
        queue: JobQueue,
        store: CatalogStore,
        session_factory: SessionFactory,
        extractor: Extractor = extract_fields,
        min_delay: float = 1.0,
        max_delay: float = 3.0,
        poll_interval: float = 0.5,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.worker_id = worker_id
        self.name = f"worker-{worker_id}"
        self.queue = queue
        self.store = store
        self.session_factory = session_factory
        self.extractor = extractor
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.poll_interval = poll_interval
        self.stop_event = stop_event or threading.Event()
        self.session: Optional[RenderingSession] = None
        self.thread: Optional[threading.Thread] = None
        self.running = False
        self.processed = 0
        self.failed = 0
        self.duplicates = 0

    def _wait(self, seconds: float) -> None:
        if seconds > 0:
            self.stop_event.wait(seconds)

    def process(self, job: JobDescriptor) -> None:
        """Fetch, extract, merge and persist one job, then report it."""
        try:
            self.session.open(job.url)
            self.session.wait_until_stable()
            content = self.session.current_content()
            record = merge_record(job, self.extractor(content, job.url))
            if self.store.add(record):
                logger.info("%s: saved %s", self.name, record)
            else:
                self.duplicates += 1
                logger.info("%s: %s already stored, skipping", self.name, job.id)
            self.queue.complete(job.id, {"title": record.title, "company": record.company})
            self.processed += 1
        except Exception as exc:
            self.failed += 1
            logger.warning("%s: job %s failed (attempt %s): %s", self.name, job.id, job.attempts, exc)
            self.queue.fail(job.id, str(exc), retryable=True)

    def run(self) -> None:
        self.running = True
        try:
            self.session = self.session_factory(self.name)
            logger.info("%s: started", self.name)
            while not self.stop_event.is_set():
                job = self.queue.dequeue()
                if job is None:
                    if self.queue.is_drained():
                        break
                    self._wait(self.poll_interval)
                    continue
                self.process(job)
                self._wait(random.uniform(self.min_delay, self.max_delay))
        except Exception:
            logger.exception("%s: crashed", self.name)
        finally:
            self.close()
            self.running = False
            logger.info("%s: finished (%s processed, %s failed)", self.name, self.processed, self.failed)

    def start(self) -> threading.Thread:
        self.thread = threading.Thread(target=self.run, name=self.name, daemon=True)
        self.thread.start()
        return self.thread

    def close(self) -> None:
        session, self.session = self.session, None
        if session is None:
            return
        try:
            session.close()
        except Exception:
            logger.debug("%s: session close failed", self.name, exc_info=True)

    def status(self) -> Dict[str, object]:
        return {
            "id": self.worker_id,
            "running": self.running,
            "processed": self.processed,
            "failed": self.failed,
            "has_session": self.session is not None,
        }


class WorkerPool:
    """Fixed-size pool of detail workers sharing one queue and one store"""

    def __init__(
        self,
        queue: JobQueue,
        store: CatalogStore,
        session_factory: SessionFactory,
        workers: int = 3,
        extractor: Extractor = extract_fields,
        min_delay: float = 1.0,
        max_delay: float = 3.0,
        poll_interval: float = 0.5,
    ) -> None:
        if workers < 1:
            raise ValueError(f"workers must be >= 1, got {workers}")
        self.queue = queue
        self.store = store
        self.session_factory = session_factory
        self.size = workers
        self.extractor = extractor
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.poll_interval = poll_interval
        self._stop_event = threading.Event()
        self.workers: List[Worker] = []

    @classmethod
    def from_config(cls, config, queue: JobQueue, store: CatalogStore, session_factory: SessionFactory, extractor: Extractor = extract_fields) -> "WorkerPool":
        return cls(
            queue,
            store,
            session_factory,
            workers=config.get_workers(),
            extractor=extractor,
            min_delay=config.get_min_delay(),
            max_delay=config.get_max_delay(),
            poll_interval=config.get_poll_interval(),
        )

    def init(self) -> None:
        self.workers = [
            Worker(
                worker_id,
                self.queue,
                self.store,
                self.session_factory,
                extractor=self.extractor,
                min_delay=self.min_delay,
                max_delay=self.max_delay,
                poll_interval=self.poll_interval,
                stop_event=self._stop_event,
            )
            for worker_id in range(1, self.size + 1)
        ]
        logger.info("Initialized %s workers", len(self.workers))

    def start(self) -> None:
        """Run every worker and return once all of them have exited."""
        if not self.workers:
            self.init()
        logger.info("Starting %s workers", len(self.workers))
        threads = [worker.start() for worker in self.workers]
        for thread in threads:
            # Short joins keep the main thread responsive to signals
            while thread.is_alive():
                thread.join(timeout=0.5)
        logger.info("All workers finished: %s jobs processed", self.total_processed())

    def stop(self) -> None:
        logger.info("Stopping workers after their current job")
        self._stop_event.set()

    def close(self) -> None:
        for worker in self.workers:
            worker.close()

    def status(self) -> List[Dict[str, object]]:
        return [worker.status() for worker in self.workers]

    def total_processed(self) -> int:
        return sum(worker.processed for worker in self.workers)
