import json
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from job_queue import QueueListener
from models import CrawlResult, JobDescriptor, QueueStats


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class RunMetrics:
    """
    Counters, gauges and a timestamped event trail for one harvest run.

    Written as JSON next to the catalog when a metrics file is configured.
    """

    source: str
    started_at: str = field(default_factory=_utc_now_iso)
    started_monotonic: float = field(default_factory=time.monotonic)
    ended_at: Optional[str] = None
    duration_seconds: Optional[float] = None
    counters: Dict[str, int] = field(default_factory=dict)
    gauges: Dict[str, Any] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)

    def inc(self, key: str, amount: int = 1) -> None:
        self.counters[key] = self.counters.get(key, 0) + amount

    def set_gauge(self, key: str, value: Any) -> None:
        self.gauges[key] = value

    def record_event(self, kind: str, **data: Any) -> None:
        event = {"t": _utc_now_iso(), "kind": kind}
        event.update({k: v for k, v in data.items() if v is not None})
        self.events.append(event)

    def record_crawl(self, result: CrawlResult) -> None:
        self.set_gauge("pages_visited", result.pages_visited)
        self.set_gauge("candidates_found", result.candidates_found)
        self.set_gauge("site_total_records", result.total_records)
        self.set_gauge("max_page", result.max_page)
        self.record_event("crawl_finished", stop_reason=result.stop_reason, aborted=result.aborted)

    def record_queue(self, stats: QueueStats) -> None:
        """Final partition sizes; anything still pending was never harvested."""
        for name in ("pending", "processing", "completed", "failed"):
            self.set_gauge(f"queue_{name}", getattr(stats, name))

    def finish(self) -> None:
        """Mark the run as finished and record end time."""
        if self.ended_at is None:
            self.ended_at = _utc_now_iso()
            self.duration_seconds = max(time.monotonic() - self.started_monotonic, 0.0)

    def to_dict(self) -> Dict[str, Any]:
        self.finish()
        return {
            "source": self.source,
            "started_at": self.started_at,
            "ended_at": self.ended_at,
            "duration_seconds": round(self.duration_seconds, 3),
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "events": list(self.events),
        }

    def write_json(self, path: Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2, sort_keys=True, ensure_ascii=False), encoding="utf-8")
        return path


class MetricsListener(QueueListener):
    """Feeds queue transitions into RunMetrics"""

    def __init__(self, metrics: RunMetrics) -> None:
        self.metrics = metrics
        self._lock = threading.Lock()

    def on_job_added(self, job: JobDescriptor) -> None:
        with self._lock:
            self.metrics.inc("jobs_enqueued")

    def on_job_started(self, job: JobDescriptor) -> None:
        with self._lock:
            self.metrics.inc("jobs_started")

    def on_job_completed(self, job: JobDescriptor) -> None:
        with self._lock:
            self.metrics.inc("jobs_completed")

    def on_job_retry(self, job: JobDescriptor) -> None:
        with self._lock:
            self.metrics.inc("jobs_retried")
            self.metrics.record_event("job_retry", job_id=job.id, attempts=job.attempts, error=job.last_error)

    def on_job_failed(self, job: JobDescriptor) -> None:
        with self._lock:
            self.metrics.inc("jobs_failed")
            self.metrics.record_event("job_failed", job_id=job.id, attempts=job.attempts, error=job.last_error)

    def on_queue_drained(self, stats: QueueStats) -> None:
        with self._lock:
            self.metrics.record_event("queue_drained", completed=stats.completed, failed=stats.failed)

    def on_queue_paused(self) -> None:
        with self._lock:
            self.metrics.record_event("queue_paused")
