"""
Orchestrator - Sequences one harvest run
Store -> listing crawl -> worker pool -> summary -> teardown and backup.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional
from urllib.parse import urlencode

from browser_session import RenderingSession, SessionFactory, playwright_session_factory
from catalog_store import CatalogStore
from extractor import extract_fields
from job_queue import JobQueue, QueueListener
from listing_crawler import ListingCrawler
from models import JobDescriptor, PageCount, QueueStats, RunSummary
from run_metrics import MetricsListener, RunMetrics
from worker_pool import Extractor, WorkerPool

logger = logging.getLogger(__name__)


def build_search_url(config) -> str:
    """Start URL for the configured search mode.

    Falls back to the plain listing root when the mode's parameter is empty.
    """
    mode = config.get_search_mode()
    if mode == "custom_url" and config.get_custom_url():
        return config.get_custom_url()
    if mode == "category" and config.get_category():
        return config.get_category_url_template().format(category=config.get_category())
    if mode == "keyword" and config.get_keyword():
        query = urlencode({config.get_keyword_param(): config.get_keyword()})
        return f"{config.get_base_url()}?{query}"
    return config.get_base_url()


class ProgressListener(QueueListener):
    """Logs harvest progress as jobs settle"""

    def __init__(self, every: int = 10) -> None:
        self.every = every
        self._settled = 0
        self._lock = threading.Lock()

    def _tick(self) -> None:
        with self._lock:
            self._settled += 1
            settled = self._settled
        if settled % self.every == 0:
            logger.info("Progress: %s jobs settled", settled)

    def on_job_completed(self, job: JobDescriptor) -> None:
        self._tick()

    def on_job_retry(self, job: JobDescriptor) -> None:
        logger.info("Retrying %s (attempt %s): %s", job.id, job.attempts, job.last_error)

    def on_job_failed(self, job: JobDescriptor) -> None:
        logger.error("Job %s failed after %s attempts: %s", job.id, job.attempts, job.last_error)
        self._tick()

    def on_queue_drained(self, stats: QueueStats) -> None:
        logger.info("Queue drained: %s completed, %s failed", stats.completed, stats.failed)


class Orchestrator:
    """Runs the listing crawl, then the detail harvest, for one configuration"""

    def __init__(
        self,
        config,
        session_factory: Optional[SessionFactory] = None,
        extractor: Extractor = extract_fields,
        store: Optional[CatalogStore] = None,
        queue: Optional[JobQueue] = None,
    ) -> None:
        self.config = config
        self.session_factory = session_factory or playwright_session_factory(config)
        self.extractor = extractor
        self.store = store or CatalogStore(config.get_output_path())
        self.queue = queue or JobQueue(retry_limit=config.get_retry_attempts())
        self.metrics = RunMetrics(source=build_search_url(config))
        self.queue.add_listener(ProgressListener())
        self.queue.add_listener(MetricsListener(self.metrics))

        self.listing_session: Optional[RenderingSession] = None
        self.crawler: Optional[ListingCrawler] = None
        self.pool: Optional[WorkerPool] = None
        self._stopped = False
        self._closed = False

    def _open_listing(self) -> ListingCrawler:
        self.listing_session = self.session_factory("listing")
        self.crawler = ListingCrawler.from_config(self.config, self.listing_session, self.queue, store=self.store)
        if self._stopped:
            self.crawler.stop()
        return self.crawler

    def run(self) -> RunSummary:
        """Execute one full run and return its summary."""
        start_time = time.monotonic()
        start_url = build_search_url(self.config)
        try:
            recovered = self.store.initialize()
            self.metrics.set_gauge("records_at_start", recovered)
            print(f"📂 {recovered} records already in {self.store.output_path}")

            crawler = self._open_listing()
            self.pool = WorkerPool.from_config(
                self.config, self.queue, self.store, self.session_factory, extractor=self.extractor
            )
            self.pool.init()

            print(f"🔍 Scraping listings: {start_url}")
            crawl = crawler.crawl(start_url)
            self.metrics.record_crawl(crawl)
            if crawl.aborted:
                print(f"⚠️  Listing walk aborted after {crawl.pages_visited} pages; harvesting what was queued")

            if not self.queue.is_empty() and not self._stopped:
                print(f"⚙️  Harvesting {len(self.queue)} jobs with {self.pool.size} workers")
                self.pool.start()
            else:
                logger.info("No new jobs to harvest")

            stats = self.queue.stats()
            summary = RunSummary(
                completed=stats.completed,
                failed=stats.failed,
                pending=stats.pending + stats.processing,
                retried=self.metrics.counters.get("jobs_retried", 0),
                elapsed_seconds=round(time.monotonic() - start_time, 2),
                stored_records=self.store.count(),
                stopped=self._stopped,
                crawl=crawl,
            )
            if summary.pending:
                logger.warning("%s jobs were left unharvested", summary.pending)
                print(f"⚠️  {summary.pending} jobs left pending; rerun to harvest them")
            logger.info(
                "Run finished: %s completed, %s failed, %s records stored in %.1fs",
                summary.completed,
                summary.failed,
                summary.stored_records,
                summary.elapsed_seconds,
            )
            return summary
        finally:
            self.close()

    def count_pages(self) -> PageCount:
        """Count listing pages for the configured search."""
        try:
            crawler = self._open_listing()
            return crawler.count_pages(build_search_url(self.config))
        finally:
            self._close_listing()

    def stop(self) -> None:
        """Pause the queue and let the crawler and workers wind down."""
        if self._stopped:
            return
        self._stopped = True
        logger.warning("Stop requested")
        self.queue.pause()
        if self.crawler is not None:
            self.crawler.stop()
        if self.pool is not None:
            self.pool.stop()

    def _close_listing(self) -> None:
        session, self.listing_session = self.listing_session, None
        if session is None:
            return
        try:
            session.close()
        except Exception:
            logger.debug("Listing session close failed", exc_info=True)

    def close(self) -> None:
        """Release sessions and write a backup. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self.pool is not None:
            self.pool.close()
        self._close_listing()

        try:
            backup = self.store.backup()
            if backup:
                print(f"💾 Backup written: {backup}")
        except Exception:
            logger.error("Could not write catalog backup", exc_info=True)

        self.metrics.record_queue(self.queue.stats())
        self.metrics.finish()
        metrics_path = self.config.get_metrics_path()
        if metrics_path:
            try:
                self.metrics.write_json(metrics_path)
                logger.info("Run metrics written to %s", metrics_path)
            except OSError:
                logger.error("Could not write run metrics", exc_info=True)
