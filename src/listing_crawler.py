"""
Listing Crawler - Walks search-result pages and fills the job queue
One page at a time on a single rendering session.
"""

from __future__ import annotations

import logging
import random
import re
import threading
from typing import Callable, Dict, List, Optional, Set
from urllib.parse import parse_qs, urlencode, urljoin, urlparse, urlunparse

from bs4 import BeautifulSoup

from browser_session import ElementHandle, RenderingSession, SessionError
from catalog_store import CatalogStore
from extractor import parse_preview_text
from job_queue import JobQueue
from models import CrawlResult, JobDescriptor, PageCount

logger = logging.getLogger(__name__)

DEFAULT_SAFETY_CEILING = 500

NEXT_SELECTORS = [
    'a[rel="next"]',
    'a[aria-label*="Next"]',
    'a[aria-label*="next"]',
    '.pagination .next a',
    'button[aria-label*="Next"]',
]
NEXT_TEXT_MARKERS = ("›", "»", "ถัดไป", "Next")
PAGINATION_SELECTOR = (
    'ul.pagination li, .pagination a, nav[aria-label*="pagination"] a, '
    '[class*="Pagination"] a, [class*="pagination"] a'
)
COUNT_SELECTOR = '[class*="count"], [class*="total"], .result-count'


def parse_total_records(html: str) -> int:
    """Total result count advertised by a listing page (0 when absent)."""
    soup = BeautifulSoup(html or "", "html.parser")
    text = " ".join(el.get_text(" ", strip=True) for el in soup.select(COUNT_SELECTOR))
    match = re.search(r"(\d[\d,]*)", text)
    if match:
        return int(match.group(1).replace(",", ""))
    return 0


def parse_max_page(html: str) -> int:
    """Highest page number shown in the pagination controls (1 when absent)."""
    soup = BeautifulSoup(html or "", "html.parser")
    numbers = []
    for el in soup.select(PAGINATION_SELECTOR):
        text = el.get_text(strip=True)
        if text.isdigit():
            numbers.append(int(text))
    return max(numbers) if numbers else 1


def with_page_param(url: str, page: int) -> str:
    """Return url with its ``page`` query parameter set."""
    parsed = urlparse(url)
    query = parse_qs(parsed.query, keep_blank_values=True)
    query["page"] = [str(page)]
    return urlunparse(parsed._replace(query=urlencode(query, doseq=True)))


def page_number(url: str, default: int = 1) -> int:
    """Value of the ``page`` query parameter, or default when absent."""
    values = parse_qs(urlparse(url).query).get("page")
    if values and values[0].isdigit():
        return int(values[0])
    return default


def _is_disabled(element: ElementHandle) -> bool:
    if element.attribute("disabled") is not None:
        return True
    if (element.attribute("aria-disabled") or "").lower() in ("true", "disabled"):
        return True
    return "disabled" in (element.attribute("class") or "").lower()


def find_next_affordance(session: RenderingSession) -> Optional[ElementHandle]:
    """First enabled next-page control on the current page, if any."""
    for selector in NEXT_SELECTORS:
        for element in session.query_all(selector):
            if not _is_disabled(element):
                return element
    for element in session.query_all("a, button"):
        text = element.text()
        if text and any(marker in text for marker in NEXT_TEXT_MARKERS) and not _is_disabled(element):
            return element
    return None


class ListingCrawler:
    """Paginates a listing and enqueues every record not seen before"""

    def __init__(
        self,
        session: RenderingSession,
        queue: JobQueue,
        store: Optional[CatalogStore] = None,
        link_selector: str = 'a[href*="/job/"]',
        id_pattern: str = r"/job/(\d+)",
        max_pages: int = 0,
        retry_attempts: int = 3,
        retry_backoff: float = 5.0,
        min_delay: float = 1.0,
        max_delay: float = 3.0,
        safety_ceiling: int = DEFAULT_SAFETY_CEILING,
        preview_parser: Callable[[str], Dict[str, str]] = parse_preview_text,
    ) -> None:
        self.session = session
        self.queue = queue
        self.store = store
        self.link_selector = link_selector
        self.id_pattern = re.compile(id_pattern)
        self.max_pages = max_pages
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.safety_ceiling = safety_ceiling
        self.preview_parser = preview_parser
        self._stop_event = threading.Event()

    @classmethod
    def from_config(cls, config, session: RenderingSession, queue: JobQueue, store: Optional[CatalogStore] = None) -> "ListingCrawler":
        return cls(
            session,
            queue,
            store=store,
            link_selector=config.get_link_selector(),
            id_pattern=config.get_id_pattern(),
            max_pages=config.get_max_pages(),
            retry_attempts=config.get_retry_attempts(),
            retry_backoff=config.get_page_retry_backoff(),
            min_delay=config.get_min_delay(),
            max_delay=config.get_max_delay(),
            safety_ceiling=config.get_safety_ceiling(),
        )

    def stop(self) -> None:
        logger.info("Stopping listing crawl after the current page")
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def _wait(self, seconds: float) -> None:
        if seconds > 0:
            self._stop_event.wait(seconds)

    def _random_delay(self) -> None:
        """Human-like pause between listing pages"""
        self._wait(random.uniform(self.min_delay, self.max_delay))

    def _load(self, url: str, preloaded: bool) -> str:
        if not preloaded:
            self.session.open(url)
        self.session.wait_until_stable()
        return self.session.current_content()

    # === Candidates ===

    def _candidate(self, job_id: str, href: str, text: str, page_url: str) -> JobDescriptor:
        preview = {k: v for k, v in self.preview_parser(text).items() if v}
        if text:
            preview["preview_text"] = text[:500]
        return JobDescriptor(id=job_id, url=urljoin(page_url, href), preview_fields=preview)

    def extract_candidates(self, html: str, page_url: str) -> List[JobDescriptor]:
        """Unique job descriptors linked from the current page."""
        candidates: List[JobDescriptor] = []
        seen_on_page: Set[str] = set()
        try:
            links = [(link.attribute("href"), link) for link in self.session.query_all(self.link_selector)]
        except SessionError as exc:
            logger.warning("Link query failed, falling back to markup parsing: %s", exc)
            return self._candidates_from_html(html, page_url)

        for href, link in links:
            match = self.id_pattern.search(href or "")
            if not match:
                continue
            job_id = match.group(1)
            if job_id in seen_on_page:
                continue
            seen_on_page.add(job_id)
            candidates.append(self._candidate(job_id, href, link.text(), page_url))
        return candidates

    def _candidates_from_html(self, html: str, page_url: str) -> List[JobDescriptor]:
        soup = BeautifulSoup(html or "", "html.parser")
        candidates: List[JobDescriptor] = []
        seen_on_page: Set[str] = set()
        for element in soup.select(self.link_selector):
            href = element.get("href") or ""
            match = self.id_pattern.search(href)
            if not match or match.group(1) in seen_on_page:
                continue
            seen_on_page.add(match.group(1))
            text = element.get_text("\n", strip=True)
            candidates.append(self._candidate(match.group(1), href, text, page_url))
        return candidates

    # === Pagination ===

    def _advance(self, current_url: str, page_num: int, max_page: int) -> tuple[Optional[str], bool]:
        """Work out where the next page lives.

        Returns (next_url, preloaded); preloaded means a click already
        rendered the next page in the session.
        """
        next_element = find_next_affordance(self.session)
        if next_element is not None:
            href = next_element.attribute("href")
            if href and not href.startswith(("#", "javascript:")):
                return urljoin(current_url, href), False
            next_element.click()
            self.session.wait_until_stable()
            return self.session.current_url(), True

        current_page = page_number(current_url, default=page_num)
        if max_page > current_page:
            return with_page_param(current_url, current_page + 1), False
        return None, False

    def _advance_with_retry(self, current_url: str, page_num: int, max_page: int) -> tuple[Optional[str], bool]:
        """_advance, reloading the current page between failed attempts."""
        failures = 0
        while True:
            try:
                if failures:
                    self._load(current_url, preloaded=False)
                return self._advance(current_url, page_num, max_page)
            except Exception as exc:
                failures += 1
                if failures > self.retry_attempts:
                    raise SessionError(f"could not move past {current_url}: {exc}") from exc
                logger.warning(
                    "Next-page lookup failed on page %s (attempt %s/%s): %s",
                    page_num,
                    failures,
                    self.retry_attempts + 1,
                    exc,
                )
                self._wait(self.retry_backoff)

    def crawl(self, start_url: str) -> CrawlResult:
        """Walk the listing from start_url and enqueue new jobs."""
        result = CrawlResult()
        known = self.store.existing_ids() if self.store is not None else set()
        current_url: Optional[str] = start_url
        preloaded = False
        failures = 0

        logger.info("Scraping job listings from %s", start_url)
        while current_url:
            if self.stopped:
                result.stop_reason = "stopped"
                break

            page_label = result.pages_visited + 1
            try:
                html = self._load(current_url, preloaded)
                if result.pages_visited == 0:
                    result.total_records = parse_total_records(html)
                    if result.total_records:
                        logger.info("Site reports %s total records", result.total_records)
                result.max_page = max(result.max_page, parse_max_page(html))
                candidates = self.extract_candidates(html, current_url)
            except Exception as exc:
                failures += 1
                preloaded = False
                if failures > self.retry_attempts:
                    logger.error("Giving up on page %s after %s attempts: %s", page_label, failures, exc)
                    result.aborted = True
                    result.stop_reason = "error"
                    break
                logger.warning(
                    "Error on page %s (attempt %s/%s): %s", page_label, failures, self.retry_attempts + 1, exc
                )
                self._wait(self.retry_backoff)
                continue

            failures = 0
            result.pages_visited += 1
            result.candidates_found += len(candidates)
            new_jobs = [job for job in candidates if job.id not in known]
            added = self.queue.enqueue_batch(new_jobs)
            known.update(job.id for job in new_jobs)
            result.jobs_enqueued += added
            logger.info(
                "Page %s: found %s jobs, %s new jobs added to queue", result.pages_visited, len(candidates), added
            )

            if self.max_pages > 0 and result.pages_visited >= self.max_pages:
                logger.info("Reached max pages limit (%s)", self.max_pages)
                result.stop_reason = "page_cap"
                break
            if result.pages_visited >= self.safety_ceiling:
                logger.warning("Hit safety ceiling of %s pages; stopping pagination", self.safety_ceiling)
                result.stop_reason = "safety_ceiling"
                break

            try:
                current_url, preloaded = self._advance_with_retry(current_url, result.pages_visited, result.max_page)
            except SessionError as exc:
                logger.error("Giving up on pagination after page %s: %s", result.pages_visited, exc)
                result.aborted = True
                result.stop_reason = "error"
                break
            if current_url is None:
                logger.info("Reached last page of search results")
                result.stop_reason = "last_page"
                break
            self._random_delay()

        logger.info(
            "Finished listing walk: %s pages, %s jobs enqueued (%s)",
            result.pages_visited,
            result.jobs_enqueued,
            result.stop_reason,
        )
        return result

    def count_pages(self, start_url: str) -> PageCount:
        """Count listing pages by following next-page controls, without enqueuing."""
        html = self._load(start_url, preloaded=False)
        count = PageCount(
            counted_pages=1,
            inferred_pages=parse_max_page(html),
            total_records=parse_total_records(html),
        )
        current_url = start_url
        logger.info("Counting pages from %s", start_url)

        while count.counted_pages < self.safety_ceiling and not self.stopped:
            next_element = find_next_affordance(self.session)
            if next_element is None:
                break
            href = next_element.attribute("href")
            if href and not href.startswith(("#", "javascript:")):
                current_url = urljoin(current_url, href)
                self.session.open(current_url)
            else:
                next_element.click()
            self.session.wait_until_stable()
            count.counted_pages += 1
            count.inferred_pages = max(count.inferred_pages, parse_max_page(self.session.current_content()))
            if count.counted_pages <= 20 or count.counted_pages % 10 == 0:
                logger.info("Page %s", count.counted_pages)

        count.total_pages = max(count.counted_pages, count.inferred_pages)
        logger.info("Total pages counted: %s (pagination shows %s)", count.counted_pages, count.inferred_pages)
        return count
