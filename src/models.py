"""
Data models for the listing harvester
Defines jobs moving through the queue, extracted records and the catalog
"""

from enum import Enum
from typing import Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field

FORMAT_VERSION = "1.0.0"


def _now_iso() -> str:
    return datetime.now().isoformat()


class JobStatus(str, Enum):
    """Partition a job currently lives in"""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobDescriptor(BaseModel):
    """A detail page waiting to be (or being) harvested"""

    id: str
    url: str
    preview_fields: Dict[str, str] = Field(default_factory=dict)
    attempts: int = 0
    status: JobStatus = JobStatus.PENDING

    added_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    result: Optional[dict] = None

    def __str__(self) -> str:
        return f"{self.id} ({self.url})"


class RecordFields(BaseModel):
    """Structured output for one detail page"""

    id: str = ""
    title: str
    company: str
    company_logo: str = ""
    location: str
    salary: str
    positions: str = ""
    description: str = ""
    requirements: str = ""
    benefits: str = ""
    company_history: str = ""
    contact: str = ""
    transportation: str = ""
    preview_text: str = ""
    job_url: str = ""
    posted_date: str = ""
    scraped_at: str = Field(default_factory=_now_iso)

    def __str__(self) -> str:
        return f"{self.title} at {self.company} ({self.location})"


class CatalogMetadata(BaseModel):
    total_records: int = 0
    last_updated: str = Field(default_factory=_now_iso)
    format_version: str = FORMAT_VERSION


class PersistedCatalog(BaseModel):
    """On-disk document: metadata plus the ordered record list"""

    metadata: CatalogMetadata = Field(default_factory=CatalogMetadata)
    records: List[RecordFields] = Field(default_factory=list)


class QueueStats(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0
    paused: bool = False


class CrawlResult(BaseModel):
    """Outcome of one listing walk"""

    pages_visited: int = 0
    candidates_found: int = 0
    jobs_enqueued: int = 0
    total_records: int = 0
    max_page: int = 0
    stop_reason: str = ""
    aborted: bool = False


class PageCount(BaseModel):
    counted_pages: int = 0
    inferred_pages: int = 0
    total_pages: int = 0
    total_records: int = 0


class RunSummary(BaseModel):
    """Final statistics reported at the end of a run"""

    completed: int = 0
    failed: int = 0
    pending: int = 0
    retried: int = 0
    elapsed_seconds: float = 0.0
    stored_records: int = 0
    stopped: bool = False
    crawl: CrawlResult = Field(default_factory=CrawlResult)
