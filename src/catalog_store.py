"""
Catalog Store - Durable, deduplicated record store
Rewrites the whole JSON catalog on every change so the file on disk is
always a complete document.
"""

from __future__ import annotations

import json
import logging
import os
import stat
import tempfile
import threading
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Set

from pydantic import ValidationError

from models import CatalogMetadata, PersistedCatalog, RecordFields

logger = logging.getLogger(__name__)


class CatalogStore:
    """Persists harvested records to a single JSON catalog file."""

    def __init__(self, output_path: Path) -> None:
        self.output_path = Path(output_path)
        self._records: List[RecordFields] = []
        self._ids: Set[str] = set()
        self._lock = threading.RLock()
        self._initialized = False

    def initialize(self) -> int:
        """Create the output directory and recover any previous catalog.

        Returns the number of records recovered.
        """
        with self._lock:
            self.output_path.parent.mkdir(parents=True, exist_ok=True)
            self._records = []
            self._ids = set()

            if self.output_path.exists():
                catalog = self._load()
                if catalog is None:
                    self._set_aside_unreadable()
                else:
                    for record in catalog.records:
                        if record.id in self._ids:
                            logger.warning("Dropping duplicate record %s found in %s", record.id, self.output_path)
                            continue
                        self._ids.add(record.id)
                        self._records.append(record)
                    logger.info("Loaded %s existing records from %s", len(self._records), self.output_path)

            self._initialized = True
            self._save()
            return len(self._records)

    def _load(self) -> Optional[PersistedCatalog]:
        try:
            raw = self.output_path.read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("Failed to read catalog %s: %s", self.output_path, exc)
            return None
        if not raw.strip():
            return None
        try:
            return PersistedCatalog.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as exc:
            logger.warning("Ignoring malformed catalog %s: %s", self.output_path, exc)
            return None

    def _set_aside_unreadable(self) -> None:
        """Keep an unreadable catalog around instead of overwriting it."""
        try:
            if self.output_path.stat().st_size == 0:
                return
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            target = self.output_path.with_name(f"{self.output_path.name}.corrupt-{stamp}")
            os.replace(self.output_path, target)
            logger.warning("Moved unreadable catalog to %s", target)
        except OSError as exc:
            logger.warning("Could not set aside unreadable catalog %s: %s", self.output_path, exc)

    def _ensure_initialized(self) -> None:
        if not self._initialized:
            self.initialize()

    def add(self, record: RecordFields) -> bool:
        """Append a record and rewrite the catalog. False on duplicate id."""
        with self._lock:
            self._ensure_initialized()
            if record.id in self._ids:
                logger.info("Skipping duplicate record: %s", record.id)
                return False
            self._save(self._records + [record])
            self._ids.add(record.id)
            self._records.append(record)
            logger.info("Saved record %s - %s (total: %s)", record.id, record.title, len(self._records))
            return True

    def add_batch(self, records: Iterable[RecordFields]) -> int:
        """Add several records with a single rewrite. Returns count added."""
        with self._lock:
            self._ensure_initialized()
            fresh: List[RecordFields] = []
            seen = set(self._ids)
            for record in records:
                if record.id in seen:
                    logger.info("Skipping duplicate record: %s", record.id)
                    continue
                seen.add(record.id)
                fresh.append(record)
            added = len(fresh)
            if added:
                self._save(self._records + fresh)
                self._ids.update(record.id for record in fresh)
                self._records.extend(fresh)
                logger.info("Saved %s new records (total: %s)", added, len(self._records))
            return added

    def existing_ids(self) -> Set[str]:
        with self._lock:
            return set(self._ids)

    def has_record(self, record_id: str) -> bool:
        with self._lock:
            return record_id in self._ids

    def count(self) -> int:
        with self._lock:
            return len(self._records)

    def records(self) -> List[RecordFields]:
        with self._lock:
            return [record.model_copy() for record in self._records]

    def _catalog(self, records: Optional[List[RecordFields]] = None) -> PersistedCatalog:
        records = list(self._records if records is None else records)
        return PersistedCatalog(
            metadata=CatalogMetadata(
                total_records=len(records),
                last_updated=datetime.now().isoformat(),
            ),
            records=records,
        )

    def _save(self, records: Optional[List[RecordFields]] = None) -> None:
        """Write the catalog; in-memory state is only updated by callers after this succeeds."""
        payload = self._catalog(records).model_dump(mode="json")
        self._write_atomic(self.output_path, payload)

    def _write_atomic(self, path: Path, payload: dict) -> None:
        """Write to a temp file in the same directory, then swap it in."""
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def backup_path(self, timestamp: Optional[datetime] = None) -> Path:
        moment = timestamp or datetime.now()
        stamp = moment.strftime("%Y-%m-%d_%H-%M-%S-%f")
        return self.output_path.with_name(f"{self.output_path.stem}-backup-{stamp}{self.output_path.suffix}")

    def backup(self) -> Optional[Path]:
        """Write a timestamped read-only snapshot. No-op when empty."""
        with self._lock:
            if not self._records:
                return None
            backup_path = self.backup_path()
            payload = self._catalog().model_dump(mode="json")
            payload["metadata"]["backup_date"] = datetime.now().isoformat()
            self._write_atomic(backup_path, payload)
            os.chmod(backup_path, stat.S_IRUSR | stat.S_IRGRP | stat.S_IROTH)
            logger.info("Backup created: %s", backup_path)
            return backup_path
