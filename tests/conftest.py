"""
Pytest configuration and shared fixtures.
"""

import pytest
import yaml
from pathlib import Path
from typing import Any, Dict

from catalog_store import CatalogStore
from config_loader import ConfigLoader
from job_queue import JobQueue
from models import JobDescriptor, RecordFields

from fakes import BASE


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@pytest.fixture
def base_settings(tmp_path: Path) -> Dict[str, Any]:
    """Fast settings: no delays, no backoff, output under tmp_path."""
    return {
        "search": {
            "mode": "custom_url",
            "custom_url": f"{BASE}/th/jobs",
            "base_url": f"{BASE}/th/jobs",
        },
        "scraper": {
            "workers": 2,
            "max_pages": 0,
            "retry_attempts": 3,
            "page_retry_backoff": 0,
            "poll_interval": 0.01,
            "delay": {"min": 0, "max": 0},
        },
        "browser": {"endpoint": "", "headless": True},
        "output": {"json_file": str(tmp_path / "output" / "jobs.json"), "metrics_file": ""},
        "logging": {"level": "DEBUG", "log_file": str(tmp_path / "logs" / "harvest.log")},
    }


@pytest.fixture
def write_config(tmp_path: Path, base_settings: Dict[str, Any]):
    """Write settings (merged over the fast defaults) and return the path."""

    def _write(overrides: Dict[str, Any] = None, merge: bool = True) -> Path:
        settings = _deep_merge(base_settings, overrides or {}) if merge else (overrides or {})
        path = tmp_path / "config" / "settings.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(settings, allow_unicode=True), encoding="utf-8")
        return path

    return _write


@pytest.fixture
def config(write_config) -> ConfigLoader:
    return ConfigLoader(str(write_config()))


@pytest.fixture
def catalog_path(tmp_path: Path) -> Path:
    return tmp_path / "output" / "jobs.json"


@pytest.fixture
def store(catalog_path: Path) -> CatalogStore:
    catalog = CatalogStore(catalog_path)
    catalog.initialize()
    return catalog


@pytest.fixture
def queue() -> JobQueue:
    return JobQueue(retry_limit=3)


@pytest.fixture
def make_job():
    def _make(job_id: str, **preview: str) -> JobDescriptor:
        return JobDescriptor(id=job_id, url=f"{BASE}/th/job/{job_id}", preview_fields=preview)

    return _make


@pytest.fixture
def make_record():
    def _make(record_id: str, title: str = "Engineer", **fields: str) -> RecordFields:
        return RecordFields(
            id=record_id,
            title=title,
            company=fields.pop("company", "Acme Co., Ltd."),
            location=fields.pop("location", "Bangkok"),
            salary=fields.pop("salary", "Not specified"),
            **fields,
        )

    return _make
