"""
Tests for the detail worker pool and record merging.
"""

import json

import pytest

from browser_session import SessionError
from extractor import UNKNOWN_COMPANY, UNKNOWN_SALARY, UNKNOWN_TITLE
from models import JobStatus, RecordFields
from worker_pool import WorkerPool, merge_record

from fakes import FakeSession, FakeSessionFactory, detail_page, detail_url


def make_pool(queue, store, factory, workers=2, **kwargs):
    kwargs.setdefault("min_delay", 0)
    kwargs.setdefault("max_delay", 0)
    kwargs.setdefault("poll_interval", 0.01)
    return WorkerPool(queue, store, factory, workers=workers, **kwargs)


def detail_pages(ids):
    return {detail_url(job_id): detail_page(job_id) for job_id in ids}


class TestMergeRecord:
    """Detail fields win, preview fills the gaps, placeholders last."""

    def test_detail_values_win(self, make_job):
        job = make_job("1", title="Preview Title", company="Preview Co")
        fields = RecordFields(title="Detail Title", company="Detail Co", location="Bangkok", salary="50,000 บาท")
        merged = merge_record(job, fields)
        assert merged.title == "Detail Title"
        assert merged.company == "Detail Co"

    def test_preview_replaces_placeholders(self, make_job):
        job = make_job("1", title="Preview Title", salary="30,000 บาท", posted_date="5 ม.ค. 68", preview_text="raw card")
        fields = RecordFields(title=UNKNOWN_TITLE, company=UNKNOWN_COMPANY, location="Bangkok", salary=UNKNOWN_SALARY)
        merged = merge_record(job, fields)
        assert merged.title == "Preview Title"
        assert merged.salary == "30,000 บาท"
        assert merged.posted_date == "5 ม.ค. 68"
        assert merged.preview_text == "raw card"
        assert merged.company == UNKNOWN_COMPANY

    def test_identity_comes_from_job(self, make_job):
        job = make_job("42")
        fields = RecordFields(id="other", title="T", company="C", location="L", salary="S", job_url="https://elsewhere")
        merged = merge_record(job, fields)
        assert merged.id == "42"
        assert merged.job_url == job.url


class TestWorkerPool:
    def test_harvests_every_job(self, queue, store, make_job):
        """Five unique jobs, two workers, all fetches succeed."""
        ids = [str(i) for i in range(1, 6)]
        factory = FakeSessionFactory(detail_pages(ids))
        queue.enqueue_batch(make_job(job_id) for job_id in ids)
        pool = make_pool(queue, store, factory, workers=2)

        pool.init()
        pool.start()

        stats = queue.stats()
        assert stats.completed == 5
        assert stats.failed == 0
        assert store.count() == 5
        assert pool.total_processed() == 5
        assert sorted(factory.sessions) == ["worker-1", "worker-2"]
        assert all(session.closed for session in factory.sessions.values())

    def test_stored_record_has_detail_fields(self, queue, store, make_job):
        factory = FakeSessionFactory(detail_pages(["9"]))
        queue.enqueue(make_job("9", preview_text="card text"))
        make_pool(queue, store, factory, workers=1).start()

        record = store.records()[0]
        assert record.id == "9"
        assert record.title == "Engineer 9"
        assert record.company == "Acme Co., Ltd."
        assert record.preview_text == "card text"
        assert record.job_url == detail_url("9")

    def test_transient_failures_are_retried(self, queue, store, make_job):
        factory = FakeSessionFactory(detail_pages(["X"]), failures={detail_url("X"): 2})
        queue.enqueue(make_job("X"))
        make_pool(queue, store, factory, workers=1).start()

        job = queue.find("X")
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 3

    def test_persistent_failure_ends_in_failed(self, queue, store, make_job):
        factory = FakeSessionFactory(detail_pages(["Y"]), failures={detail_url("Y"): 10})
        queue.enqueue(make_job("Y"))
        make_pool(queue, store, factory, workers=1).start()

        job = queue.find("Y")
        assert job.status == JobStatus.FAILED
        assert job.attempts == 3
        assert "timeout" in job.last_error
        assert factory.sessions["worker-1"].opened.count(detail_url("Y")) == 3
        assert store.count() == 0

    def test_duplicate_in_store_still_completes(self, queue, store, make_job, make_record):
        store.add(make_record("1", title="Stored Earlier"))
        factory = FakeSessionFactory(detail_pages(["1"]))
        queue.enqueue(make_job("1"))
        pool = make_pool(queue, store, factory, workers=1)
        pool.start()

        assert queue.status_of("1") == JobStatus.COMPLETED
        assert store.count() == 1
        assert store.records()[0].title == "Stored Earlier"
        assert pool.workers[0].duplicates == 1

    def test_extractor_errors_fail_the_job(self, queue, store, make_job):
        def broken_extractor(content, url):
            raise ValueError("unexpected markup")

        factory = FakeSessionFactory(detail_pages(["1"]))
        queue.enqueue(make_job("1"))
        make_pool(queue, store, factory, workers=1, extractor=broken_extractor).start()

        job = queue.find("1")
        assert job.status == JobStatus.FAILED
        assert job.last_error == "unexpected markup"

    def test_session_start_failure_does_not_hang(self, queue, store, make_job):
        def failing_factory(name):
            raise SessionError("driver unreachable")

        queue.enqueue(make_job("1"))
        pool = make_pool(queue, store, failing_factory, workers=2)
        pool.start()

        assert queue.status_of("1") == JobStatus.PENDING
        assert [status["has_session"] for status in pool.status()] == [False, False]
        assert [status["running"] for status in pool.status()] == [False, False]

    def test_stop_before_start_leaves_jobs_pending(self, queue, store, make_job):
        factory = FakeSessionFactory(detail_pages(["1"]))
        queue.enqueue(make_job("1"))
        pool = make_pool(queue, store, factory, workers=1)
        pool.init()
        pool.stop()
        pool.start()

        assert queue.status_of("1") == JobStatus.PENDING
        assert factory.sessions["worker-1"].closed

    def test_close_swallows_session_errors(self, queue, store):
        class StickySession(FakeSession):
            def close(self):
                raise SessionError("already gone")

        pool = make_pool(queue, store, lambda name: StickySession({}), workers=1)
        pool.init()
        pool.workers[0].session = StickySession({})
        pool.close()
        pool.close()
        assert pool.workers[0].session is None

    def test_rejects_empty_pool(self, queue, store):
        with pytest.raises(ValueError):
            WorkerPool(queue, store, FakeSessionFactory({}), workers=0)


class TestStoreFailures:
    def test_failed_write_is_retried_until_on_disk(self, queue, store, catalog_path, make_job, monkeypatch):
        original = store._write_atomic
        failures = [OSError("disk full")]

        def flaky(path, payload):
            if failures:
                raise failures.pop()
            return original(path, payload)

        monkeypatch.setattr(store, "_write_atomic", flaky)
        factory = FakeSessionFactory(detail_pages(["1"]))
        queue.enqueue(make_job("1"))
        make_pool(queue, store, factory, workers=1).start()

        job = queue.find("1")
        assert job.status == JobStatus.COMPLETED
        assert job.attempts == 2
        on_disk = json.loads(catalog_path.read_text(encoding="utf-8"))
        assert [r["id"] for r in on_disk["records"]] == ["1"]
