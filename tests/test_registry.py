from datetime import timedelta

import pytest

from modelproxy.models.job import ErrorInfo, Job, JobStatus, utcnow
from modelproxy.services.registry import JobRegistry
from modelproxy.workers.base import InvalidTransitionError, JobNotFoundError


def make_job(job_id: str, status: JobStatus = JobStatus.PENDING, age_seconds: float = 0, **fields) -> Job:
    stamp = utcnow() - timedelta(seconds=age_seconds)
    return Job(id=job_id, status=status, created_at=stamp, updated_at=stamp, **fields)


def test_create_and_get():
    registry = JobRegistry()
    job = registry.create(make_job("job-1"))

    assert registry.get("job-1") == job
    assert "job-1" in registry
    assert len(registry) == 1
    assert registry.get("missing") is None


def test_create_rejects_duplicate_ids():
    registry = JobRegistry()
    registry.create(make_job("job-1"))
    with pytest.raises(InvalidTransitionError):
        registry.create(make_job("job-1"))


def test_require_unknown_raises():
    with pytest.raises(JobNotFoundError):
        JobRegistry().require("missing")


def test_update_replaces_snapshot_and_touches_updated_at():
    registry = JobRegistry()
    original = registry.create(make_job("job-1", age_seconds=60))

    updated = registry.update("job-1", status=JobStatus.PROCESSING, progress=20, provider_job_id="task-1")

    assert updated.status == JobStatus.PROCESSING
    assert updated.progress == 20
    assert updated.provider_job_id == "task-1"
    assert updated.updated_at > original.updated_at
    assert original.status == JobStatus.PENDING
    assert registry.get("job-1") is updated


def test_update_accepts_status_strings():
    registry = JobRegistry()
    registry.create(make_job("job-1"))
    assert registry.update("job-1", status="processing").status == JobStatus.PROCESSING


def test_update_rejects_backwards_transition():
    registry = JobRegistry()
    registry.create(make_job("job-1", status=JobStatus.PROCESSING))
    with pytest.raises(InvalidTransitionError):
        registry.update("job-1", status=JobStatus.PENDING)


def test_terminal_jobs_are_read_only():
    registry = JobRegistry()
    registry.create(make_job("job-1", status=JobStatus.PROCESSING))
    registry.update(
        "job-1",
        status=JobStatus.FAILED,
        error=ErrorInfo(code="GENERATION_FAILED", message="boom"),
    )

    with pytest.raises(InvalidTransitionError):
        registry.update("job-1", progress=50)
    with pytest.raises(InvalidTransitionError):
        registry.update("job-1", status=JobStatus.COMPLETED)


def test_update_unknown_job_raises():
    with pytest.raises(JobNotFoundError):
        JobRegistry().update("missing", progress=10)


def test_delete():
    registry = JobRegistry()
    registry.create(make_job("job-1"))
    assert registry.delete("job-1") is True
    assert registry.delete("job-1") is False
    assert registry.get("job-1") is None


def test_list_all_is_newest_first_and_filterable():
    registry = JobRegistry()
    registry.create(make_job("old", age_seconds=30))
    registry.create(make_job("new", status=JobStatus.PROCESSING))
    registry.create(make_job("middle", age_seconds=10))

    assert [job.id for job in registry.list_all()] == ["new", "middle", "old"]
    assert [job.id for job in registry.list_all(JobStatus.PROCESSING)] == ["new"]


def test_count_by_status():
    registry = JobRegistry()
    registry.create(make_job("a"))
    registry.create(make_job("b", status=JobStatus.COMPLETED))
    registry.create(make_job("c", status=JobStatus.COMPLETED))

    assert registry.count_by_status() == {
        "pending": 1,
        "processing": 0,
        "completed": 2,
        "failed": 0,
    }


def test_evict_expired_removes_only_old_terminal_jobs():
    registry = JobRegistry()
    registry.create(make_job("old-done", status=JobStatus.COMPLETED, age_seconds=7200))
    registry.create(make_job("old-failed", status=JobStatus.FAILED, age_seconds=7200))
    registry.create(make_job("old-running", status=JobStatus.PROCESSING, age_seconds=7200))
    registry.create(make_job("fresh-done", status=JobStatus.COMPLETED, age_seconds=10))

    evicted = registry.evict_expired(max_age_seconds=3600)

    assert sorted(evicted) == ["old-done", "old-failed"]
    assert "old-running" in registry
    assert "fresh-done" in registry
    assert len(registry) == 2
