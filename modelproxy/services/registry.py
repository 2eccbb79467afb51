"""
Job Registry
In-memory, thread-safe table of job snapshots keyed by job id.
"""

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from modelproxy.models.job import Job, JobStatus, utcnow
from modelproxy.workers.base import InvalidTransitionError, JobNotFoundError

logger = logging.getLogger(__name__)


class JobRegistry:
    """
    Single source of truth for job state.

    Each job has its own lock for updates; the map itself is guarded by a
    separate lock for create/delete. Reads return the latest immutable
    snapshot without taking any lock.
    """

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._locks: Dict[str, threading.Lock] = {}
        self._map_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    def create(self, job: Job) -> Job:
        """Insert a new job. Fails if the id is already taken."""
        with self._map_lock:
            if job.id in self._jobs:
                raise InvalidTransitionError(f"Job {job.id} already exists")
            self._jobs[job.id] = job
            self._locks[job.id] = threading.Lock()
        logger.debug(f"Registered job {job.id}")
        return job

    def get(self, job_id: str) -> Optional[Job]:
        """Latest snapshot, or None when unknown."""
        return self._jobs.get(job_id)

    def require(self, job_id: str) -> Job:
        job = self.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    def update(self, job_id: str, **fields: Any) -> Job:
        """
        Replace the given fields of a job.

        Args:
            job_id: Job to update
            **fields: Whole-field replacements

        Returns:
            The new snapshot

        Raises:
            JobNotFoundError: unknown job
            InvalidTransitionError: job already terminal, or status would move backwards
        """
        lock = self._locks.get(job_id)
        if lock is None:
            raise JobNotFoundError(f"Job {job_id} not found")

        with lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise JobNotFoundError(f"Job {job_id} not found")

            if current.is_terminal:
                raise InvalidTransitionError(
                    f"Job {job_id} is {current.status.value} and read-only"
                )

            new_status = fields.get("status")
            if new_status is not None:
                new_status = JobStatus(new_status)
                if new_status.rank < current.status.rank:
                    raise InvalidTransitionError(
                        f"Job {job_id} cannot move from {current.status.value} to {new_status.value}"
                    )
                fields["status"] = new_status

            fields.setdefault("updated_at", utcnow())
            updated = current.model_copy(update=fields)
            self._jobs[job_id] = updated

        return updated

    def delete(self, job_id: str) -> bool:
        with self._map_lock:
            removed = self._jobs.pop(job_id, None)
            self._locks.pop(job_id, None)
        return removed is not None

    def list_all(self, status: Optional[JobStatus] = None) -> List[Job]:
        """All jobs, newest first. Diagnostic use only."""
        jobs = list(self._jobs.values())
        if status is not None:
            jobs = [job for job in jobs if job.status == status]
        return sorted(jobs, key=lambda job: job.created_at, reverse=True)

    def count_by_status(self) -> Dict[str, int]:
        counts = {status.value: 0 for status in JobStatus}
        for job in list(self._jobs.values()):
            counts[job.status.value] += 1
        return counts

    def evict_expired(self, max_age_seconds: float, now: Optional[datetime] = None) -> List[str]:
        """
        Remove terminal jobs whose last update is older than ``max_age_seconds``.

        Non-terminal jobs are never evicted; their runner still owns them.

        Returns:
            Ids of the evicted jobs
        """
        cutoff = (now or utcnow()) - timedelta(seconds=max_age_seconds)
        expired = [
            job.id for job in list(self._jobs.values())
            if job.is_terminal and job.updated_at < cutoff
        ]
        for job_id in expired:
            self.delete(job_id)
            logger.info(f"Cleaned up expired job: {job_id}")
        return expired


__all__ = ["JobRegistry"]
