"""
Job Orchestrator
Accepts generation requests, owns one background task per in-flight job
and answers status queries.
"""

import asyncio
import logging
import uuid
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from modelproxy.core.config import Settings
from modelproxy.core.logging import EventRecorder, LoggingEventRecorder
from modelproxy.models.job import GenerationInput, InputKind, Job, JobStatus, utcnow
from modelproxy.services.generation_client import GenerationClient
from modelproxy.services.registry import JobRegistry
from modelproxy.services.status_cache import StatusCache
from modelproxy.services.storage import AssetStore
from modelproxy.services.validation import InputValidator
from modelproxy.workers.base import JobNotFoundError, ServiceUnavailableError
from modelproxy.workers.poller import JobRunner, PollSettings

logger = logging.getLogger(__name__)


class Orchestrator:
    """
    Entry point of the job engine.

    ``submit`` returns as soon as the job is registered; the provider is only
    contacted from the job's own task. Status reads come from the registry,
    falling back to the cache for jobs it no longer holds, and never wait on
    a job's task.
    """

    def __init__(
        self,
        client: GenerationClient,
        store: AssetStore,
        registry: Optional[JobRegistry] = None,
        status_cache: Optional[StatusCache] = None,
        events: Optional[EventRecorder] = None,
        poll_settings: Optional[PollSettings] = None,
        validator: Optional[InputValidator] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.store = store
        self.registry = registry if registry is not None else JobRegistry()
        self.status_cache = status_cache
        self.events = events or LoggingEventRecorder()
        self.poll_settings = poll_settings or PollSettings()
        self.validator = validator or InputValidator()
        self.sleep = sleep
        self._tasks: Dict[str, asyncio.Task] = {}
        self._accepting = True

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: GenerationClient,
        store: AssetStore,
        registry: Optional[JobRegistry] = None,
        status_cache: Optional[StatusCache] = None,
        events: Optional[EventRecorder] = None,
    ) -> "Orchestrator":
        return cls(
            client=client,
            store=store,
            registry=registry,
            status_cache=status_cache,
            events=events,
            poll_settings=PollSettings.from_settings(settings),
            validator=InputValidator(
                max_text_length=settings.MAX_TEXT_LENGTH,
                allowed_image_types=settings.ALLOWED_IMAGE_TYPES,
                max_file_size=settings.MAX_FILE_SIZE,
            ),
        )

    @property
    def active_jobs(self) -> int:
        return len(self._tasks)

    def submit(self, generation_input: GenerationInput, credential: str) -> Job:
        """
        Register a new job and start its background task.

        Must be called from within a running event loop. Does no network I/O.

        Args:
            generation_input: Text or image input
            credential: Caller's provider token, forwarded verbatim

        Returns:
            The new job in ``pending`` state

        Raises:
            ValidationError: input or credential rejected
            ServiceUnavailableError: shutdown already started
            RuntimeError: no running event loop; nothing is registered
        """
        if not self._accepting:
            raise ServiceUnavailableError("Service is shutting down")

        self.validator.validate(generation_input, credential)
        loop = asyncio.get_running_loop()

        now = utcnow()
        job = Job(
            id=str(uuid.uuid4()),
            status=JobStatus.PENDING,
            progress=0,
            input_kind=InputKind(generation_input.kind),
            created_at=now,
            updated_at=now,
            deadline_at=now + timedelta(seconds=self.poll_settings.job_timeout),
        )
        self.registry.create(job)
        self.events.record("job_created", job_id=job.id, input_kind=job.input_kind.value)

        runner = JobRunner(
            job_id=job.id,
            generation_input=generation_input,
            credential=credential,
            client=self.client,
            store=self.store,
            registry=self.registry,
            events=self.events,
            poll_settings=self.poll_settings,
            status_cache=self.status_cache,
            sleep=self.sleep,
        )
        task = loop.create_task(runner.run(), name=f"job-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda t, job_id=job.id: self._on_task_done(job_id, t))

        logger.info(f"Job created: {job.id} ({job.input_kind.value})")
        return job

    def _on_task_done(self, job_id: str, task: asyncio.Task) -> None:
        self._tasks.pop(job_id, None)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Job task {job_id} ended with an unhandled error: {error!r}")

    async def get_job(self, job_id: str) -> Job:
        """Current snapshot of a job; the cache only answers for jobs the registry no longer holds."""
        if self.status_cache is not None:
            job = await self.status_cache.get(job_id)
        else:
            job = self.registry.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    def list_jobs(self, status: Optional[JobStatus] = None) -> List[Job]:
        return self.registry.list_all(status)

    async def wait(self, job_id: str, timeout: Optional[float] = None) -> Job:
        """
        Wait until a job's task has exited, or ``timeout`` elapses.

        Returns the latest snapshot either way.
        """
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        return self.registry.require(job_id)

    async def shutdown(self, grace_period: float = 30.0) -> None:
        """
        Stop accepting jobs, cancel every running job task and wait for them.

        Cancelled jobs keep their last recorded state; they are not marked failed.
        """
        self._accepting = False
        tasks = list(self._tasks.values())
        if not tasks:
            return

        logger.info(f"Cancelling {len(tasks)} in-flight job(s)...")
        for task in tasks:
            task.cancel()

        _, pending = await asyncio.wait(tasks, timeout=grace_period)
        if pending:
            logger.warning(f"{len(pending)} job task(s) did not stop within {grace_period:g}s")
        else:
            logger.info("All job tasks stopped")


__all__ = ["Orchestrator"]
