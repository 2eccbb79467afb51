"""
Job Runner
Drives one generation job from submission to a terminal state:
submit -> poll with backoff -> download -> upload -> complete.

Each job gets exactly one runner task, and that task is the only writer of
the job's record.
"""

import asyncio
import logging
import mimetypes
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import urlparse

from modelproxy.core.config import Settings
from modelproxy.core.logging import EventRecorder
from modelproxy.models.job import ErrorInfo, GenerationInput, Job, JobStatus, utcnow
from modelproxy.services.generation_client import GenerationClient, ProviderState, ProviderStatus
from modelproxy.services.registry import JobRegistry
from modelproxy.services.status_cache import StatusCache
from modelproxy.services.storage import AssetStore
from modelproxy.workers.base import (
    ErrorCode,
    InvalidTransitionError,
    JobTimeoutError,
    PermanentProviderError,
    StorageError,
    TransientProviderError,
    WorkerException,
)

logger = logging.getLogger(__name__)

# Progress milestones (0-100). Provider progress is scaled into the
# SUBMITTED..POLL_CEILING band; only completion reaches 100.
SUBMITTED_PROGRESS = 20
POLL_CEILING_PROGRESS = 80
FINALIZE_PROGRESS = 85
COMPLETED_PROGRESS = 100

DEFAULT_MODEL_EXTENSION = ".glb"
MODEL_MIME_TYPES = {
    ".glb": "model/gltf-binary",
    ".gltf": "model/gltf+json",
    ".obj": "model/obj",
    ".fbx": "application/octet-stream",
    ".stl": "model/stl",
    ".usdz": "model/vnd.usdz+zip",
}


def scale_provider_progress(provider_progress: int) -> int:
    """Map provider progress 0-100 onto the polling band of job progress."""
    span = POLL_CEILING_PROGRESS - SUBMITTED_PROGRESS
    scaled = SUBMITTED_PROGRESS + int(max(0, min(provider_progress, 100)) * span / 100)
    return min(scaled, POLL_CEILING_PROGRESS)


@dataclass
class PollSettings:
    """Schedule and limits of a job's own poll loop."""

    interval: float = 5.0
    backoff_factor: float = 1.2
    error_backoff_factor: float = 1.5
    max_interval: float = 30.0
    max_attempts: int = 60
    job_timeout: float = 300.0

    @classmethod
    def from_settings(cls, settings: Settings) -> "PollSettings":
        return cls(
            interval=settings.POLL_INTERVAL,
            backoff_factor=settings.POLL_BACKOFF_FACTOR,
            error_backoff_factor=settings.POLL_ERROR_BACKOFF_FACTOR,
            max_interval=settings.POLL_MAX_INTERVAL,
            max_attempts=settings.POLL_MAX_ATTEMPTS,
            job_timeout=settings.JOB_TIMEOUT,
        )

    def next_delay(self, attempt: int, after_error: bool = False) -> float:
        factor = self.error_backoff_factor if after_error else self.backoff_factor
        return min(self.interval * (factor ** attempt), self.max_interval)


@dataclass
class JobRunner:
    """Lifecycle of a single job. Create one per job and await ``run()`` in its own task."""

    job_id: str
    generation_input: GenerationInput = field(repr=False)
    credential: str = field(repr=False)
    client: GenerationClient = field(repr=False)
    store: AssetStore = field(repr=False)
    registry: JobRegistry = field(repr=False)
    events: EventRecorder = field(repr=False)
    poll_settings: PollSettings = field(default_factory=PollSettings)
    status_cache: Optional[StatusCache] = field(default=None, repr=False)
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)
    clock: Callable[[], float] = field(default=time.monotonic, repr=False)

    def __post_init__(self):
        self.started_at = self.clock()
        self.deadline = self.started_at + self.poll_settings.job_timeout

    async def run(self) -> Optional[Job]:
        """
        Run the job to a terminal state.

        Cancellation (process shutdown) leaves the job in its last observed
        state and re-raises; it is never recorded as a failure.
        """
        logger.info(f"[START] job {self.job_id} | input={self.generation_input.kind}")
        try:
            await self._publish(self.registry.require(self.job_id))

            provider_job_id = await self._submit()
            if provider_job_id is None:
                return self.registry.get(self.job_id)

            status = await self._poll_until_done(provider_job_id)
            if status is None:
                return self.registry.get(self.job_id)

            await self._finalize(status)
            return self.registry.get(self.job_id)

        except asyncio.CancelledError:
            job = self.registry.get(self.job_id)
            self.events.record(
                "job_cancelled",
                job_id=self.job_id,
                status=job.status.value if job else None,
            )
            raise

        except Exception as e:
            logger.exception(f"[ERROR] job {self.job_id} crashed: {e}")
            await self._fail(WorkerException(f"Internal error: {e}"))
            return self.registry.get(self.job_id)

    # ------------------------------------------------------------------
    # Lifecycle steps
    # ------------------------------------------------------------------

    async def _submit(self) -> Optional[str]:
        try:
            provider_job_id = await self.client.submit(
                self.generation_input, self.credential, on_retry=self._retry_hook("submit")
            )
        except WorkerException as e:
            await self._fail(e)
            return None

        current = self.registry.require(self.job_id)
        await self._update(
            status=JobStatus.PROCESSING,
            provider_job_id=provider_job_id,
            progress=max(current.progress, SUBMITTED_PROGRESS),
        )
        return provider_job_id

    async def _poll_until_done(self, provider_job_id: str) -> Optional[ProviderStatus]:
        """Poll until the provider reports success; returns None once the job has failed."""
        attempt = 0

        while True:
            if self.clock() >= self.deadline:
                await self._fail(JobTimeoutError(
                    f"Model generation timed out after {self.poll_settings.job_timeout:g}s",
                    details={"polls": attempt},
                ))
                return None

            if attempt >= self.poll_settings.max_attempts:
                await self._fail(JobTimeoutError(
                    f"Model generation timed out after {attempt} status checks",
                    details={"polls": attempt},
                ))
                return None

            try:
                status = await self.client.poll(
                    provider_job_id, self.credential, on_retry=self._retry_hook("poll")
                )
            except TransientProviderError as e:
                attempt += 1
                delay = self.poll_settings.next_delay(attempt, after_error=True)
                self.events.record(
                    "poll_retry", job_id=self.job_id, attempt=attempt,
                    delay=round(delay, 3), error=e.code,
                )
                await self._sleep_before_next_poll(delay)
                continue
            except WorkerException as e:
                await self._fail(e)
                return None

            attempt += 1
            current = self.registry.require(self.job_id)
            progress = max(current.progress, scale_provider_progress(status.progress))
            await self._update(progress=progress)

            if status.state == ProviderState.SUCCEEDED:
                if not status.result_location:
                    await self._fail(PermanentProviderError(
                        "Provider reported success without a result location",
                        code=ErrorCode.MISSING_RESULT,
                        details={"provider_status": status.raw_status},
                    ))
                    return None
                return status

            if status.state == ProviderState.FAILED:
                await self._fail(PermanentProviderError(
                    status.error_message or "Model generation failed",
                    code=ErrorCode.GENERATION_FAILED,
                    details={"provider_status": status.raw_status},
                ))
                return None

            await self._sleep_before_next_poll(self.poll_settings.next_delay(attempt))

    async def _finalize(self, status: ProviderStatus) -> None:
        """Download then upload exactly once; any failure fails the job."""
        current = self.registry.require(self.job_id)
        await self._update(
            progress=max(current.progress, FINALIZE_PROGRESS),
            thumbnail_url=status.thumbnail_url,
        )

        try:
            data = await self.client.download(
                status.result_location, on_retry=self._retry_hook("download")
            )
        except WorkerException as e:
            await self._fail(e, code=ErrorCode.DOWNLOAD_FAILED)
            return

        name = self._asset_name(status.result_location)
        mime_type = self._asset_mime_type(name)
        logger.info(f"Uploading model for job {self.job_id}: {len(data)} bytes")

        try:
            result = await self.store.upload(data, name, mime_type)
        except WorkerException as e:
            await self._fail(e, code=ErrorCode.UPLOAD_FAILED)
            return

        job = await self._update(
            status=JobStatus.COMPLETED,
            progress=COMPLETED_PROGRESS,
            result_url=result.url,
            result_key=result.key,
            result_size=result.size,
            result_checksum=result.checksum,
            completed_at=utcnow(),
        )
        self.events.record(
            "job_finished", job_id=self.job_id, outcome=job.status.value,
            result_url=result.url, duration=round(self.clock() - self.started_at, 3),
        )

        # The job is already reported complete; a failed check is only logged.
        if not await self.store.verify_integrity(result.key, result.size):
            self.events.record(
                "integrity_check_failed", job_id=self.job_id,
                key=result.key, expected_size=result.size,
            )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _update(self, **fields) -> Job:
        previous = self.registry.require(self.job_id)
        job = self.registry.update(self.job_id, **fields)
        if job.status != previous.status:
            self.events.record(
                "job_transition", job_id=self.job_id,
                from_status=previous.status.value, to_status=job.status.value,
                progress=job.progress,
            )
        await self._publish(job)
        return job

    async def _publish(self, job: Job) -> None:
        if self.status_cache is not None:
            await self.status_cache.store(job)

    async def _fail(self, error: WorkerException, code: Optional[str] = None) -> None:
        job = self.registry.get(self.job_id)
        if job is None or job.is_terminal:
            return

        error_code = code or error.code
        if isinstance(error, StorageError) and code is None:
            error_code = ErrorCode.UPLOAD_FAILED

        info = ErrorInfo(
            code=error_code,
            message=error.message,
            details=dict(error.details),
        )
        try:
            await self._update(status=JobStatus.FAILED, error=info)
        except InvalidTransitionError:
            return

        logger.error(f"[ERROR] job {self.job_id} failed | {error_code}: {error.message}")
        self.events.record(
            "job_finished", job_id=self.job_id, outcome=JobStatus.FAILED.value,
            code=error_code, duration=round(self.clock() - self.started_at, 3),
        )

    async def _sleep_before_next_poll(self, delay: float) -> None:
        remaining = self.deadline - self.clock()
        await self.sleep(max(0.0, min(delay, remaining)))

    def _retry_hook(self, operation: str) -> Callable[[int, float, Exception], None]:
        def hook(attempt: int, delay: float, error: Exception) -> None:
            self.events.record(
                "retry_attempt", job_id=self.job_id, operation=operation,
                attempt=attempt + 1, delay=round(delay, 3),
                error=getattr(error, "code", type(error).__name__),
            )
        return hook

    def _asset_name(self, location: str) -> str:
        suffix = ""
        path = urlparse(location).path
        if "." in path.rsplit("/", 1)[-1]:
            suffix = "." + path.rsplit(".", 1)[-1].lower()
        if suffix not in MODEL_MIME_TYPES:
            suffix = DEFAULT_MODEL_EXTENSION
        return f"model_{self.job_id}{suffix}"

    @staticmethod
    def _asset_mime_type(name: str) -> str:
        for extension, mime_type in MODEL_MIME_TYPES.items():
            if name.endswith(extension):
                return mime_type
        return mimetypes.guess_type(name)[0] or "application/octet-stream"


__all__ = [
    "SUBMITTED_PROGRESS",
    "FINALIZE_PROGRESS",
    "COMPLETED_PROGRESS",
    "scale_provider_progress",
    "PollSettings",
    "JobRunner",
]
