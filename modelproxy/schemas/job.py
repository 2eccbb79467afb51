"""
Job Schemas
Pydantic models for job status, result and listing responses.
"""

from datetime import datetime
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from modelproxy.models.job import Job, JobStatus


STATUS_MESSAGES = {
    JobStatus.PENDING: "Request submitted, waiting to be processed",
    JobStatus.PROCESSING: "Model is being generated",
    JobStatus.COMPLETED: "Model generation completed",
    JobStatus.FAILED: "Model generation failed",
}


class CamelModel(BaseModel):
    """Response base: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ErrorBody(CamelModel):
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class JobStatusResponse(CamelModel):
    """Schema for job status response."""
    job_id: str
    status: JobStatus
    progress: int
    message: str
    result_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error: Optional[ErrorBody] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None

    @classmethod
    def from_job(cls, job: Job) -> "JobStatusResponse":
        error = None
        if job.error is not None:
            error = ErrorBody(code=job.error.code, message=job.error.message, details=job.error.details)
        return cls(
            job_id=job.id,
            status=job.status,
            progress=job.progress,
            message=STATUS_MESSAGES[job.status],
            result_url=job.result_url,
            thumbnail_url=job.thumbnail_url,
            error=error,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
        )


class ModelMetadata(CamelModel):
    file_size: int
    format: str
    generation_time: int  # milliseconds


class JobResultResponse(CamelModel):
    """Schema for a completed job's result."""
    job_id: str
    status: JobStatus
    model_url: str
    thumbnail_url: Optional[str] = None
    metadata: ModelMetadata

    @classmethod
    def from_job(cls, job: Job) -> "JobResultResponse":
        extension = PurePosixPath(job.result_key or "").suffix.lstrip(".")
        return cls(
            job_id=job.id,
            status=job.status,
            model_url=job.result_url or "",
            thumbnail_url=job.thumbnail_url,
            metadata=ModelMetadata(
                file_size=job.result_size or 0,
                format=extension or "glb",
                generation_time=job.generation_time_ms,
            ),
        )


class JobListResponse(CamelModel):
    """Schema for the diagnostic job listing."""
    jobs: List[JobStatusResponse]
    total: int
    limit: int
    offset: int
    counts: Dict[str, int] = Field(default_factory=dict)
