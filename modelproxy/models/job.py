"""
Job Model
In-memory record of a 3D-model generation job and the caller's input.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    """Job status enum."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def rank(self) -> int:
        """Position in the lifecycle; both terminal states share the last rank."""
        return {
            JobStatus.PENDING: 0,
            JobStatus.PROCESSING: 1,
            JobStatus.COMPLETED: 2,
            JobStatus.FAILED: 2,
        }[self]


class InputKind(str, Enum):
    TEXT = "text"
    IMAGE = "image"


class TextInput(BaseModel):
    """Text prompt input."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str


class ImageInput(BaseModel):
    """Single reference image input."""
    model_config = ConfigDict(frozen=True)

    kind: Literal["image"] = "image"
    data: bytes = Field(repr=False)
    mime_type: str
    filename: str = "image"

    @property
    def size(self) -> int:
        return len(self.data)


GenerationInput = Annotated[Union[TextInput, ImageInput], Field(discriminator="kind")]


class ErrorInfo(BaseModel):
    """Structured failure cause stored on a failed job."""
    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class Job(BaseModel):
    """
    Generation job snapshot.

    Snapshots are immutable; the registry swaps in a new snapshot on every
    update so readers never observe a half-written record.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    input_kind: InputKind = InputKind.TEXT
    provider_job_id: str = ""

    # Result (completed only)
    result_url: Optional[str] = None
    result_key: Optional[str] = None
    result_size: Optional[int] = None
    result_checksum: Optional[str] = None
    thumbnail_url: Optional[str] = None

    # Failure (failed only)
    error: Optional[ErrorInfo] = None

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    deadline_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def generation_time_ms(self) -> int:
        if self.completed_at is None:
            return 0
        return int((self.completed_at - self.created_at).total_seconds() * 1000)


__all__ = [
    "utcnow",
    "JobStatus",
    "InputKind",
    "TextInput",
    "ImageInput",
    "GenerationInput",
    "ErrorInfo",
    "Job",
]
