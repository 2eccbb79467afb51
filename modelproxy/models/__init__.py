# Job models package
from modelproxy.models.job import (
    JobStatus,
    InputKind,
    TextInput,
    ImageInput,
    GenerationInput,
    ErrorInfo,
    Job,
)

__all__ = [
    "JobStatus",
    "InputKind",
    "TextInput",
    "ImageInput",
    "GenerationInput",
    "ErrorInfo",
    "Job",
]
