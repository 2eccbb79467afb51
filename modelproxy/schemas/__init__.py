# Pydantic schemas package
from modelproxy.schemas.job import (
    ErrorBody, JobStatusResponse, ModelMetadata, JobResultResponse, JobListResponse
)
from modelproxy.schemas.generate import GenerateResponse

__all__ = [
    "ErrorBody", "JobStatusResponse", "ModelMetadata", "JobResultResponse", "JobListResponse",
    "GenerateResponse",
]
