"""
Generate Schemas
Pydantic models for generation API responses.
"""

from modelproxy.models.job import JobStatus
from modelproxy.schemas.job import CamelModel


class GenerateResponse(CamelModel):
    """Schema for generation response."""
    job_id: str
    status: JobStatus
    message: str
    estimated_time: int  # seconds
