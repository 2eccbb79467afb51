"""
Jobs API Routes
Diagnostic listing of the jobs held by this process.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from modelproxy.api.deps import get_orchestrator
from modelproxy.models.job import JobStatus
from modelproxy.schemas.job import JobListResponse, JobStatusResponse
from modelproxy.services.orchestrator import Orchestrator

router = APIRouter()


@router.get("", response_model=JobListResponse)
async def list_jobs(
    job_status: Optional[JobStatus] = Query(None, alias="status"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """List jobs with optional filters, newest first."""
    jobs = orchestrator.list_jobs(job_status)
    page = jobs[offset:offset + limit]

    return JobListResponse(
        jobs=[JobStatusResponse.from_job(job) for job in page],
        total=len(jobs),
        limit=limit,
        offset=offset,
        counts=orchestrator.registry.count_by_status(),
    )
