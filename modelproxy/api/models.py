"""
Model Generation API Routes
Handles generation requests and per-job status and result lookups.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, UploadFile, status

from modelproxy.api.deps import get_orchestrator, http_error
from modelproxy.models.job import ImageInput, JobStatus, TextInput
from modelproxy.schemas.generate import GenerateResponse
from modelproxy.schemas.job import JobResultResponse, JobStatusResponse
from modelproxy.services.orchestrator import Orchestrator
from modelproxy.services.validation import validate_job_id
from modelproxy.workers.base import ErrorCode, ValidationError, WorkerException

logger = logging.getLogger(__name__)

router = APIRouter()


def extract_token(authorization: Optional[str], form_token: Optional[str]) -> Optional[str]:
    """Bearer header wins over the form field."""
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    return form_token


def _require_job_id(job_id: str) -> None:
    if not validate_job_id(job_id):
        raise http_error(ValidationError(
            "Invalid job id format",
            details={"errors": [{"field": "jobId", "message": "must be a UUID"}]},
        ))


@router.post("", response_model=GenerateResponse, status_code=status.HTTP_202_ACCEPTED)
async def create_model(
    input_type: str = Form(..., alias="type"),
    text: Optional[str] = Form(None, alias="input"),
    token: Optional[str] = Form(None),
    image: Optional[UploadFile] = File(None),
    authorization: Optional[str] = Header(None),
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """
    Create a new 3D model generation job.
    Returns immediately; poll the status endpoint for progress.
    """
    credential = extract_token(authorization, token)

    try:
        if input_type == "text":
            generation_input = TextInput(text=text or "")
        elif input_type == "image":
            if image is None:
                raise ValidationError(
                    "Image requests must include an image file",
                    details={"errors": [{"field": "image", "message": "image file is required"}]},
                )
            generation_input = ImageInput(
                data=await image.read(),
                mime_type=image.content_type or "",
                filename=image.filename or "image",
            )
        else:
            raise ValidationError(
                "Unsupported input type",
                details={"errors": [{"field": "type", "message": "must be 'text' or 'image'"}]},
            )

        job = orchestrator.submit(generation_input, credential)
    except WorkerException as e:
        logger.warning(f"Rejected generation request: {e.message}")
        raise http_error(e)

    return GenerateResponse(
        job_id=job.id,
        status=job.status,
        message="Model generation request submitted",
        estimated_time=int(orchestrator.poll_settings.job_timeout),
    )


@router.get("/{job_id}/status", response_model=JobStatusResponse)
async def get_model_status(
    job_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Get job status, progress and failure cause."""
    _require_job_id(job_id)
    try:
        job = await orchestrator.get_job(job_id)
    except WorkerException as e:
        raise http_error(e)
    return JobStatusResponse.from_job(job)


@router.get("/{job_id}/result", response_model=JobResultResponse)
async def get_model_result(
    job_id: str,
    orchestrator: Orchestrator = Depends(get_orchestrator),
):
    """Get the stored model of a completed job."""
    _require_job_id(job_id)
    try:
        job = await orchestrator.get_job(job_id)
    except WorkerException as e:
        raise http_error(e)

    if job.status != JobStatus.COMPLETED or not job.result_url:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": ErrorCode.JOB_NOT_COMPLETED,
                "message": f"Job is not completed yet, current status: {job.status.value}",
                "details": {"status": job.status.value},
            },
        )

    return JobResultResponse.from_job(job)
