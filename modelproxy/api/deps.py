"""
API Dependencies
Common dependencies for FastAPI routes (engine components built in the lifespan).
"""

from fastapi import HTTPException, Request, status

from modelproxy.services.orchestrator import Orchestrator
from modelproxy.services.storage import AssetStore
from modelproxy.workers.base import WorkerException


def get_orchestrator(request: Request) -> Orchestrator:
    """Get the orchestrator created at startup."""
    return request.app.state.orchestrator


def get_asset_store(request: Request) -> AssetStore:
    return request.app.state.asset_store


def http_error(error: WorkerException) -> HTTPException:
    """Translate an engine error into an HTTP error with a structured body."""
    return HTTPException(
        status_code=getattr(error, "status_code", status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={
            "code": error.code,
            "message": error.message,
            "details": error.details,
        },
    )
