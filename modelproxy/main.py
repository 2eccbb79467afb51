"""
Model Proxy API - 3D Model Generation Proxy
FastAPI Backend Entry Point
"""

import io
import logging
from contextlib import asynccontextmanager
from pathlib import PurePosixPath
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from modelproxy import __version__
from modelproxy.api import jobs, models
from modelproxy.api.deps import get_asset_store
from modelproxy.core.config import Settings, get_settings
from modelproxy.core.logging import LoggingEventRecorder, setup_logging
from modelproxy.core.redis import RedisManager
from modelproxy.services.generation_client import GenerationClient
from modelproxy.services.orchestrator import Orchestrator
from modelproxy.services.registry import JobRegistry
from modelproxy.services.status_cache import StatusCache
from modelproxy.services.storage import AssetStore
from modelproxy.workers.base import WorkerException
from modelproxy.workers.poller import MODEL_MIME_TYPES
from modelproxy.workers.sweeper import RetentionSweeper

logger = logging.getLogger(__name__)

VERSION = __version__


def build_engine(app: FastAPI, settings: Settings) -> None:
    """Construct every engine component once and hang them on app.state."""
    events = LoggingEventRecorder()
    registry = JobRegistry()

    status_cache = None
    if settings.USE_STATUS_CACHE:
        status_cache = StatusCache(
            registry, RedisManager(settings.REDIS_URL), ttl=settings.STATUS_CACHE_TTL
        )

    client = GenerationClient.from_settings(settings)
    asset_store = AssetStore.from_settings(settings)

    app.state.settings = settings
    app.state.registry = registry
    app.state.status_cache = status_cache
    app.state.client = client
    app.state.asset_store = asset_store
    app.state.orchestrator = Orchestrator.from_settings(
        settings, client, asset_store,
        registry=registry, status_cache=status_cache, events=events,
    )
    app.state.sweeper = RetentionSweeper(
        registry,
        status_cache=status_cache,
        retention_seconds=settings.JOB_RETENTION_SECONDS,
        interval=settings.SWEEP_INTERVAL,
        events=events,
    )


async def shutdown_engine(app: FastAPI, settings: Settings) -> None:
    await app.state.sweeper.stop()
    await app.state.orchestrator.shutdown(settings.SHUTDOWN_GRACE_PERIOD)
    await app.state.client.aclose()
    if app.state.status_cache is not None:
        await app.state.status_cache.close()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        setup_logging(settings.LOG_LEVEL)
        logger.info("Starting Model Proxy API...")
        build_engine(app, settings)
        app.state.sweeper.start()
        yield
        logger.info("Shutting down Model Proxy API...")
        await shutdown_engine(app, settings)

    app = FastAPI(
        title=settings.APP_NAME,
        description="Text/image to 3D model generation proxy with durable asset storage",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(models.router, prefix="/api/v1/models", tags=["Models"])
    app.include_router(jobs.router, prefix="/api/v1/jobs", tags=["Jobs"])

    @app.get("/health", tags=["Health"])
    async def health_check():
        """
        Health check endpoint for monitoring.
        Returns detailed status of critical services.
        """
        orchestrator: Orchestrator = app.state.orchestrator
        status = {
            "status": "healthy",
            "version": VERSION,
            "environment": {
                "storage": app.state.asset_store.backend.name,
                "status_cache": "redis" if app.state.status_cache is not None else "disabled",
            },
            "jobs": {
                "active": orchestrator.active_jobs,
                "by_status": orchestrator.registry.count_by_status(),
            },
            "services": {}
        }

        if await app.state.asset_store.health_check():
            status["services"]["storage"] = "ok"
        else:
            status["services"]["storage"] = "error"
            status["status"] = "degraded"

        if app.state.status_cache is not None:
            redis_status = await app.state.status_cache.health_check()
            if redis_status.get("connected"):
                status["services"]["redis"] = "ok"
                status["services"]["redis_version"] = redis_status.get("redis_version")
            else:
                status["services"]["redis"] = f"error: {redis_status.get('error', 'not connected')}"
                status["status"] = "degraded"

        return status

    @app.get("/files/{file_path:path}", tags=["Files"])
    async def serve_file(file_path: str, asset_store: AssetStore = Depends(get_asset_store)):
        """
        Serve stored models from storage.
        Used when no public asset URL is configured.
        """
        try:
            file_bytes = await asset_store.get_file(file_path)
        except WorkerException as e:
            raise HTTPException(status_code=404, detail=f"File not found: {e.message}")

        suffix = PurePosixPath(file_path).suffix.lower()
        content_type = MODEL_MIME_TYPES.get(suffix, "application/octet-stream")

        return StreamingResponse(
            io.BytesIO(file_bytes),
            media_type=content_type,
            headers={"Cache-Control": "public, max-age=3600"}
        )

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint."""
        return {
            "message": "Model Proxy API - 3D Model Generation",
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()
