#!/usr/bin/env python3
"""
API Server Startup Script
Starts the Model Proxy API; job runners live inside the server process.

Usage:
    python scripts/run_server.py                     # Serve on 0.0.0.0:8000
    python scripts/run_server.py --port 9000 --reload
    python scripts/run_server.py --check             # Check storage/Redis and exit
"""

import argparse
import asyncio
import logging
import os
import sys

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import uvicorn

from modelproxy.core.config import settings
from modelproxy.core.logging import setup_logging, uvicorn_log_config
from modelproxy.core.redis import RedisManager
from modelproxy.services.storage import AssetStore


logger = logging.getLogger("modelproxy.server")


async def check_dependencies() -> bool:
    """Verify storage (and Redis when the status cache is enabled)."""
    healthy = True

    store = AssetStore.from_settings(settings)
    if await store.health_check():
        logger.info(f"Storage OK: {store.backend.name}")
    else:
        logger.error(f"Storage unavailable: {store.backend.name}")
        healthy = False

    if settings.USE_STATUS_CACHE:
        manager = RedisManager(settings.REDIS_URL)
        health = await manager.health_check()
        await manager.close()
        if health.get("connected"):
            logger.info(f"Redis connected: {health.get('redis_version')}")
        else:
            logger.error(f"Cannot connect to Redis: {health.get('error')}")
            logger.error(f"Redis URL: {health.get('url')}")
            healthy = False

    return healthy


def main():
    parser = argparse.ArgumentParser(description="Start the Model Proxy API server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    parser.add_argument("--port", "-p", type=int, default=8000, help="Port (default: 8000)")
    parser.add_argument(
        "--reload",
        action="store_true",
        help="Reload on code changes (development only)"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Check storage and Redis, then exit"
    )

    args = parser.parse_args()
    setup_logging(settings.LOG_LEVEL)

    if args.check:
        sys.exit(0 if asyncio.run(check_dependencies()) else 1)

    logger.info(f"Starting {settings.APP_NAME} on {args.host}:{args.port}")

    # Shutdown grace is enforced by the app lifespan; give uvicorn the same budget
    uvicorn.run(
        "modelproxy.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_config=uvicorn_log_config(),
        timeout_graceful_shutdown=int(settings.SHUTDOWN_GRACE_PERIOD),
    )


if __name__ == "__main__":
    main()
