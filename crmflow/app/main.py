"""
crmflow - CRM Integration Dispatch

FastAPI application entry point.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from crmflow import __version__
from crmflow.app.api import integrations_router
from crmflow.app.dependencies import (
    get_rate_limiter,
    get_settings,
    get_store,
    initialize_services,
    shutdown_services,
)
from crmflow.storage import MongoRowStore

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the row store and run the rate limiter sweeper for the app's lifetime."""
    logger.info("Starting crmflow services...")
    try:
        await initialize_services()
        logger.info("crmflow services initialized successfully")
    except Exception as e:
        logger.error(f"Failed to initialize services: {e}", exc_info=True)
        raise

    yield

    logger.info("Shutting down crmflow services...")
    try:
        await shutdown_services()
        logger.info("crmflow services shut down successfully")
    except Exception as e:
        logger.error(f"Error during shutdown: {e}", exc_info=True)


app = FastAPI(
    title="crmflow",
    description="Rate-limited, retried and audited dispatch from a CRM to third-party SaaS APIs",
    version=__version__,
    lifespan=lifespan,
    debug=settings.debug,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(integrations_router, prefix="/api/v1")


@app.get("/", tags=["root"])
async def root() -> dict[str, str]:
    """Service name and version."""
    return {
        "service": settings.service_name,
        "version": __version__,
        "status": "running",
    }


@app.get("/health", tags=["health"])
async def health_check() -> dict[str, Any]:
    """
    Health check endpoint.

    Reports the storage backend and current rate limiter usage.
    """
    try:
        store = get_store()
        database = "memory"
        if isinstance(store, MongoRowStore):
            database = "connected" if store.connected else "disconnected"

        return {
            "status": "healthy",
            "database": database,
            "rate_limits": get_rate_limiter().get_all_stats(),
        }
    except Exception as e:
        return {
            "status": "unhealthy",
            "error": str(e),
        }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "crmflow.app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
