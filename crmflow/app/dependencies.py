"""
Dependency Injection for crmflow.

Provides process-wide singletons (settings, row store, rate limiter,
retry handler, config service) and a per-request IntegrationManager.

The rate limiter is shared by every request so that per-service limits
hold across users. Adapters are built per request because they carry
the calling user's configuration.
"""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncIterator
from functools import lru_cache

from fastapi import Header

from crmflow.config import IntegrationConfigService
from crmflow.config.schemas import AppSettings
from crmflow.manager import IntegrationManager
from crmflow.pipeline import RateLimiter, RetryHandler
from crmflow.storage import InMemoryRowStore, MongoRowStore, RowStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_settings() -> AppSettings:
    """
    Get application settings from environment.

    Uses lru_cache for singleton pattern.
    """
    return AppSettings(
        # Service
        service_name=os.getenv("CRMFLOW_SERVICE_NAME", "crmflow"),
        environment=os.getenv("CRMFLOW_ENVIRONMENT", "development"),
        debug=os.getenv("CRMFLOW_DEBUG", "false").lower() == "true",
        # Storage
        storage_backend=os.getenv("CRMFLOW_STORAGE_BACKEND", "mongo"),
        mongodb_url=os.getenv("CRMFLOW_MONGODB_URL", "mongodb://localhost:27017"),
        mongodb_database=os.getenv("CRMFLOW_MONGODB_DATABASE", "crmflow"),
        # Outbound HTTP
        user_agent=os.getenv("CRMFLOW_USER_AGENT", "crmflow-integration/1.0"),
        http_timeout=float(os.getenv("CRMFLOW_HTTP_TIMEOUT", "30")),
        # Rate limiting
        rate_limit_sweep_interval=float(os.getenv("CRMFLOW_RATE_LIMIT_SWEEP_INTERVAL", "60")),
        # HTTP surface
        cors_origins=[
            origin.strip()
            for origin in os.getenv("CRMFLOW_CORS_ORIGINS", "*").split(",")
            if origin.strip()
        ],
        log_level=os.getenv("CRMFLOW_LOG_LEVEL", "INFO"),
    )


# Global instances (initialized on first access)
_store: RowStore | None = None
_rate_limiter: RateLimiter | None = None
_retry_handler: RetryHandler | None = None
_config_service: IntegrationConfigService | None = None


def get_store() -> RowStore:
    """Get the row store selected by ``storage_backend``."""
    global _store
    if _store is None:
        settings = get_settings()
        if settings.storage_backend == "memory":
            _store = InMemoryRowStore()
        else:
            _store = MongoRowStore(
                mongodb_url=settings.mongodb_url.get_secret_value(),
                database_name=settings.mongodb_database,
            )
    return _store


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter(sweep_interval=get_settings().rate_limit_sweep_interval)
    return _rate_limiter


def get_retry_handler() -> RetryHandler:
    global _retry_handler
    if _retry_handler is None:
        _retry_handler = RetryHandler()
    return _retry_handler


def get_config_service() -> IntegrationConfigService:
    global _config_service
    if _config_service is None:
        _config_service = IntegrationConfigService(get_store())
    return _config_service


async def get_manager(
    x_user_id: str | None = Header(default=None),
) -> AsyncIterator[IntegrationManager]:
    """
    Integration manager scoped to the ``X-User-Id`` request header.

    The caller's persisted configuration is loaded before the request
    handler runs; adapter clients are closed after it returns.
    """
    settings = get_settings()
    manager = await IntegrationManager.create(
        get_store(),
        x_user_id,
        rate_limiter=get_rate_limiter(),
        retry_handler=get_retry_handler(),
        config_service=get_config_service(),
        adapter_options={"timeout": settings.http_timeout, "user_agent": settings.user_agent},
    )
    try:
        yield manager
    finally:
        await manager.aclose()


async def initialize_services() -> None:
    """
    Initialize all services on application startup.

    Called from FastAPI lifespan.
    """
    store = get_store()
    if isinstance(store, MongoRowStore):
        await store.connect()

    get_rate_limiter().start_sweeper()
    get_config_service()


async def shutdown_services() -> None:
    """
    Cleanup all services on application shutdown.

    Called from FastAPI lifespan.
    """
    global _store, _config_service
    if _rate_limiter is not None:
        await _rate_limiter.stop_sweeper()
    if isinstance(_store, MongoRowStore):
        await _store.close()
        _store = None
        _config_service = None
