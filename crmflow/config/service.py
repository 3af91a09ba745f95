"""
Integration Configuration Service for crmflow.

Loads and persists per-user integration settings through a row store,
with a short-lived cache in front of reads.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

from crmflow.keys import ServiceKey, service_name
from crmflow.storage import CONFIG_TABLE, Filter, RowStore

from .schemas import IntegrationConfig, IntegrationConfigRow

logger = logging.getLogger(__name__)


class TTLCache:
    """Simple TTL cache for configuration data."""

    def __init__(self, ttl_seconds: int = 300):
        self._cache: dict[str, tuple[Any, datetime]] = {}
        self._ttl = timedelta(seconds=ttl_seconds)

    def get(self, key: str) -> Any | None:
        if key in self._cache:
            value, expires = self._cache[key]
            if datetime.now(UTC) < expires:
                return value
            del self._cache[key]
        return None

    def set(self, key: str, value: Any) -> None:
        self._cache[key] = (value, datetime.now(UTC) + self._ttl)

    def invalidate(self, prefix: str) -> None:
        for key in [k for k in self._cache if k.startswith(prefix)]:
            del self._cache[key]

    def clear(self) -> None:
        self._cache.clear()


class IntegrationConfigService:
    """
    Reads and writes rows of the ``integration_configs`` table.

    One row per (user_id, service_name). Credentials are stored unwrapped
    inside the row's ``config`` document; encryption at rest is the
    store's responsibility.

    Caching:
    - A user's config list is cached for ``cache_ttl`` seconds
    - Any save for that user invalidates it
    """

    def __init__(
        self,
        store: RowStore,
        *,
        table: str = CONFIG_TABLE,
        cache_ttl: int = 300,
    ):
        self.store = store
        self.table = table
        self._cache = TTLCache(ttl_seconds=cache_ttl)

    async def list_configs(self, user_id: str, active_only: bool = True) -> list[IntegrationConfig]:
        """
        All integration configs for a user.

        Args:
            user_id: Owner of the configs
            active_only: Skip rows whose ``is_active`` flag is off

        Returns:
            Parsed IntegrationConfig objects, one per service
        """
        cache_key = f"{user_id}:list:{active_only}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            return cached

        filters = [Filter.eq("user_id", user_id)]
        if active_only:
            filters.append(Filter.eq("is_active", True))

        configs = []
        for row in await self.store.select(self.table, filters):
            try:
                configs.append(IntegrationConfigRow.model_validate(row).to_integration_config())
            except ValueError as e:
                logger.warning(
                    f"Skipping invalid config row for {row.get('service_name')!r}: {e}"
                )

        self._cache.set(cache_key, configs)
        return configs

    async def get_config(
        self, user_id: str, service_key: str | ServiceKey
    ) -> IntegrationConfig | None:
        name = service_name(service_key)
        for config in await self.list_configs(user_id, active_only=False):
            if config.service_name == name:
                return config
        return None

    async def save_config(self, user_id: str, config: IntegrationConfig) -> IntegrationConfig:
        """
        Insert or replace the row for (user_id, config.service_name).

        Raises:
            StorageError: If the store rejects the write
        """
        now = datetime.now(UTC)
        existing = await self.store.select(
            self.table,
            [Filter.eq("user_id", user_id), Filter.eq("service_name", config.service_name)],
            limit=1,
        )

        row = IntegrationConfigRow(
            user_id=user_id,
            service_name=config.service_name,
            config=config.to_document(),
            is_active=config.enabled,
            created_at=existing[0].get("created_at", now) if existing else now,
            updated_at=now,
        )
        await self.store.upsert(self.table, row.model_dump(), on_conflict=("user_id", "service_name"))

        self._cache.invalidate(f"{user_id}:")
        logger.info(f"Saved {config.service_name} integration config for user {user_id}")
        return config

    def clear_cache(self) -> None:
        self._cache.clear()


__all__ = ["IntegrationConfigService", "TTLCache"]
