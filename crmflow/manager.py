"""
Integration Manager: the single dispatch entry point.

Composes the rate limiter, retry handler, activity log and adapter
registry around every outbound call.

Per call to `trigger_workflow`:

    received -> rate-check -> (rejected | dispatched) -> (succeeded | failed)

1. log ``started``
2. look up the adapter (missing adapter: ConfigurationError, not retried)
3. check the rate limiter (rejection: RateLimitError, not retried)
4. run ``adapter.execute_action`` under the retry handler, logging a
   ``retry`` record before each backoff
5. log ``success`` or ``error`` and return a WorkflowResult

`trigger_workflow` never raises; every failure is reported through the
returned WorkflowResult.

Example:
    manager = await IntegrationManager.create(store, user_id="user-1")

    result = await manager.trigger_workflow(
        WorkflowTrigger(service_key="airtable", action="track_lead", data={"id": "L1"})
    )
    if not result.success:
        print(result.error)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from crmflow.config.schemas import IntegrationConfig
from crmflow.config.service import IntegrationConfigService
from crmflow.integrations import (
    AdapterStatus,
    ConfigurationError,
    IntegrationError,
    RateLimitError,
    ServiceAdapter,
    create_default_adapters,
)
from crmflow.keys import ServiceKey, service_name
from crmflow.pipeline.observability import (
    ActivityStatus,
    IntegrationActivity,
    IntegrationLogger,
    IntegrationMetrics,
    ServiceHealth,
    TimeRange,
)
from crmflow.pipeline.ratelimit import RateLimiter
from crmflow.pipeline.retry import RetryHandler
from crmflow.storage import RowStore

logger = logging.getLogger(__name__)

SOURCE_TAG = "crmflow_crm"


# =============================================================================
# Request / Result
# =============================================================================


@dataclass(frozen=True, slots=True)
class TriggerMetadata:
    """Optional correlation ids attached to a trigger."""

    user_id: str | None = None
    project_id: str | None = None
    lead_id: str | None = None
    customer_id: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> TriggerMetadata:
        """Split known correlation ids from any other keys."""
        known = {"user_id", "project_id", "lead_id", "customer_id"}
        return cls(
            **{k: v for k, v in values.items() if k in known},
            extra={k: v for k, v in values.items() if k not in known},
        )

    def to_dict(self) -> dict[str, Any]:
        values = {
            "user_id": self.user_id,
            "project_id": self.project_id,
            "lead_id": self.lead_id,
            "customer_id": self.customer_id,
            **self.extra,
        }
        return {k: v for k, v in values.items() if v is not None}


@dataclass(frozen=True, slots=True)
class WorkflowTrigger:
    """A caller's request to perform one action against one service."""

    service_key: str
    action: str
    data: dict[str, Any] = field(default_factory=dict)
    metadata: TriggerMetadata | Mapping[str, Any] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "service_key", service_name(self.service_key))
        if isinstance(self.metadata, Mapping):
            object.__setattr__(self, "metadata", TriggerMetadata.from_mapping(self.metadata))


@dataclass(frozen=True, slots=True)
class WorkflowResult:
    """Outcome of `IntegrationManager.trigger_workflow`."""

    success: bool
    data: Any = None
    error: str | None = None

    @classmethod
    def ok(cls, data: Any = None) -> WorkflowResult:
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str) -> WorkflowResult:
        return cls(success=False, error=error)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.success:
            result["data"] = self.data
        else:
            result["error"] = self.error
        return result


# =============================================================================
# Manager
# =============================================================================


class IntegrationManager:
    """
    Facade over the adapter registry and the dispatch pipeline.

    One manager serves one caller: the activity log and configuration
    rows are scoped to ``user_id``.

    Args:
        store: Row store for configuration and activity rows
        user_id: Opaque id of the calling user
        adapters: Registry override (defaults to one adapter per ServiceKey)
        rate_limiter: Shared limiter (defaults to DEFAULT_RATE_LIMITS)
        retry_handler: Retry policy holder
        activity_log: Activity logger (defaults to one over ``store``)
        config_service: Configuration persistence (defaults to one over ``store``)
        adapter_options: Keyword arguments for the default adapters
    """

    def __init__(
        self,
        store: RowStore,
        user_id: str | None = None,
        *,
        adapters: dict[str, ServiceAdapter] | None = None,
        rate_limiter: RateLimiter | None = None,
        retry_handler: RetryHandler | None = None,
        activity_log: IntegrationLogger | None = None,
        config_service: IntegrationConfigService | None = None,
        adapter_options: dict[str, Any] | None = None,
    ):
        self.user_id = user_id
        self._owns_limiter = rate_limiter is None
        self.rate_limiter = rate_limiter or RateLimiter()
        self.retry_handler = retry_handler or RetryHandler()
        self.activity_log = activity_log or IntegrationLogger(store, user_id)
        self.config_service = config_service or IntegrationConfigService(store)

        self._adapters: dict[str, ServiceAdapter] = {}
        if adapters is None:
            adapters = create_default_adapters(**(adapter_options or {}))
        for key, adapter in adapters.items():
            self.register_adapter(key, adapter)

    @classmethod
    async def create(cls, store: RowStore, user_id: str | None = None, **kwargs) -> IntegrationManager:
        """Construct a manager and load the user's persisted configuration."""
        manager = cls(store, user_id, **kwargs)
        await manager.load_configurations()
        return manager

    # -------------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------------

    def register_adapter(self, service_key: str | ServiceKey, adapter: ServiceAdapter) -> None:
        """Add or replace the adapter serving ``service_key``."""
        if adapter.activity_lookup is None:
            adapter.activity_lookup = self.activity_log.get_last_activity
        self._adapters[service_name(service_key)] = adapter

    def get_adapter(self, service_key: str | ServiceKey) -> ServiceAdapter | None:
        return self._adapters.get(service_name(service_key))

    @property
    def service_keys(self) -> list[str]:
        return list(self._adapters)

    def _apply_rate_limits(self, config: IntegrationConfig) -> None:
        # Overrides are scoped to this user; the limiter may be shared.
        if not self.user_id:
            return
        if config.rate_limits is not None:
            self.rate_limiter.set_override(
                self.user_id, config.service_name, config.rate_limits.to_rate_limit_config()
            )
        else:
            self.rate_limiter.clear_override(self.user_id, config.service_name)

    async def load_configurations(self) -> int:
        """
        Push persisted configs into their adapters.

        Returns the number of adapters configured. Failures are logged
        and leave adapters unconfigured.
        """
        if not self.user_id:
            return 0

        try:
            configs = await self.config_service.list_configs(self.user_id)
        except Exception as e:
            logger.error(f"Failed to load integration configurations for {self.user_id}: {e}")
            return 0

        loaded = 0
        for config in configs:
            adapter = self._adapters.get(config.service_name)
            if adapter is None:
                logger.warning(f"Ignoring config for unknown service {config.service_name!r}")
                continue
            adapter.configure(config)
            self._apply_rate_limits(config)
            loaded += 1

        logger.info(f"Loaded {loaded} integration configuration(s) for {self.user_id}")
        return loaded

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def trigger_workflow(self, trigger: WorkflowTrigger) -> WorkflowResult:
        """
        Run one action against one service. Never raises.

        Returns:
            WorkflowResult.ok(data) on success, WorkflowResult.fail(message)
            for any failure: unknown service, rate limit rejection,
            adapter error after retries, or a failing activity log.
        """
        key = trigger.service_key
        activity_id = None

        try:
            metadata = trigger.metadata.to_dict() if trigger.metadata else {}
            activity_id = self.activity_log.generate_activity_id()
            await self.activity_log.start_activity(
                activity_id,
                IntegrationActivity(
                    service_name=key,
                    action=trigger.action,
                    data=trigger.data,
                    metadata={**metadata, "activity_id": activity_id},
                ),
            )

            adapter = self._adapters.get(key)
            if adapter is None:
                raise ConfigurationError(f"Service {key} not found or not configured", key)

            decision = await self.rate_limiter.check_limit(key, scope=self.user_id)
            if not decision.allowed:
                raise RateLimitError(
                    f"Rate limit exceeded for {key}. "
                    f"Try again in {decision.reset_in_seconds} seconds",
                    key,
                    retry_after=decision.reset_in_seconds,
                )

            result = await self._dispatch(adapter, trigger, metadata)
            await self.activity_log.end_activity(activity_id, ActivityStatus.SUCCESS, response=result)
            return WorkflowResult.ok(result)

        except Exception as e:
            logger.warning(f"[{key}] {trigger.action} failed: {e}")
            message = e.message if isinstance(e, IntegrationError) else str(e)
            try:
                if activity_id is not None:
                    await self.activity_log.end_activity(
                        activity_id, ActivityStatus.ERROR, error=message
                    )
            except Exception as log_error:
                logger.error(f"[{key}] could not record failure of {trigger.action}: {log_error}")
            return WorkflowResult.fail(message)

    async def _dispatch(
        self,
        adapter: ServiceAdapter,
        trigger: WorkflowTrigger,
        metadata: dict[str, Any],
    ) -> Any:
        key = trigger.service_key
        # Budget is the service config adjusted for the action's declared
        # operation type (adjust_for_operation), not a flat 3 retries.
        operation_type = adapter.operation_type(trigger.action)
        if operation_type is not None:
            config = self.retry_handler.config_for_operation(key, operation_type)
        else:
            config = self.retry_handler.get_config(key)

        async def on_retry(attempt: int, error: Exception, delay: float) -> None:
            await self.activity_log.log_retry(
                key, trigger.action, attempt, error, metadata={**metadata, "delay": delay}
            )

        return await self.retry_handler.execute_with_retry(
            lambda: adapter.execute_action(trigger.action, trigger.data, metadata),
            max_retries=config.max_retries,
            initial_delay=config.initial_delay,
            service_key=key,
            on_retry=on_retry,
        )

    async def trigger_zapier_for_new_lead(
        self, lead_id: str, lead_data: dict[str, Any]
    ) -> WorkflowResult:
        """Send a new CRM lead to the user's Zapier catch hook."""
        return await self.trigger_workflow(
            WorkflowTrigger(
                service_key=ServiceKey.ZAPIER,
                action="new_lead",
                data={
                    "lead_id": lead_id,
                    **lead_data,
                    "timestamp": datetime.now(UTC).isoformat(),
                    "source": SOURCE_TAG,
                },
                metadata=TriggerMetadata(
                    lead_id=lead_id,
                    user_id=lead_data.get("created_by") or lead_data.get("customer_id"),
                ),
            )
        )

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    async def configure_integration(
        self,
        service_key: str | ServiceKey,
        config: IntegrationConfig | dict[str, Any],
    ) -> bool:
        """
        Persist a config and push it into the adapter.

        Returns False on any failure instead of raising.
        """
        key = service_name(service_key)
        try:
            if not self.user_id:
                raise ConfigurationError("User not authenticated", key)

            if isinstance(config, dict):
                config = IntegrationConfig.model_validate({**config, "service_name": key})
            elif config.service_name != key:
                config = config.model_copy(update={"service_name": key})

            await self.config_service.save_config(self.user_id, config)

            adapter = self._adapters.get(key)
            if adapter is not None:
                adapter.configure(config)
            self._apply_rate_limits(config)

            await self.activity_log.log_activity(
                IntegrationActivity(
                    service_name=key,
                    action="configuration_updated",
                    status=ActivityStatus.SUCCESS,
                    data={"enabled": config.enabled},
                )
            )
            return True

        except Exception as e:
            logger.error(f"[{key}] configuration update failed: {e}")
            try:
                await self.activity_log.log_activity(
                    IntegrationActivity(
                        service_name=key,
                        action="configuration_updated",
                        status=ActivityStatus.ERROR,
                        error=str(e),
                    )
                )
            except Exception as log_error:
                logger.error(f"[{key}] could not record configuration failure: {log_error}")
            return False

    # -------------------------------------------------------------------------
    # Status and analytics
    # -------------------------------------------------------------------------

    async def _status(self, key: str, adapter: ServiceAdapter) -> AdapterStatus:
        try:
            return await adapter.get_status()
        except Exception as e:
            logger.error(f"[{key}] get_status raised: {e}")
            return AdapterStatus(
                service_key=key, enabled=False, configured=False, connected=False, error=str(e)
            )

    async def get_integration_status(
        self, service_key: str | ServiceKey | None = None
    ) -> AdapterStatus | dict[str, AdapterStatus] | None:
        """
        Status of one adapter (None if unknown), or of all adapters keyed by service.
        """
        if service_key is not None:
            key = service_name(service_key)
            adapter = self._adapters.get(key)
            return await self._status(key, adapter) if adapter else None

        keys = list(self._adapters)
        statuses = await asyncio.gather(*(self._status(k, self._adapters[k]) for k in keys))
        return dict(zip(keys, statuses, strict=True))

    async def get_analytics(
        self,
        service_key: str | ServiceKey | None = None,
        time_range: TimeRange | None = None,
    ) -> IntegrationMetrics:
        return await self.activity_log.get_analytics(service_key, time_range)

    async def get_service_health(self, service_key: str | ServiceKey) -> ServiceHealth:
        return await self.activity_log.get_service_status(service_key)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Start background maintenance (rate limiter sweep)."""
        self.rate_limiter.start_sweeper()

    async def aclose(self) -> None:
        """Close every adapter's HTTP client and stop a limiter this manager created."""
        if self._owns_limiter:
            await self.rate_limiter.stop_sweeper()
        for adapter in self._adapters.values():
            await adapter.close()


__all__ = [
    "IntegrationManager",
    "TriggerMetadata",
    "WorkflowResult",
    "WorkflowTrigger",
]
