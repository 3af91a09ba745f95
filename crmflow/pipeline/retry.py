"""
Retry with Exponential Backoff for crmflow integrations.

Wraps an outbound call with a bounded number of retries:
- RetryConfig: retry budget, backoff curve and retryable error signatures
- OperationType: adjusts the budget for reads, writes and deletes
- RetryHandler: executes an operation under a per-service config

Design Philosophy:
- Retry only what is transient; validation errors fail on the first attempt
- Errors that know whether they are retryable say so via ``.retryable``
- Everything else is classified by message and class name
- Deletes are never retried blindly

Example:
    handler = RetryHandler()

    result = await handler.execute_with_retry(
        lambda: client.fetch("/records"),
        service_key="airtable",
    )
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, TypeVar

from crmflow.keys import ServiceKey, service_name

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRYABLE_ERRORS: tuple[str, ...] = (
    "ECONNRESET",
    "ENOTFOUND",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "NETWORK_ERROR",
    "RATE_LIMITED",
    "SERVER_ERROR",
)

# Matched in addition to RetryConfig.retryable_errors
BUILTIN_RETRYABLE_PATTERNS: tuple[str, ...] = (
    "timeout",
    "network",
    "connection",
    "socket",
    "429",
    "500",
    "502",
    "503",
    "504",
    "fetch failed",
    "failed to fetch",
)


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class RetryConfig:
    """
    Retry budget and backoff curve.

    ``max_retries`` counts retries after the first attempt, so an operation
    runs at most ``max_retries + 1`` times. The k-th retry waits
    ``min(initial_delay * backoff_factor ** (k - 1), max_delay)`` seconds.
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    backoff_factor: float = 2.0
    retryable_errors: tuple[str, ...] = DEFAULT_RETRYABLE_ERRORS

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.initial_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.backoff_factor < 1:
            raise ValueError("backoff_factor must be >= 1")

    def get_delay(self, retry: int) -> float:
        """Delay before the given retry (1-indexed)."""
        return min(self.initial_delay * (self.backoff_factor ** (retry - 1)), self.max_delay)


DEFAULT_RETRY_CONFIG = RetryConfig()

SERVICE_RETRY_CONFIGS: dict[ServiceKey, RetryConfig] = {
    # Frequent 429s on the free tier
    ServiceKey.AIRTABLE: RetryConfig(max_retries=5, initial_delay=2.0),
    ServiceKey.STRIPE: RetryConfig(max_retries=2, initial_delay=0.5),
    ServiceKey.OPENAI: RetryConfig(max_retries=3, initial_delay=1.0, max_delay=60.0),
    # Generation jobs are slow
    ServiceKey.RUNWAYML: RetryConfig(max_retries=2, initial_delay=2.0, max_delay=120.0),
}


class OperationType(str, Enum):
    """Kind of outbound call, used to adjust the retry budget."""

    READ = "read"
    WRITE = "write"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


def adjust_for_operation(config: RetryConfig, operation_type: OperationType) -> RetryConfig:
    """
    Derive the effective config for an operation type.

    Reads get one extra retry, mutating writes one fewer (at least one)
    and deletes exactly one.
    """
    if operation_type is OperationType.READ:
        retries = config.max_retries + 1
    elif operation_type is OperationType.DELETE:
        retries = 1
    else:
        retries = max(1, config.max_retries - 1)
    return dataclasses.replace(config, max_retries=retries)


# =============================================================================
# Classification
# =============================================================================


def is_retryable(error: BaseException, config: RetryConfig = DEFAULT_RETRY_CONFIG) -> bool:
    """
    Decide whether an error is worth retrying.

    An explicit boolean ``retryable`` attribute on the error wins. Otherwise
    the lower-cased message and class name are searched for any configured
    signature or built-in pattern.
    """
    flag = getattr(error, "retryable", None)
    if isinstance(flag, bool):
        return flag

    haystack = f"{error} {type(error).__name__}".lower()
    patterns = [p.lower() for p in config.retryable_errors] + list(BUILTIN_RETRYABLE_PATTERNS)
    return any(p in haystack for p in patterns)


# =============================================================================
# Retry Handler
# =============================================================================


class RetryHandler:
    """
    Executes async operations with per-service retry configs.

    Args:
        default_config: Used when no service key is given or none is registered
        service_configs: Per-service overrides (defaults to SERVICE_RETRY_CONFIGS)
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(
        self,
        default_config: RetryConfig = DEFAULT_RETRY_CONFIG,
        service_configs: dict[str, RetryConfig] | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.default_config = default_config
        self._sleep = sleep
        self._service_configs: dict[str, RetryConfig] = {}

        source = SERVICE_RETRY_CONFIGS if service_configs is None else service_configs
        for key, config in source.items():
            self.set_service_config(key, config)

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def set_service_config(self, service_key: str | ServiceKey, config: RetryConfig) -> None:
        self._service_configs[service_name(service_key)] = config

    def get_service_config(self, service_key: str | ServiceKey) -> RetryConfig | None:
        return self._service_configs.get(service_name(service_key))

    def get_config(self, service_key: str | ServiceKey | None = None) -> RetryConfig:
        """Effective config for a service, falling back to the default."""
        if service_key is None:
            return self.default_config
        return self.get_service_config(service_key) or self.default_config

    def config_for_operation(
        self,
        service_key: str | ServiceKey | None,
        operation_type: OperationType,
    ) -> RetryConfig:
        return adjust_for_operation(self.get_config(service_key), operation_type)

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def execute_with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        max_retries: int | None = None,
        initial_delay: float | None = None,
        service_key: str | ServiceKey | None = None,
        on_retry: Callable[[int, Exception, float], Awaitable[None]] | None = None,
    ) -> T:
        """
        Run ``operation`` until it succeeds or the retry budget is spent.

        Args:
            operation: Zero-argument async callable
            max_retries: Overrides the config's retry budget
            initial_delay: Overrides the config's first backoff delay
            service_key: Selects a per-service config
            on_retry: Awaited as ``on_retry(retry, error, delay)`` before each sleep

        Returns:
            The operation's result

        Raises:
            The first non-retryable error, or the last error once retries run out.
        """
        config = self.get_config(service_key)
        if max_retries is not None:
            config = dataclasses.replace(config, max_retries=max_retries)
        if initial_delay is not None:
            config = dataclasses.replace(config, initial_delay=initial_delay)

        label = service_name(service_key) if service_key is not None else "operation"
        attempt = 0

        while True:
            attempt += 1
            try:
                return await operation()
            except Exception as e:
                if not is_retryable(e, config):
                    logger.debug(f"{label}: non-retryable {type(e).__name__}: {e}")
                    raise

                if attempt > config.max_retries:
                    logger.error(f"{label}: failed after {attempt} attempts, last error: {e}")
                    raise

                delay = config.get_delay(attempt)
                logger.warning(
                    f"{label}: attempt {attempt}/{config.max_retries + 1} "
                    f"failed with {type(e).__name__}: {e}, retrying in {delay:.2f}s"
                )
                if on_retry is not None:
                    await on_retry(attempt, e, delay)
                await self._sleep(delay)

    async def execute_api_call(
        self,
        operation: Callable[[], Awaitable[T]],
        service_key: str | ServiceKey,
        operation_type: OperationType = OperationType.READ,
        on_retry: Callable[[int, Exception, float], Awaitable[None]] | None = None,
    ) -> T:
        """Run an API call with the budget adjusted for its operation type."""
        config = self.config_for_operation(service_key, operation_type)
        return await self.execute_with_retry(
            operation,
            max_retries=config.max_retries,
            service_key=service_key,
            on_retry=on_retry,
        )

    async def execute_webhook_call(
        self,
        operation: Callable[[], Awaitable[T]],
        service_key: str | ServiceKey | None = None,
        on_retry: Callable[[int, Exception, float], Awaitable[None]] | None = None,
    ) -> T:
        """Webhook receivers are usually idempotent; retry generously."""
        return await self.execute_with_retry(
            operation,
            max_retries=5,
            initial_delay=1.0,
            service_key=service_key,
            on_retry=on_retry,
        )

    async def execute_file_operation(
        self,
        operation: Callable[[], Awaitable[T]],
        service_key: str | ServiceKey | None = None,
        on_retry: Callable[[int, Exception, float], Awaitable[None]] | None = None,
    ) -> T:
        """Uploads and exports: few retries, longer first delay."""
        return await self.execute_with_retry(
            operation,
            max_retries=2,
            initial_delay=2.0,
            service_key=service_key,
            on_retry=on_retry,
        )


__all__ = [
    "BUILTIN_RETRYABLE_PATTERNS",
    "DEFAULT_RETRYABLE_ERRORS",
    "DEFAULT_RETRY_CONFIG",
    "OperationType",
    "RetryConfig",
    "RetryHandler",
    "SERVICE_RETRY_CONFIGS",
    "adjust_for_operation",
    "is_retryable",
]
