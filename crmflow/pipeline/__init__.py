"""
crmflow dispatch pipeline.

The shared machinery every outbound integration call passes through:

- RateLimiter: per-service sliding windows (minute, hour, day)
- RetryHandler: bounded retries with exponential backoff
- IntegrationLogger: best-effort activity log and metrics

The IntegrationManager in ``crmflow.manager`` composes these around
the service adapters.
"""

from .observability import (
    ActivityStatus,
    ErrorCount,
    HourlyCount,
    IntegrationActivity,
    IntegrationLogger,
    IntegrationMetrics,
    JSONLogger,
    LoggingFailure,
    LogLevel,
    ServiceHealth,
    TimeRange,
    calculate_metrics,
)
from .ratelimit import (
    DEFAULT_RATE_LIMITS,
    RateLimitConfig,
    RateLimitDecision,
    RateLimiter,
    RateLimitState,
    scoped_key,
)
from .retry import (
    DEFAULT_RETRY_CONFIG,
    SERVICE_RETRY_CONFIGS,
    OperationType,
    RetryConfig,
    RetryHandler,
    adjust_for_operation,
    is_retryable,
)

__all__ = [
    # Observability
    "ActivityStatus",
    "ErrorCount",
    "HourlyCount",
    "IntegrationActivity",
    "IntegrationLogger",
    "IntegrationMetrics",
    "JSONLogger",
    "LogLevel",
    "LoggingFailure",
    "ServiceHealth",
    "TimeRange",
    "calculate_metrics",
    # Rate limiting
    "DEFAULT_RATE_LIMITS",
    "RateLimitConfig",
    "RateLimitDecision",
    "RateLimitState",
    "RateLimiter",
    "scoped_key",
    # Retry
    "DEFAULT_RETRY_CONFIG",
    "OperationType",
    "RetryConfig",
    "RetryHandler",
    "SERVICE_RETRY_CONFIGS",
    "adjust_for_operation",
    "is_retryable",
]
