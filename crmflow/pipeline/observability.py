"""
Observability for crmflow integrations.

Records every attempted integration call in the append-only activity log
and derives aggregate metrics from it.

Design Philosophy:
- Logging is best-effort: a failed write is captured, never raised
- One ``started`` record and exactly one terminal record per call
- Metrics are derived purely from stored rows
- Diagnostics go to a structured JSON logger, not to the activity log

Example:
    activity_log = IntegrationLogger(store, user_id="user-1")

    activity_id = activity_log.generate_activity_id()
    await activity_log.start_activity(
        activity_id, IntegrationActivity(service_name="stripe", action="create_customer")
    )
    ...
    await activity_log.end_activity(activity_id, ActivityStatus.SUCCESS, response=data)

    metrics = await activity_log.get_analytics("stripe")
    print(metrics.success_rate)
"""

from __future__ import annotations

import dataclasses
import json
import logging
import time
import uuid
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from crmflow.keys import ServiceKey, service_name
from crmflow.storage import ACTIVITY_TABLE, Filter, RowStore

logger = logging.getLogger(__name__)

DEFAULT_ANALYTICS_WINDOW = timedelta(days=30)
HEALTH_WINDOW = timedelta(hours=24)
HEALTHY_ERROR_RATE = 10.0
TOP_ERRORS = 10


def _utc_now() -> datetime:
    return datetime.now(UTC)


# =============================================================================
# Log Levels
# =============================================================================


class LogLevel(Enum):
    """Standard log levels."""

    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


# =============================================================================
# JSON Logger
# =============================================================================


@dataclass
class JSONLogger:
    """
    Structured logger that writes one JSON object per line.

    Used as the diagnostic channel: problems with the activity log itself
    are reported here.

    Example output:
        {"timestamp": "2026-01-02T10:30:00+00:00", "level": "error",
         "message": "Activity log write failed", "operation": "log_activity"}
    """

    name: str = "crmflow"
    extra_context: dict[str, Any] = field(default_factory=dict)
    _python_logger: logging.Logger | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self._python_logger = logging.getLogger(self.name)

    def _log(self, level: LogLevel, message: str, context: dict[str, Any]) -> None:
        record = {
            "timestamp": _utc_now().isoformat(),
            "level": level.value,
            "message": message,
            **self.extra_context,
            **context,
        }
        getattr(self._python_logger, level.value)(json.dumps(record, default=str))

    def debug(self, message: str, **context: Any) -> None:
        self._log(LogLevel.DEBUG, message, context)

    def info(self, message: str, **context: Any) -> None:
        self._log(LogLevel.INFO, message, context)

    def warning(self, message: str, **context: Any) -> None:
        self._log(LogLevel.WARNING, message, context)

    def error(self, message: str, **context: Any) -> None:
        self._log(LogLevel.ERROR, message, context)

    def with_context(self, **extra: Any) -> JSONLogger:
        """Create a new logger with additional context."""
        return JSONLogger(name=self.name, extra_context={**self.extra_context, **extra})


# =============================================================================
# Activity Records
# =============================================================================


class ActivityStatus(str, Enum):
    """Phase of an integration call."""

    STARTED = "started"
    SUCCESS = "success"
    ERROR = "error"
    RETRY = "retry"


@dataclass
class IntegrationActivity:
    """One activity log record before it is written."""

    service_name: str
    action: str
    status: ActivityStatus = ActivityStatus.STARTED
    data: Any = None
    response: Any = None
    error: str | None = None
    duration_ms: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=_utc_now)

    def to_row(self, user_id: str | None = None) -> dict[str, Any]:
        """Shape the record for the ``integration_activity_logs`` table."""
        return {
            "user_id": self.metadata.get("user_id") or user_id,
            "service_name": self.service_name,
            "action": self.action,
            "status": ActivityStatus(self.status).value,
            "request_data": json.dumps(self.data, default=str) if self.data is not None else None,
            "response_data": (
                json.dumps(self.response, default=str) if self.response is not None else None
            ),
            "error_message": self.error,
            "metadata": dict(self.metadata) or None,
            "duration_ms": self.duration_ms,
            "created_at": self.timestamp,
        }


class LoggingFailure(Exception):
    """
    A write to or read from the activity log failed.

    Never raised to callers of IntegrationLogger; instances are collected
    in ``IntegrationLogger.failures`` and reported to the diagnostic channel.
    """

    def __init__(self, operation: str, cause: BaseException):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {type(cause).__name__}: {cause}")


# =============================================================================
# Metrics
# =============================================================================


@dataclass(frozen=True, slots=True)
class ErrorCount:
    error: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error, "count": self.count}


@dataclass(frozen=True, slots=True)
class HourlyCount:
    hour: str
    count: int

    def to_dict(self) -> dict[str, Any]:
        return {"hour": self.hour, "count": self.count}


@dataclass(frozen=True, slots=True)
class TimeRange:
    """Inclusive window over ``created_at``."""

    start: datetime
    end: datetime

    @classmethod
    def trailing(cls, window: timedelta, now: datetime | None = None) -> TimeRange:
        end = now or _utc_now()
        return cls(start=end - window, end=end)


@dataclass
class IntegrationMetrics:
    """Aggregates derived from a window of activity log rows."""

    total_requests: int = 0
    success_rate: float = 0.0
    error_rate: float = 0.0
    average_response_time: float = 0.0
    common_errors: list[ErrorCount] = field(default_factory=list)
    requests_by_service: dict[str, int] = field(default_factory=dict)
    requests_by_hour: list[HourlyCount] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "success_rate": self.success_rate,
            "error_rate": self.error_rate,
            "average_response_time": self.average_response_time,
            "common_errors": [e.to_dict() for e in self.common_errors],
            "requests_by_service": dict(self.requests_by_service),
            "requests_by_hour": [h.to_dict() for h in self.requests_by_hour],
        }


def _hour_of(created_at: Any) -> int | None:
    if isinstance(created_at, str):
        try:
            created_at = datetime.fromisoformat(created_at)
        except ValueError:
            return None
    if not isinstance(created_at, datetime):
        return None
    if created_at.tzinfo is not None:
        created_at = created_at.astimezone(UTC)
    return created_at.hour


def calculate_metrics(rows: list[dict[str, Any]]) -> IntegrationMetrics:
    """
    Derive metrics from activity log rows.

    Every row counts as a request regardless of status. Rates are
    percentages rounded to two decimals and are 0 for an empty window.
    Hour buckets use the UTC hour of ``created_at``.
    """
    total = len(rows)
    statuses = Counter(row.get("status") for row in rows)

    def pct(n: int) -> float:
        return round(n / total * 100, 2) if total else 0.0

    durations = [
        row["duration_ms"]
        for row in rows
        if isinstance(row.get("duration_ms"), (int, float)) and row["duration_ms"] > 0
    ]
    average = round(sum(durations) / len(durations), 2) if durations else 0.0

    by_service = Counter(row.get("service_name") for row in rows)
    errors = Counter(row["error_message"] for row in rows if row.get("error_message"))

    hours = Counter(_hour_of(row.get("created_at")) for row in rows)
    by_hour = [HourlyCount(hour=f"{h:02d}:00", count=hours.get(h, 0)) for h in range(24)]

    return IntegrationMetrics(
        total_requests=total,
        success_rate=pct(statuses[ActivityStatus.SUCCESS.value]),
        error_rate=pct(statuses[ActivityStatus.ERROR.value]),
        average_response_time=average,
        common_errors=[ErrorCount(e, c) for e, c in errors.most_common(TOP_ERRORS)],
        requests_by_service=dict(by_service),
        requests_by_hour=by_hour,
    )


@dataclass
class ServiceHealth:
    """Last activity plus a trailing-24h snapshot for one service."""

    service_name: str
    is_healthy: bool
    last_activity: dict[str, Any] | None = None
    last_24_hours: IntegrationMetrics | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_name": self.service_name,
            "is_healthy": self.is_healthy,
            "last_activity": self.last_activity,
            "last_24_hours": self.last_24_hours.to_dict() if self.last_24_hours else None,
            "error": self.error,
        }


# =============================================================================
# Integration Logger
# =============================================================================


class IntegrationLogger:
    """
    Best-effort activity log over a row store.

    Writes never raise: any failure becomes a LoggingFailure that is kept
    in ``failures`` and reported through ``diagnostics``. Reads used for
    analytics do raise, since a caller asking for metrics needs to know
    they could not be computed.

    Args:
        store: Row store holding the activity table
        user_id: Caller the records and queries are scoped to
        diagnostics: Structured logger for logging failures
        clock: Monotonic clock used for call durations, in seconds
    """

    def __init__(
        self,
        store: RowStore,
        user_id: str | None = None,
        *,
        diagnostics: JSONLogger | None = None,
        clock: Callable[[], float] = time.monotonic,
        table: str = ACTIVITY_TABLE,
        max_failures: int = 100,
    ):
        self.store = store
        self.user_id = user_id
        self.table = table
        self.diagnostics = diagnostics or JSONLogger(name="crmflow.activity")
        self.failures: deque[LoggingFailure] = deque(maxlen=max_failures)
        self._clock = clock
        self._active: dict[str, tuple[float, IntegrationActivity]] = {}

    @staticmethod
    def generate_activity_id() -> str:
        return str(uuid.uuid4())

    def _report(self, operation: str, error: BaseException, **context: Any) -> LoggingFailure:
        failure = LoggingFailure(operation, error)
        self.failures.append(failure)
        self.diagnostics.error(
            "Activity log operation failed",
            operation=operation,
            error=str(error),
            error_type=type(error).__name__,
            **context,
        )
        return failure

    def _scope(self) -> list[Filter]:
        return [Filter.eq("user_id", self.user_id)] if self.user_id else []

    # -------------------------------------------------------------------------
    # Recording
    # -------------------------------------------------------------------------

    async def log_activity(self, activity: IntegrationActivity) -> bool:
        """
        Append one record. Returns False if the write failed.
        """
        try:
            row = activity.to_row(self.user_id)
            await self.store.insert(self.table, row)
        except Exception as e:
            self._report(
                "log_activity",
                e,
                service_name=activity.service_name,
                action=activity.action,
                status=ActivityStatus(activity.status).value,
            )
            return False

        logger.debug(f"[{activity.service_name}] {activity.action}: {row['status']}")
        return True

    async def start_activity(self, activity_id: str, activity: IntegrationActivity) -> bool:
        """Remember the start time for ``activity_id`` and log ``started``."""
        started = dataclasses.replace(activity, status=ActivityStatus.STARTED)
        self._active[activity_id] = (self._clock(), started)
        return await self.log_activity(started)

    async def end_activity(
        self,
        activity_id: str,
        status: ActivityStatus | str,
        response: Any = None,
        error: str | None = None,
    ) -> bool:
        """Log the terminal record for ``activity_id`` with its duration."""
        entry = self._active.pop(activity_id, None)
        if entry is None:
            self.diagnostics.warning("No active request for activity id", activity_id=activity_id)
            return False

        start, activity = entry
        duration_ms = int(round((self._clock() - start) * 1000))
        return await self.log_activity(
            dataclasses.replace(
                activity,
                status=ActivityStatus(status),
                response=response,
                error=error,
                duration_ms=duration_ms,
                timestamp=_utc_now(),
            )
        )

    async def log_error(
        self,
        service_key: str | ServiceKey,
        action: str,
        error: BaseException,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        return await self.log_activity(
            IntegrationActivity(
                service_name=service_name(service_key),
                action=action,
                status=ActivityStatus.ERROR,
                error=str(error),
                data={"error_type": type(error).__name__},
                metadata=dict(metadata or {}),
            )
        )

    async def log_retry(
        self,
        service_key: str | ServiceKey,
        action: str,
        attempt: int,
        error: BaseException,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        return await self.log_activity(
            IntegrationActivity(
                service_name=service_name(service_key),
                action=f"{action}_retry_{attempt}",
                status=ActivityStatus.RETRY,
                error=str(error),
                metadata={**(metadata or {}), "retry_attempt": attempt},
            )
        )

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_last_activity(
        self, service_key: str | ServiceKey | None = None
    ) -> dict[str, Any] | None:
        """Newest row for the caller (optionally one service), or None."""
        filters = self._scope()
        if service_key is not None:
            filters.append(Filter.eq("service_name", service_name(service_key)))

        try:
            rows = await self.store.select(
                self.table, filters, order_by="created_at", descending=True, limit=1
            )
        except Exception as e:
            self._report("get_last_activity", e)
            return None
        return rows[0] if rows else None

    async def get_analytics(
        self,
        service_key: str | ServiceKey | None = None,
        time_range: TimeRange | None = None,
    ) -> IntegrationMetrics:
        """
        Metrics over a window of rows, the trailing 30 days by default.

        Raises:
            StorageError: If the rows cannot be read
        """
        window = time_range or TimeRange.trailing(DEFAULT_ANALYTICS_WINDOW)

        filters = self._scope()
        if service_key is not None:
            filters.append(Filter.eq("service_name", service_name(service_key)))
        filters.append(Filter.gte("created_at", window.start))
        filters.append(Filter.lte("created_at", window.end))

        rows = await self.store.select(
            self.table, filters, order_by="created_at", descending=True
        )
        return calculate_metrics(rows)

    async def get_service_status(self, service_key: str | ServiceKey) -> ServiceHealth:
        """Health snapshot for one service. Never raises."""
        name = service_name(service_key)
        try:
            last = await self.get_last_activity(name)
            analytics = await self.get_analytics(name, TimeRange.trailing(HEALTH_WINDOW))
        except Exception as e:
            self._report("get_service_status", e, service_name=name)
            return ServiceHealth(service_name=name, is_healthy=False, error=str(e))

        return ServiceHealth(
            service_name=name,
            is_healthy=analytics.error_rate < HEALTHY_ERROR_RATE,
            last_activity=last,
            last_24_hours=analytics,
        )


__all__ = [
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
]
