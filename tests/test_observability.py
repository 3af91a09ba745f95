"""
Tests for crmflow observability module.
"""

import json
import logging
from datetime import UTC, datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from crmflow.pipeline import (
    ActivityStatus,
    IntegrationActivity,
    IntegrationLogger,
    JSONLogger,
    LoggingFailure,
    TimeRange,
    calculate_metrics,
)
from crmflow.storage import ACTIVITY_TABLE, InMemoryRowStore


def row(status, service="stripe", error=None, duration_ms=None, hour=10):
    return {
        "user_id": "user-1",
        "service_name": service,
        "action": "create_customer",
        "status": status,
        "error_message": error,
        "duration_ms": duration_ms,
        "created_at": datetime(2026, 3, 1, hour, 15, tzinfo=UTC),
    }


class BrokenStore(InMemoryRowStore):
    """Row store whose every operation fails."""

    async def insert(self, table, row):
        raise ConnectionError("store unreachable")

    async def select(self, table, filters=None, **kwargs):
        raise ConnectionError("store unreachable")


# =============================================================================
# JSONLogger Tests
# =============================================================================


class TestJSONLogger:
    """Tests for JSONLogger."""

    def test_emits_json(self, caplog):
        log = JSONLogger(name="crmflow.test").with_context(service="stripe")

        with caplog.at_level(logging.INFO, logger="crmflow.test"):
            log.info("hello", attempt=2)

        record = json.loads(caplog.records[-1].getMessage())
        assert record["message"] == "hello"
        assert record["level"] == "info"
        assert record["service"] == "stripe"
        assert record["attempt"] == 2
        assert "timestamp" in record


# =============================================================================
# Activity Record Tests
# =============================================================================


class TestIntegrationActivity:
    """Tests for IntegrationActivity.to_row."""

    def test_to_row(self):
        activity = IntegrationActivity(
            service_name="zapier",
            action="new_lead",
            data={"name": "Ada"},
            metadata={"lead_id": "L1"},
        )

        result = activity.to_row("user-1")

        assert result["user_id"] == "user-1"
        assert result["status"] == "started"
        assert json.loads(result["request_data"]) == {"name": "Ada"}
        assert result["response_data"] is None
        assert result["metadata"] == {"lead_id": "L1"}
        assert isinstance(result["created_at"], datetime)

    def test_metadata_user_wins(self):
        activity = IntegrationActivity("zapier", "new_lead", metadata={"user_id": "lead-owner"})
        assert activity.to_row("user-1")["user_id"] == "lead-owner"


# =============================================================================
# Metrics Tests
# =============================================================================


class TestCalculateMetrics:
    """Tests for calculate_metrics."""

    def test_empty(self):
        metrics = calculate_metrics([])

        assert metrics.total_requests == 0
        assert metrics.success_rate == 0
        assert metrics.error_rate == 0
        assert metrics.average_response_time == 0
        assert metrics.common_errors == []
        assert len(metrics.requests_by_hour) == 24

    def test_rates(self):
        rows = [row("success", duration_ms=100) for _ in range(7)] + [
            row("error", error="x", duration_ms=400) for _ in range(3)
        ]

        metrics = calculate_metrics(rows)

        assert metrics.total_requests == 10
        assert metrics.success_rate == 70
        assert metrics.error_rate == 30
        assert metrics.average_response_time == 190
        assert metrics.requests_by_service == {"stripe": 10}
        assert [(e.error, e.count) for e in metrics.common_errors] == [("x", 3)]

    def test_started_and_retry_rows_count_as_requests(self):
        metrics = calculate_metrics([row("started"), row("retry"), row("success")])

        assert metrics.total_requests == 3
        assert metrics.success_rate == 33.33
        assert metrics.error_rate == 0

    def test_average_ignores_missing_durations(self):
        metrics = calculate_metrics([row("started"), row("success", duration_ms=250)])
        assert metrics.average_response_time == 250

    def test_hour_buckets(self):
        rows = [row("success", hour=9), row("success", hour=9), row("error", hour=23)]

        metrics = calculate_metrics(rows)

        buckets = {h.hour: h.count for h in metrics.requests_by_hour}
        assert len(buckets) == 24
        assert buckets["09:00"] == 2
        assert buckets["23:00"] == 1
        assert buckets["00:00"] == 0

    def test_hour_uses_utc(self):
        local = datetime(2026, 3, 1, 9, 0, tzinfo=UTC).astimezone(timezone(timedelta(hours=5)))
        metrics = calculate_metrics([{"status": "success", "created_at": local.isoformat()}])

        buckets = {h.hour: h.count for h in metrics.requests_by_hour}
        assert buckets["09:00"] == 1

    def test_common_errors_top_ten(self):
        rows = [row("error", error=f"e{i}") for i in range(12) for _ in range(i + 1)]

        metrics = calculate_metrics(rows)

        assert len(metrics.common_errors) == 10
        assert metrics.common_errors[0].error == "e11"
        assert metrics.common_errors[0].count == 12

    def test_to_dict(self):
        data = calculate_metrics([row("success")]).to_dict()
        assert data["success_rate"] == 100
        assert data["requests_by_hour"][10] == {"hour": "10:00", "count": 1}


# =============================================================================
# IntegrationLogger Tests
# =============================================================================


class TestIntegrationLogger:
    """Tests for IntegrationLogger."""

    @pytest.fixture
    def activity_log(self, store, clock):
        return IntegrationLogger(store, "user-1", clock=clock)

    @pytest.mark.asyncio
    async def test_start_and_end(self, activity_log, store, clock):
        activity_id = activity_log.generate_activity_id()
        await activity_log.start_activity(
            activity_id, IntegrationActivity("stripe", "create_customer", data={"email": "a@b.c"})
        )
        clock.advance(0.25)
        await activity_log.end_activity(activity_id, ActivityStatus.SUCCESS, response={"id": "cus_1"})

        rows = store.tables[ACTIVITY_TABLE]
        assert [r["status"] for r in rows] == ["started", "success"]
        assert rows[1]["duration_ms"] == 250
        assert json.loads(rows[1]["response_data"]) == {"id": "cus_1"}
        assert json.loads(rows[1]["request_data"]) == {"email": "a@b.c"}
        assert all(r["user_id"] == "user-1" for r in rows)

    @pytest.mark.asyncio
    async def test_end_unknown_activity(self, activity_log, store):
        assert await activity_log.end_activity("missing", ActivityStatus.ERROR) is False
        assert store.tables.get(ACTIVITY_TABLE, []) == []

    @pytest.mark.asyncio
    async def test_end_twice_writes_once(self, activity_log, store):
        await activity_log.start_activity("a1", IntegrationActivity("stripe", "x"))
        await activity_log.end_activity("a1", "success")
        await activity_log.end_activity("a1", "error", error="late")

        assert [r["status"] for r in store.tables[ACTIVITY_TABLE]] == ["started", "success"]

    @pytest.mark.asyncio
    async def test_log_retry(self, activity_log, store):
        await activity_log.log_retry("airtable", "track_lead", 2, ConnectionError("ECONNRESET"))

        logged = store.tables[ACTIVITY_TABLE][0]
        assert logged["action"] == "track_lead_retry_2"
        assert logged["status"] == "retry"
        assert logged["error_message"] == "ECONNRESET"
        assert logged["metadata"] == {"retry_attempt": 2}

    @pytest.mark.asyncio
    async def test_log_error(self, activity_log, store):
        await activity_log.log_error("stripe", "create_invoice", ValueError("bad"), {"lead_id": "L1"})

        logged = store.tables[ACTIVITY_TABLE][0]
        assert logged["status"] == "error"
        assert json.loads(logged["request_data"]) == {"error_type": "ValueError"}

    @pytest.mark.asyncio
    async def test_write_failure_is_swallowed(self, clock):
        diagnostics = JSONLogger(name="crmflow.test.diag")
        activity_log = IntegrationLogger(BrokenStore(), "user-1", diagnostics=diagnostics, clock=clock)

        assert await activity_log.log_activity(IntegrationActivity("stripe", "x")) is False
        assert await activity_log.start_activity("a1", IntegrationActivity("stripe", "x")) is False
        assert await activity_log.end_activity("a1", "success") is False

        assert len(activity_log.failures) == 3
        assert all(isinstance(f, LoggingFailure) for f in activity_log.failures)
        assert activity_log.failures[0].operation == "log_activity"
        assert isinstance(activity_log.failures[0].cause, ConnectionError)

    @pytest.mark.asyncio
    async def test_failures_are_bounded(self, clock):
        activity_log = IntegrationLogger(BrokenStore(), clock=clock, max_failures=2)

        for _ in range(5):
            await activity_log.log_activity(IntegrationActivity("stripe", "x"))

        assert len(activity_log.failures) == 2

    @pytest.mark.asyncio
    async def test_get_last_activity(self, activity_log):
        await activity_log.log_activity(IntegrationActivity("stripe", "first"))
        await activity_log.log_activity(
            IntegrationActivity(
                "stripe", "second", timestamp=datetime.now(UTC) + timedelta(seconds=1)
            )
        )
        await activity_log.log_activity(IntegrationActivity("zapier", "other"))

        last = await activity_log.get_last_activity("stripe")
        assert last["action"] == "second"
        assert await activity_log.get_last_activity("canva") is None

    @pytest.mark.asyncio
    async def test_get_last_activity_swallows_failure(self):
        activity_log = IntegrationLogger(BrokenStore())
        assert await activity_log.get_last_activity("stripe") is None
        assert len(activity_log.failures) == 1

    @pytest.mark.asyncio
    async def test_queries_scoped_to_user(self, store):
        mine = IntegrationLogger(store, "user-1")
        theirs = IntegrationLogger(store, "user-2")
        await mine.log_activity(IntegrationActivity("stripe", "x", status=ActivityStatus.SUCCESS))
        await theirs.log_activity(IntegrationActivity("stripe", "y", status=ActivityStatus.ERROR))

        metrics = await mine.get_analytics()

        assert metrics.total_requests == 1
        assert metrics.success_rate == 100

    @pytest.mark.asyncio
    async def test_analytics_window(self, activity_log):
        old = datetime.now(UTC) - timedelta(days=45)
        await activity_log.log_activity(IntegrationActivity("stripe", "old", timestamp=old))
        await activity_log.log_activity(IntegrationActivity("stripe", "new"))

        assert (await activity_log.get_analytics("stripe")).total_requests == 1
        window = TimeRange.trailing(timedelta(days=60))
        assert (await activity_log.get_analytics("stripe", window)).total_requests == 2

    @pytest.mark.asyncio
    async def test_analytics_raises_on_store_failure(self):
        activity_log = IntegrationLogger(BrokenStore())
        with pytest.raises(ConnectionError):
            await activity_log.get_analytics()

    @pytest.mark.asyncio
    async def test_service_status(self, activity_log):
        for status in ["success"] * 9 + ["error"]:
            await activity_log.log_activity(IntegrationActivity("stripe", "x", status=status))

        health = await activity_log.get_service_status("stripe")

        # 10% errors is not healthy
        assert health.is_healthy is False
        assert health.last_24_hours.total_requests == 10
        assert health.last_activity is not None

    @pytest.mark.asyncio
    async def test_service_status_never_raises(self):
        store = InMemoryRowStore()
        activity_log = IntegrationLogger(store)
        store.select = AsyncMock(side_effect=RuntimeError("down"))

        health = await activity_log.get_service_status("stripe")

        assert health.is_healthy is False
        assert health.error is not None
