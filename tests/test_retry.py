"""
Tests for crmflow retry module.
"""

from unittest.mock import AsyncMock

import pytest

from crmflow.integrations import (
    AuthenticationError,
    PermanentAPIError,
    RateLimitError,
    TransientNetworkError,
)
from crmflow.keys import ServiceKey
from crmflow.pipeline import (
    DEFAULT_RETRY_CONFIG,
    SERVICE_RETRY_CONFIGS,
    OperationType,
    RetryConfig,
    RetryHandler,
    adjust_for_operation,
    is_retryable,
)


class FlakyError(Exception):
    pass


# =============================================================================
# RetryConfig Tests
# =============================================================================


class TestRetryConfig:
    """Tests for RetryConfig."""

    def test_defaults(self):
        config = RetryConfig()
        assert config.max_retries == 3
        assert config.initial_delay == 1.0
        assert config.max_delay == 30.0
        assert config.backoff_factor == 2.0
        assert "ECONNRESET" in config.retryable_errors

    def test_delay_curve(self):
        config = RetryConfig(initial_delay=1.0, backoff_factor=2.0, max_delay=30.0)
        assert [config.get_delay(k) for k in range(1, 7)] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]

    def test_delay_never_exceeds_max(self):
        config = RetryConfig(initial_delay=5.0, backoff_factor=3.0, max_delay=10.0)
        assert all(config.get_delay(k) <= 10.0 for k in range(1, 20))

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_retries": -1}, {"initial_delay": -0.1}, {"backoff_factor": 0.5}],
    )
    def test_validation(self, kwargs):
        with pytest.raises(ValueError):
            RetryConfig(**kwargs)

    def test_service_overrides(self):
        assert SERVICE_RETRY_CONFIGS[ServiceKey.AIRTABLE].max_retries == 5
        assert SERVICE_RETRY_CONFIGS[ServiceKey.STRIPE].initial_delay == 0.5
        assert SERVICE_RETRY_CONFIGS[ServiceKey.RUNWAYML].max_delay == 120.0


class TestAdjustForOperation:
    """Tests for operation-type budget adjustment."""

    @pytest.mark.parametrize(
        "operation_type, base, expected",
        [
            (OperationType.READ, 3, 4),
            (OperationType.DELETE, 5, 1),
            (OperationType.WRITE, 3, 2),
            (OperationType.CREATE, 3, 2),
            (OperationType.UPDATE, 1, 1),
            (OperationType.CREATE, 0, 1),
        ],
    )
    def test_budget(self, operation_type, base, expected):
        config = adjust_for_operation(RetryConfig(max_retries=base), operation_type)
        assert config.max_retries == expected

    def test_handler_uses_service_config(self):
        handler = RetryHandler()

        assert handler.config_for_operation(ServiceKey.AIRTABLE, OperationType.READ).max_retries == 6
        assert handler.config_for_operation("stripe", OperationType.CREATE).initial_delay == 0.5
        assert handler.config_for_operation("unknown", OperationType.DELETE).max_retries == 1

    def test_keeps_other_fields(self):
        base = RetryConfig(initial_delay=2.5, max_delay=7.0)
        adjusted = adjust_for_operation(base, OperationType.READ)
        assert adjusted.initial_delay == 2.5
        assert adjusted.max_delay == 7.0


# =============================================================================
# Classification Tests
# =============================================================================


class TestIsRetryable:
    """Tests for error classification."""

    @pytest.mark.parametrize(
        "error",
        [
            Exception("read ECONNRESET"),
            Exception("Request timeout after 30s"),
            Exception("API call failed: 503 Service Unavailable"),
            Exception("HTTP 429"),
            Exception("fetch failed"),
            ConnectionError("boom"),
            TimeoutError("took too long"),
        ],
    )
    def test_retryable(self, error):
        assert is_retryable(error)

    @pytest.mark.parametrize(
        "error",
        [
            ValueError("name is required"),
            Exception("API call failed: 400 Bad Request"),
            KeyError("id"),
        ],
    )
    def test_not_retryable(self, error):
        assert not is_retryable(error)

    def test_explicit_flag_wins(self):
        assert not is_retryable(RateLimitError("timeout while waiting", "demo", retry_after=3))
        assert not is_retryable(AuthenticationError("API call failed: 401 Unauthorized", "demo"))
        assert is_retryable(TransientNetworkError("upstream hiccup", "demo"))

    def test_permanent_error_with_transient_words(self):
        error = PermanentAPIError("connection field is invalid", "demo")
        assert not is_retryable(error)

    def test_custom_signature(self):
        config = RetryConfig(retryable_errors=("TRY_AGAIN",))
        assert is_retryable(Exception("got try_again"), config)
        assert not is_retryable(Exception("ECONNRESET"), config)


# =============================================================================
# RetryHandler Tests
# =============================================================================


class TestRetryHandler:
    """Tests for RetryHandler."""

    @pytest.fixture
    def handler(self, sleep):
        return RetryHandler(sleep=sleep)

    @pytest.mark.asyncio
    async def test_success_first_try(self, handler, sleep):
        operation = AsyncMock(return_value="ok")

        assert await handler.execute_with_retry(operation) == "ok"
        assert operation.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, handler, sleep):
        operation = AsyncMock(side_effect=[FlakyError("ECONNRESET"), FlakyError("ECONNRESET"), "ok"])
        on_retry = AsyncMock()

        result = await handler.execute_with_retry(operation, on_retry=on_retry)

        assert result == "ok"
        assert operation.call_count == 3
        assert sleep.delays == [1.0, 2.0]
        assert [c.args[0] for c in on_retry.call_args_list] == [1, 2]
        assert [c.args[2] for c in on_retry.call_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_exhausts_budget(self, handler, sleep):
        errors = [FlakyError(f"ECONNRESET #{i}") for i in range(4)]
        operation = AsyncMock(side_effect=errors)

        with pytest.raises(FlakyError) as exc_info:
            await handler.execute_with_retry(operation)

        assert exc_info.value is errors[-1]
        assert operation.call_count == 4
        assert sleep.delays == [1.0, 2.0, 4.0]

    @pytest.mark.asyncio
    async def test_non_retryable_fails_fast(self, handler, sleep):
        operation = AsyncMock(side_effect=ValueError("bad input"))

        with pytest.raises(ValueError):
            await handler.execute_with_retry(operation)

        assert operation.call_count == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_zero_retries(self, handler):
        operation = AsyncMock(side_effect=FlakyError("timeout"))

        with pytest.raises(FlakyError):
            await handler.execute_with_retry(operation, max_retries=0)

        assert operation.call_count == 1

    @pytest.mark.asyncio
    async def test_overrides(self, handler, sleep):
        operation = AsyncMock(side_effect=[FlakyError("timeout"), FlakyError("timeout"), "ok"])

        await handler.execute_with_retry(operation, max_retries=2, initial_delay=0.25)

        assert sleep.delays == [0.25, 0.5]

    @pytest.mark.asyncio
    async def test_service_config_used(self, handler, sleep):
        operation = AsyncMock(side_effect=[FlakyError("timeout")] * 3)

        with pytest.raises(FlakyError):
            await handler.execute_with_retry(operation, service_key=ServiceKey.STRIPE)

        assert operation.call_count == 3
        assert sleep.delays == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_execute_api_call_delete(self, handler, sleep):
        operation = AsyncMock(side_effect=[FlakyError("timeout")] * 5)

        with pytest.raises(FlakyError):
            await handler.execute_api_call(operation, "demo", OperationType.DELETE)

        assert operation.call_count == 2

    @pytest.mark.asyncio
    async def test_execute_api_call_read(self, handler):
        operation = AsyncMock(side_effect=[FlakyError("timeout")] * 10)

        with pytest.raises(FlakyError):
            await handler.execute_api_call(operation, "demo")

        assert operation.call_count == 5

    @pytest.mark.asyncio
    async def test_webhook_and_file_budgets(self, handler, sleep):
        webhook = AsyncMock(side_effect=[FlakyError("timeout")] * 10)
        with pytest.raises(FlakyError):
            await handler.execute_webhook_call(webhook)
        assert webhook.call_count == 6

        sleep.delays.clear()
        upload = AsyncMock(side_effect=[FlakyError("timeout")] * 10)
        with pytest.raises(FlakyError):
            await handler.execute_file_operation(upload)
        assert upload.call_count == 3
        assert sleep.delays == [2.0, 4.0]

    def test_get_config_fallback(self, handler):
        assert handler.get_config("unknown") is DEFAULT_RETRY_CONFIG
        assert handler.get_config() is DEFAULT_RETRY_CONFIG
        assert handler.get_config("airtable").max_retries == 5

    def test_set_service_config(self, handler):
        handler.set_service_config("demo", RetryConfig(max_retries=7))
        assert handler.get_service_config("demo").max_retries == 7
