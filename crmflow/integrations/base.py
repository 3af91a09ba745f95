"""
Base classes for crmflow service adapters.

An adapter translates a generic ``(action, data)`` pair into the HTTP
request(s) one external API family expects. Adapters hold no retry or
rate-limit logic of their own: the IntegrationManager gates and retries
every call before it reaches ``execute_action``.

Design Principles:
1. Async-first: all I/O goes through one lazily created httpx.AsyncClient
2. Uniform errors: non-2xx responses and transport failures map onto the
   IntegrationError taxonomy, each carrying an explicit ``retryable`` flag
3. Side-effect-free configuration: ``configure()`` never performs I/O
4. Status never raises: ``get_status()`` folds probe failures into the result

Error mapping:
    - httpx timeouts and network errors -> TransientNetworkError
    - 429 and 5xx                       -> TransientNetworkError
    - 401 / 403                         -> AuthenticationError
    - other 4xx                         -> PermanentAPIError
"""

from __future__ import annotations

import logging
from abc import ABC
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, ClassVar
from urllib.parse import urlencode

import httpx

from crmflow.config.schemas import IntegrationConfig
from crmflow.pipeline.retry import OperationType

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "crmflow-integration/1.0"
WEBHOOK_SOURCE = "crmflow_integration_manager"


# =============================================================================
# Exceptions
# =============================================================================


class IntegrationError(Exception):
    """Base exception for integration errors."""

    def __init__(
        self,
        message: str,
        integration: str,
        *,
        status_code: int | None = None,
        response_body: str | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.integration = integration
        self.status_code = status_code
        self.response_body = response_body
        self.retryable = retryable

    @property
    def message(self) -> str:
        return self.args[0]

    def __str__(self) -> str:
        parts = [f"[{self.integration}] {self.message}"]
        if self.status_code:
            parts.append(f"(status={self.status_code})")
        return " ".join(parts)


class ConfigurationError(IntegrationError):
    """Unknown service key, or an adapter missing required settings."""

    def __init__(self, message: str, integration: str, **kwargs):
        super().__init__(message, integration, retryable=False, **kwargs)


class RateLimitError(IntegrationError):
    """The local rate limiter rejected the call. Not retried by this layer."""

    def __init__(
        self,
        message: str,
        integration: str,
        *,
        retry_after: int | None = None,
        **kwargs,
    ):
        super().__init__(message, integration, retryable=False, **kwargs)
        self.retry_after = retry_after


class TransientNetworkError(IntegrationError):
    """Timeouts, connection failures, upstream 429 and 5xx responses."""

    def __init__(self, message: str, integration: str, **kwargs):
        super().__init__(message, integration, retryable=True, **kwargs)


class PermanentAPIError(IntegrationError):
    """4xx responses other than 429, and adapter-level validation failures."""

    def __init__(self, message: str, integration: str, **kwargs):
        super().__init__(message, integration, retryable=False, **kwargs)


class AuthenticationError(PermanentAPIError):
    """Raised when authentication fails (401/403)."""


class UnsupportedActionError(PermanentAPIError):
    """The adapter has no handler for the requested action."""

    def __init__(self, action: str, integration: str):
        super().__init__(f"Unsupported action '{action}' for {integration} adapter", integration)
        self.action = action


# =============================================================================
# Status
# =============================================================================


@dataclass(frozen=True, slots=True)
class AdapterStatus:
    """Normalized status of one adapter."""

    service_key: str
    enabled: bool
    configured: bool
    connected: bool
    last_activity: dict[str, Any] | None = None
    error: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "service_key": self.service_key,
            "enabled": self.enabled,
            "configured": self.configured,
            "connected": self.connected,
            "last_activity": self.last_activity,
            "error": self.error,
            "details": dict(self.details),
        }


def webhook_payload(action: str, data: Any, metadata: dict[str, Any] | None) -> dict[str, Any]:
    """Flat JSON body posted to webhook receivers."""
    return {
        "action": action,
        "data": data,
        "metadata": metadata or {},
        "timestamp": datetime.now(UTC).isoformat(),
        "source": WEBHOOK_SOURCE,
    }


# =============================================================================
# Base Adapter
# =============================================================================


ActivityLookup = Callable[[str], Awaitable[dict[str, Any] | None]]


class ServiceAdapter(ABC):
    """
    Abstract base class for service adapters.

    Subclasses declare:
    - service_key: registry key, also used in errors and status
    - actions: mapping of action name to OperationType; each action is
      handled by the method of the same name, called as
      ``await self.<action>(data, metadata)``
    - probe(): optional cheap read used by get_status()

    Example:
        adapter = AirtableAdapter()
        adapter.configure(IntegrationConfig(service_name="airtable", api_key="key", base_id="app1"))
        record = await adapter.execute_action("track_lead", {"id": "L1", "email": "a@b.c"})
    """

    service_key: str = ""
    actions: ClassVar[dict[str, OperationType]] = {}

    def __init__(
        self,
        config: IntegrationConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
        user_agent: str = DEFAULT_USER_AGENT,
        activity_lookup: ActivityLookup | None = None,
    ):
        """
        Args:
            config: Initial configuration (may be set later with configure())
            transport: httpx transport override, used by tests
            timeout: Per-request timeout in seconds
            user_agent: Fixed client identifier sent with every request
            activity_lookup: Returns the newest activity row for a service key
        """
        self.config = config
        self.timeout = timeout
        self.user_agent = user_agent
        self.activity_lookup = activity_lookup
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def configure(self, config: IntegrationConfig) -> None:
        """Replace the stored configuration. No I/O."""
        self.config = config

    @property
    def enabled(self) -> bool:
        return bool(self.config and self.config.enabled)

    def is_configured(self) -> bool:
        """Whether the minimum required settings are present."""
        return bool(self.config and self.config.bearer_token)

    def require(self, name: str, label: str | None = None) -> Any:
        """Read a provider setting or raise ConfigurationError."""
        value = self.config.setting(name) if self.config else None
        if value is None:
            raise ConfigurationError(f"{label or name} not configured", self.service_key)
        return value

    def operation_type(self, action: str) -> OperationType | None:
        return self.actions.get(action)

    # -------------------------------------------------------------------------
    # Dispatch
    # -------------------------------------------------------------------------

    async def execute_action(
        self,
        action: str,
        data: dict[str, Any] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Any:
        """
        Dispatch ``action`` to its handler.

        Raises:
            UnsupportedActionError: If the adapter has no such action
            IntegrationError: Any failure from the handler's HTTP calls
        """
        if action not in self.actions:
            raise UnsupportedActionError(action, self.service_key)

        handler = getattr(self, action)
        logger.debug(f"[{self.service_key}] executing {action}")
        return await handler(data or {}, metadata or {})

    # -------------------------------------------------------------------------
    # HTTP
    # -------------------------------------------------------------------------

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"User-Agent": self.user_agent},
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _auth_headers(self) -> dict[str, str]:
        """Authentication headers for requests. Bearer token by default."""
        token = self.config.bearer_token if self.config else None
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def make_api_call(
        self,
        url: str,
        method: str = "GET",
        *,
        json: Any = None,
        form: dict[str, str] | list[tuple[str, str]] | None = None,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> Any:
        """
        Issue one request and return the decoded JSON body.

        ``form`` sends an urlencoded body instead of JSON. Empty bodies
        decode to ``{}``.

        Raises:
            TransientNetworkError: Timeouts, transport failures, 429, 5xx
            AuthenticationError: 401 / 403
            PermanentAPIError: Any other non-2xx status
        """
        client = await self._get_client()

        request_headers = {
            "Content-Type": (
                "application/x-www-form-urlencoded" if form is not None else "application/json"
            ),
            "User-Agent": self.user_agent,
            **self._auth_headers(),
            **(headers or {}),
        }

        try:
            response = await client.request(
                method,
                url,
                json=json,
                content=urlencode(form) if form is not None else None,
                params={k: v for k, v in (params or {}).items() if v is not None} or None,
                headers=request_headers,
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Request timeout: {e}", self.service_key) from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Network error: {e}", self.service_key) from e

        self._check_response(response)
        return self._decode(response)

    def _check_response(self, response: httpx.Response) -> None:
        """Raise the mapped IntegrationError for any non-2xx response."""
        if response.is_success:
            return

        status = response.status_code
        message = f"API call failed: {status} {response.reason_phrase}"
        kwargs = {"status_code": status, "response_body": response.text}

        if status in (401, 403):
            raise AuthenticationError(message, self.service_key, **kwargs)
        if status == 429 or status >= 500:
            raise TransientNetworkError(message, self.service_key, **kwargs)
        raise PermanentAPIError(message, self.service_key, **kwargs)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    async def probe(self) -> dict[str, Any] | None:
        """
        Cheap live read proving the credentials work.

        Returns extra status details, or None when the adapter has no
        probe (connectivity is then assumed from configuration).
        """
        return None

    def status_details(self) -> dict[str, Any]:
        """Non-secret configuration facts included in the status."""
        return {}

    async def _last_activity(self) -> dict[str, Any] | None:
        if self.activity_lookup is None:
            return None
        try:
            return await self.activity_lookup(self.service_key)
        except Exception as e:
            logger.warning(f"[{self.service_key}] last activity lookup failed: {e}")
            return None

    async def get_status(self) -> AdapterStatus:
        """Normalized status. Never raises."""
        configured = self.is_configured()
        connected = False
        error = None
        details = self.status_details()

        if configured:
            try:
                probed = await self.probe()
                connected = True
                if probed:
                    details.update(probed)
            except Exception as e:
                error = str(e)
                logger.info(f"[{self.service_key}] status probe failed: {e}")

        return AdapterStatus(
            service_key=self.service_key,
            enabled=self.enabled,
            configured=configured,
            connected=connected,
            last_activity=await self._last_activity(),
            error=error,
            details=details,
        )

    async def __aenter__(self) -> ServiceAdapter:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class ProviderAdapter(ServiceAdapter):
    """
    One adapter class serving several providers of the same kind.

    Subclasses define ``base_urls`` and ``provider_actions`` keyed by
    provider; the instance's ``service_key`` is its provider.
    """

    base_urls: ClassVar[dict[str, str]] = {}
    provider_actions: ClassVar[dict[str, dict[str, OperationType]]] = {}

    def __init__(self, provider: str, config: IntegrationConfig | None = None, **kwargs):
        if provider not in self.base_urls:
            raise ValueError(
                f"Unknown provider {provider!r} for {type(self).__name__}; "
                f"expected one of {sorted(self.base_urls)}"
            )
        super().__init__(config, **kwargs)
        self.provider = provider
        self.service_key = provider
        self.base_url = self.base_urls[provider]
        self.actions = self.provider_actions[provider]


__all__ = [
    "AdapterStatus",
    "AuthenticationError",
    "ConfigurationError",
    "DEFAULT_USER_AGENT",
    "IntegrationError",
    "PermanentAPIError",
    "ProviderAdapter",
    "RateLimitError",
    "ServiceAdapter",
    "TransientNetworkError",
    "UnsupportedActionError",
    "WEBHOOK_SOURCE",
    "webhook_payload",
]
