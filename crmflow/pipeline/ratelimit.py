"""
Rate Limiting for crmflow integrations.

Guards outbound calls to third-party services against quota exhaustion.

Design Philosophy:
- Sliding windows per service (minute, hour, optional day)
- Fail open: a service without limits is always admitted
- Per-user overrides get their own window, keyed "<user>:<service>"
- Check-and-record is atomic under a single asyncio.Lock
- State is process-local and resets on restart

Known gap: state is not shared between processes, so several server
instances each enforce the full ceiling independently.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from crmflow.keys import ServiceKey, service_name

logger = logging.getLogger(__name__)

MINUTE = 60.0
HOUR = 3600.0
DAY = 86400.0


# =============================================================================
# Configuration
# =============================================================================


@dataclass(frozen=True, slots=True)
class RateLimitConfig:
    """Request ceilings for one service."""

    requests_per_minute: int
    requests_per_hour: int
    requests_per_day: int | None = None

    def __post_init__(self) -> None:
        if self.requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        if self.requests_per_hour <= 0:
            raise ValueError("requests_per_hour must be positive")
        if self.requests_per_day is not None and self.requests_per_day <= 0:
            raise ValueError("requests_per_day must be positive when set")


DEFAULT_RATE_LIMITS: dict[ServiceKey, RateLimitConfig] = {
    ServiceKey.ZAPIER: RateLimitConfig(100, 1000),
    ServiceKey.AIRTABLE: RateLimitConfig(5, 1000),
    ServiceKey.STRIPE: RateLimitConfig(100, 1000),
    ServiceKey.CALENDLY: RateLimitConfig(100, 1000),
    ServiceKey.XERO: RateLimitConfig(60, 1000),
    ServiceKey.QUICKBOOKS: RateLimitConfig(100, 500),
    ServiceKey.BUFFER: RateLimitConfig(10, 300),
    ServiceKey.CANVA: RateLimitConfig(10, 100),
    ServiceKey.WEBFLOW: RateLimitConfig(60, 1000),
    ServiceKey.TYPEDREAM: RateLimitConfig(60, 1000),
    ServiceKey.OPENAI: RateLimitConfig(20, 500),
    ServiceKey.RUNWAYML: RateLimitConfig(10, 100),
}


def scoped_key(service_key: str | ServiceKey, scope: str | None) -> str:
    """Limiter key of a per-scope override, e.g. ``"user-1:zapier"``."""
    name = service_name(service_key)
    return f"{scope}:{name}" if scope else name


# =============================================================================
# State and results
# =============================================================================


@dataclass
class RateLimitState:
    """Rolling request timestamps for one service."""

    minute: list[float] = field(default_factory=list)
    hour: list[float] = field(default_factory=list)
    day: list[float] = field(default_factory=list)

    def prune(self, now: float) -> None:
        """Drop timestamps that have left their window."""
        self.minute = [t for t in self.minute if now - t < MINUTE]
        self.hour = [t for t in self.hour if now - t < HOUR]
        self.day = [t for t in self.day if now - t < DAY]

    @property
    def is_empty(self) -> bool:
        return not (self.minute or self.hour or self.day)


@dataclass(frozen=True, slots=True)
class RateLimitDecision:
    """Outcome of a rate limit check."""

    allowed: bool
    remaining: int | None = None
    reset_in_seconds: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "reset_in_seconds": self.reset_in_seconds,
        }


# =============================================================================
# Rate Limiter
# =============================================================================


class RateLimiter:
    """
    Per-service sliding window rate limiter.

    Example:
        limiter = RateLimiter()
        limiter.set_config("demo", RateLimitConfig(requests_per_minute=2, requests_per_hour=100))

        decision = await limiter.check_limit("demo")
        if not decision.allowed:
            print(f"retry in {decision.reset_in_seconds}s")

    Args:
        configs: Per-service limits (defaults to DEFAULT_RATE_LIMITS)
        clock: Monotonic time source, in seconds
        sweep_interval: Seconds between background sweeps
    """

    def __init__(
        self,
        configs: dict[str, RateLimitConfig] | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sweep_interval: float = 60.0,
    ):
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._configs: dict[str, RateLimitConfig] = {}
        self._states: dict[str, RateLimitState] = {}
        self._scoped: set[str] = set()
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task | None = None

        source = DEFAULT_RATE_LIMITS if configs is None else configs
        for key, config in source.items():
            self.set_config(key, config)

    # -------------------------------------------------------------------------
    # Configuration
    # -------------------------------------------------------------------------

    def set_config(self, service_key: str | ServiceKey, config: RateLimitConfig) -> None:
        """Set or replace the limits for a service."""
        if not isinstance(config, RateLimitConfig):
            raise TypeError(f"Expected RateLimitConfig, got {type(config).__name__}")
        self._configs[service_name(service_key)] = config

    def get_config(
        self, service_key: str | ServiceKey, scope: str | None = None
    ) -> RateLimitConfig | None:
        """Limits in effect for a service, preferring a scope's own override."""
        return self._configs.get(self._resolve(service_key, scope))

    def set_override(
        self, scope: str, service_key: str | ServiceKey, config: RateLimitConfig
    ) -> None:
        """
        Give one scope (a user) its own limits and window for a service.

        Other scopes keep using the service-wide limits.
        """
        key = scoped_key(service_key, scope)
        self.set_config(key, config)
        self._scoped.add(key)

    def clear_override(self, scope: str, service_key: str | ServiceKey) -> None:
        """Drop a scope's override so the service-wide limits apply again."""
        key = scoped_key(service_key, scope)
        self._configs.pop(key, None)
        self._states.pop(key, None)
        self._scoped.discard(key)

    def _resolve(self, service_key: str | ServiceKey, scope: str | None) -> str:
        if scope:
            key = scoped_key(service_key, scope)
            if key in self._configs:
                return key
        return service_name(service_key)

    # -------------------------------------------------------------------------
    # Admission
    # -------------------------------------------------------------------------

    async def check_limit(
        self, service_key: str | ServiceKey, scope: str | None = None
    ) -> RateLimitDecision:
        """
        Admit or reject one request for a service.

        On admission the request is recorded in every configured window.
        On rejection nothing is recorded and ``reset_in_seconds`` tells the
        caller when the first exceeded window frees a slot. A ``scope`` with
        its own override is counted in a separate window.
        """
        key = self._resolve(service_key, scope)
        config = self._configs.get(key)
        if config is None:
            return RateLimitDecision(allowed=True)

        async with self._lock:
            now = self._clock()
            state = self._states.setdefault(key, RateLimitState())
            state.prune(now)

            windows = [
                (state.minute, config.requests_per_minute, MINUTE),
                (state.hour, config.requests_per_hour, HOUR),
            ]
            if config.requests_per_day is not None:
                windows.append((state.day, config.requests_per_day, DAY))

            for timestamps, limit, window in windows:
                if len(timestamps) >= limit:
                    reset_in = math.ceil(min(timestamps) + window - now)
                    logger.debug(
                        f"Rate limit exceeded: service={key}, window={window:.0f}s, "
                        f"limit={limit}, reset_in={reset_in}s"
                    )
                    return RateLimitDecision(
                        allowed=False,
                        remaining=0,
                        reset_in_seconds=max(1, reset_in),
                    )

            state.minute.append(now)
            state.hour.append(now)
            if config.requests_per_day is not None:
                state.day.append(now)

            remaining = config.requests_per_minute - len(state.minute)

        logger.debug(f"Rate limit acquired: service={key}, remaining={remaining}")
        return RateLimitDecision(allowed=True, remaining=remaining)

    # -------------------------------------------------------------------------
    # Maintenance
    # -------------------------------------------------------------------------

    def sweep(self) -> None:
        """Prune every service's windows and forget idle services."""
        now = self._clock()
        for key in list(self._states):
            state = self._states[key]
            state.prune(now)
            if state.is_empty:
                del self._states[key]

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            self.sweep()

    def start_sweeper(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_forever())

    async def stop_sweeper(self) -> None:
        """Cancel the periodic sweep."""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None

    def reset(self, service_key: str | ServiceKey | None = None) -> None:
        """Forget recorded requests for one service, or for all."""
        if service_key is None:
            self._states.clear()
        else:
            self._states.pop(service_name(service_key), None)

    # -------------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------------

    def get_stats(self, service_key: str | ServiceKey) -> dict[str, Any] | None:
        """Usage per window for a configured service."""
        key = service_name(service_key)
        config = self._configs.get(key)
        if config is None:
            return None

        state = RateLimitState(**vars(self._states.get(key, RateLimitState())))
        state.prune(self._clock())

        def window(used: int, limit: int) -> dict[str, int]:
            return {"used": used, "limit": limit, "remaining": limit - used}

        stats: dict[str, Any] = {
            "service": key,
            "minute": window(len(state.minute), config.requests_per_minute),
            "hour": window(len(state.hour), config.requests_per_hour),
        }
        if config.requests_per_day is not None:
            stats["day"] = window(len(state.day), config.requests_per_day)
        return stats

    def get_all_stats(self) -> dict[str, dict[str, Any] | None]:
        """Usage of every service-wide limit. Per-user overrides are left out."""
        return {key: self.get_stats(key) for key in self._configs if key not in self._scoped}


__all__ = [
    "DAY",
    "DEFAULT_RATE_LIMITS",
    "HOUR",
    "MINUTE",
    "RateLimitConfig",
    "RateLimitDecision",
    "RateLimitState",
    "RateLimiter",
    "scoped_key",
]
