"""
Configuration Schemas for crmflow.

Pydantic models for per-user integration settings stored in the
``integration_configs`` table, and for application settings.

Security:
    Credentials use SecretStr to prevent accidental logging.
    Access the value with `.get_secret_value()`, or `config.secret("api_key")`.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, Field, SecretStr

from crmflow.pipeline.ratelimit import RateLimitConfig

SECRET_FIELDS = ("api_key", "api_secret", "access_token", "refresh_token", "secret_key")


def _utc_now() -> datetime:
    """Get current UTC time with timezone awareness."""
    return datetime.now(UTC)


class RateLimitOverride(BaseModel):
    """Per-user replacement for a service's default rate limits."""

    requests_per_minute: int = Field(..., gt=0)
    requests_per_hour: int = Field(..., gt=0)
    requests_per_day: int | None = Field(None, gt=0)

    def to_rate_limit_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            requests_per_minute=self.requests_per_minute,
            requests_per_hour=self.requests_per_hour,
            requests_per_day=self.requests_per_day,
        )


class IntegrationConfig(BaseModel):
    """
    Settings for one (user, service) pair.

    Provider-specific settings such as ``base_id`` (Airtable),
    ``tenant_id`` (Xero) or ``company_id`` (QuickBooks) are accepted as
    extra fields and read with `setting()`.
    """

    service_name: str = Field(..., description="Adapter key, e.g. 'airtable'")

    # Credentials
    api_key: SecretStr | None = None
    api_secret: SecretStr | None = None
    access_token: SecretStr | None = None
    refresh_token: SecretStr | None = None
    secret_key: SecretStr | None = None

    webhook_url: str | None = None
    enabled: bool = True
    rate_limits: RateLimitOverride | None = None

    class Config:
        extra = "allow"

    def secret(self, name: str) -> str | None:
        """Unwrapped value of a credential field, or None when unset or empty."""
        value = getattr(self, name, None)
        if isinstance(value, SecretStr):
            value = value.get_secret_value()
        return value or None

    def setting(self, name: str, default: Any = None) -> Any:
        """Read a provider-specific extra field."""
        extra = self.model_extra or {}
        value = extra.get(name)
        return default if value in (None, "") else value

    @property
    def bearer_token(self) -> str | None:
        return self.secret("api_key") or self.secret("access_token")

    def to_document(self) -> dict[str, Any]:
        """Plain dict for persistence, with credentials unwrapped."""
        doc = self.model_dump(exclude_none=True)
        for name in SECRET_FIELDS:
            if name in doc:
                doc[name] = self.secret(name)
        return doc


class IntegrationConfigRow(BaseModel):
    """
    Row in the ``integration_configs`` table.

    Unique on (user_id, service_name).
    """

    user_id: str
    service_name: str
    config: dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    class Config:
        extra = "allow"

    def to_integration_config(self) -> IntegrationConfig:
        return IntegrationConfig.model_validate(
            {**self.config, "service_name": self.service_name, "enabled": self.is_active}
        )


class AppSettings(BaseModel):
    """
    Application settings model.

    Used for type-safe settings access.

    Security:
        The MongoDB URL may carry credentials and uses SecretStr.
    """

    # Service identity
    service_name: str = "crmflow"
    environment: str = "development"
    debug: bool = False

    # Storage
    storage_backend: str = Field("mongo", pattern="^(mongo|memory)$")
    mongodb_url: SecretStr = Field(
        default=SecretStr("mongodb://localhost:27017"), description="MongoDB connection URL"
    )
    mongodb_database: str = "crmflow"

    # Outbound HTTP
    user_agent: str = "crmflow-integration/1.0"
    http_timeout: float = Field(30.0, gt=0)

    # Rate limiting
    rate_limit_sweep_interval: float = Field(60.0, gt=0)

    # HTTP surface
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Logging
    log_level: str = "INFO"

    class Config:
        env_prefix = "CRMFLOW_"
        case_sensitive = False


__all__ = [
    "AppSettings",
    "IntegrationConfig",
    "IntegrationConfigRow",
    "RateLimitOverride",
]
