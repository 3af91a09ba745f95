"""
crmflow Configuration

Per-user integration settings persisted in the row store, and
application settings read from the environment.
"""

from .schemas import AppSettings, IntegrationConfig, IntegrationConfigRow, RateLimitOverride
from .service import IntegrationConfigService, TTLCache

__all__ = [
    "AppSettings",
    "IntegrationConfig",
    "IntegrationConfigRow",
    "IntegrationConfigService",
    "RateLimitOverride",
    "TTLCache",
]
