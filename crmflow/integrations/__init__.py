"""
crmflow Integrations Layer.

One adapter per external API family. Every adapter follows the same
contract (see base.py): ``configure(config)`` stores settings without
I/O, ``execute_action(action, data, metadata)`` dispatches to a handler
and ``get_status()`` reports a normalized, never-raising status.

Directory Structure:
    integrations/
    ├── base.py           # ServiceAdapter, ProviderAdapter, error taxonomy
    ├── zapier.py         # Catch-hook webhooks
    ├── airtable.py       # Projects and leads tables
    ├── stripe.py         # Payments and invoices
    ├── calendly.py       # Scheduling links
    ├── accounting.py     # Xero / QuickBooks
    ├── social.py         # Buffer / Canva
    ├── sites.py          # Webflow / Typedream
    └── generative.py     # OpenAI / RunwayML

Usage:
    from crmflow.integrations import create_default_adapters

    adapters = create_default_adapters(timeout=10.0)
    adapters["stripe"].configure(config)
"""

from __future__ import annotations

from typing import Any

from crmflow.keys import ServiceKey

from .accounting import AccountingAdapter
from .airtable import AirtableAdapter
from .base import (
    AdapterStatus,
    AuthenticationError,
    ConfigurationError,
    IntegrationError,
    PermanentAPIError,
    ProviderAdapter,
    RateLimitError,
    ServiceAdapter,
    TransientNetworkError,
    UnsupportedActionError,
    webhook_payload,
)
from .calendly import CalendlyAdapter
from .generative import GenerativeMediaAdapter
from .sites import SiteBuilderAdapter
from .social import SocialContentAdapter
from .stripe import StripeAdapter
from .zapier import ZapierAdapter


def create_default_adapters(**kwargs: Any) -> dict[str, ServiceAdapter]:
    """
    One adapter instance per known service key.

    Keyword arguments (transport, timeout, user_agent, activity_lookup)
    are passed to every adapter.
    """
    adapters: dict[ServiceKey, ServiceAdapter] = {
        ServiceKey.ZAPIER: ZapierAdapter(**kwargs),
        ServiceKey.AIRTABLE: AirtableAdapter(**kwargs),
        ServiceKey.STRIPE: StripeAdapter(**kwargs),
        ServiceKey.CALENDLY: CalendlyAdapter(**kwargs),
        ServiceKey.XERO: AccountingAdapter(ServiceKey.XERO.value, **kwargs),
        ServiceKey.QUICKBOOKS: AccountingAdapter(ServiceKey.QUICKBOOKS.value, **kwargs),
        ServiceKey.BUFFER: SocialContentAdapter(ServiceKey.BUFFER.value, **kwargs),
        ServiceKey.CANVA: SocialContentAdapter(ServiceKey.CANVA.value, **kwargs),
        ServiceKey.WEBFLOW: SiteBuilderAdapter(ServiceKey.WEBFLOW.value, **kwargs),
        ServiceKey.TYPEDREAM: SiteBuilderAdapter(ServiceKey.TYPEDREAM.value, **kwargs),
        ServiceKey.OPENAI: GenerativeMediaAdapter(ServiceKey.OPENAI.value, **kwargs),
        ServiceKey.RUNWAYML: GenerativeMediaAdapter(ServiceKey.RUNWAYML.value, **kwargs),
    }
    missing = set(ServiceKey) - set(adapters)
    if missing:
        raise RuntimeError(f"No adapter for service keys: {sorted(k.value for k in missing)}")
    return {key.value: adapter for key, adapter in adapters.items()}


__all__ = [
    "AccountingAdapter",
    "AdapterStatus",
    "AirtableAdapter",
    "AuthenticationError",
    "CalendlyAdapter",
    "ConfigurationError",
    "GenerativeMediaAdapter",
    "IntegrationError",
    "PermanentAPIError",
    "ProviderAdapter",
    "RateLimitError",
    "ServiceAdapter",
    "SiteBuilderAdapter",
    "SocialContentAdapter",
    "StripeAdapter",
    "TransientNetworkError",
    "UnsupportedActionError",
    "ZapierAdapter",
    "create_default_adapters",
    "webhook_payload",
]
