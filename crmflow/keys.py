"""Identifiers for the external services crmflow ships adapters for."""

from __future__ import annotations

from enum import Enum


class ServiceKey(str, Enum):
    """Known adapter keys. Custom adapters may register under any other string."""

    ZAPIER = "zapier"
    AIRTABLE = "airtable"
    STRIPE = "stripe"
    CALENDLY = "calendly"
    XERO = "xero"
    QUICKBOOKS = "quickbooks"
    BUFFER = "buffer"
    CANVA = "canva"
    WEBFLOW = "webflow"
    TYPEDREAM = "typedream"
    OPENAI = "openai"
    RUNWAYML = "runwayml"


def service_name(key: str | ServiceKey) -> str:
    """Normalize a service key to its plain string form."""
    return key.value if isinstance(key, ServiceKey) else str(key)


__all__ = ["ServiceKey", "service_name"]
