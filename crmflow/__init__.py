"""
crmflow - Integration dispatch for a CRM.

crmflow sends CRM events (new leads, invoices, projects, posts) to
third-party SaaS APIs through a single entry point that applies:

- **Rate Limiting**: Per-service sliding windows (minute / hour / day)
- **Retries**: Exponential backoff with transient-error classification
- **Activity Logging**: Best-effort audit rows with analytics on top
- **Adapters**: One uniform contract per external API family

Quick Start:
    >>> from crmflow import IntegrationManager, WorkflowTrigger
    >>> from crmflow.storage import InMemoryRowStore
    >>>
    >>> manager = await IntegrationManager.create(InMemoryRowStore(), user_id="user-1")
    >>> result = await manager.trigger_workflow(
    ...     WorkflowTrigger(service_key="zapier", action="new_lead", data={"name": "Ada"})
    ... )
"""

__version__ = "0.1.0"

from crmflow.keys import ServiceKey
from crmflow.manager import IntegrationManager, TriggerMetadata, WorkflowResult, WorkflowTrigger

__all__ = [
    "__version__",
    "IntegrationManager",
    "ServiceKey",
    "TriggerMetadata",
    "WorkflowResult",
    "WorkflowTrigger",
]
