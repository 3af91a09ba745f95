"""
Zapier webhook adapter.

Every action is delivered the same way: one POST of the flat webhook
payload to the user's catch-hook URL. The receiving Zap decides what
to do from the ``action`` field.
"""

from __future__ import annotations

from typing import Any

from crmflow.keys import ServiceKey
from crmflow.pipeline.retry import OperationType

from .base import ConfigurationError, ServiceAdapter, webhook_payload


class ZapierAdapter(ServiceAdapter):
    """Triggers Zaps through a catch-hook webhook."""

    service_key = ServiceKey.ZAPIER.value
    actions = {
        "new_lead": OperationType.CREATE,
        "lead_sync": OperationType.WRITE,
        "invoice_creation": OperationType.CREATE,
        "social_post": OperationType.CREATE,
    }

    def is_configured(self) -> bool:
        return bool(self.config and self.config.webhook_url)

    def _auth_headers(self) -> dict[str, str]:
        # Catch-hook URLs carry their own secret
        return {}

    def status_details(self) -> dict[str, Any]:
        return {"webhook_url": "***configured***" if self.is_configured() else None}

    async def _post(self, action: str, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        if not self.is_configured():
            raise ConfigurationError("Zapier webhook URL not configured", self.service_key)

        result = await self.make_api_call(
            self.config.webhook_url, "POST", json=webhook_payload(action, data, metadata)
        )
        # Catch hooks often answer with an empty or plain-text body
        if not isinstance(result, dict) or not result or set(result) == {"raw"}:
            return {"status": "triggered"}
        return result

    async def new_lead(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        return await self._post("new_lead", data, metadata)

    async def lead_sync(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        return await self._post("lead_sync", data, metadata)

    async def invoice_creation(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        return await self._post("invoice_creation", data, metadata)

    async def social_post(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        return await self._post("social_post", data, metadata)

    # -------------------------------------------------------------------------
    # Workflow helpers
    # -------------------------------------------------------------------------

    async def trigger_lead_sync(self, lead_id: str, lead: dict[str, Any]) -> Any:
        return await self.execute_action(
            "lead_sync",
            {"lead_id": lead_id, "lead": lead, "workflow": "lead_to_crm_sync"},
            {"lead_id": lead_id},
        )

    async def trigger_invoice_creation(self, invoice_id: str, invoice: dict[str, Any]) -> Any:
        return await self.execute_action(
            "invoice_creation",
            {"invoice_id": invoice_id, "invoice": invoice, "workflow": "invoice_processing"},
            {"invoice_id": invoice_id},
        )

    async def trigger_social_post(self, post: dict[str, Any]) -> Any:
        return await self.execute_action(
            "social_post", {"post": post, "workflow": "social_media_automation"}
        )


__all__ = ["ZapierAdapter"]
