"""
Airtable adapter.

Mirrors CRM projects and leads into an Airtable base. The base id is a
required setting; table names default to ``Projects`` and ``Leads``.

Example:
    adapter = AirtableAdapter(
        IntegrationConfig(service_name="airtable", api_key="pat...", base_id="appXYZ")
    )
    await adapter.execute_action("create_project", {"name": "Loft conversion"})
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from crmflow.keys import ServiceKey
from crmflow.pipeline.retry import OperationType

from .base import IntegrationError, PermanentAPIError, ServiceAdapter

logger = logging.getLogger(__name__)

AIRTABLE_API_URL = "https://api.airtable.com/v0"
DEFAULT_PROJECT_TABLE = "Projects"
DEFAULT_LEAD_TABLE = "Leads"


def _fields(values: dict[str, Any]) -> dict[str, Any]:
    """Drop unset fields; Airtable rejects explicit nulls on some field types."""
    return {k: v for k, v in values.items() if v is not None}


class AirtableAdapter(ServiceAdapter):
    """Creates and updates records in an Airtable base."""

    service_key = ServiceKey.AIRTABLE.value
    actions = {
        "create_project": OperationType.CREATE,
        "update_project": OperationType.UPDATE,
        "sync_crm_data": OperationType.WRITE,
        "track_lead": OperationType.CREATE,
    }

    def is_configured(self) -> bool:
        return bool(self.config and self.config.bearer_token and self.config.setting("base_id"))

    def status_details(self) -> dict[str, Any]:
        has_base = bool(self.config and self.config.setting("base_id"))
        return {"base_id": "***configured***" if has_base else None}

    def _table_url(self, table_setting: str, default: str) -> str:
        base_id = self.require("base_id", "Airtable base ID")
        table = self.config.setting(table_setting, default)
        return f"{AIRTABLE_API_URL}/{base_id}/{table}"

    async def probe(self) -> dict[str, Any] | None:
        url = self._table_url("project_table_id", DEFAULT_PROJECT_TABLE)
        await self.make_api_call(url, params={"maxRecords": 1})
        return None

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def create_project(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        url = self._table_url("project_table_id", DEFAULT_PROJECT_TABLE)
        fields = _fields(
            {
                "Project Name": data.get("name"),
                "Client Name": data.get("client_name"),
                "Status": data.get("status") or "Active",
                "Created Date": datetime.now(UTC).isoformat(),
                "Project Type": data.get("type"),
                "Budget": data.get("budget"),
                "Description": data.get("description"),
                "Lead Source": data.get("lead_source"),
                "CRM ID": data.get("crm_id"),
            }
        )
        return await self.make_api_call(url, "POST", json={"records": [{"fields": fields}]})

    async def update_project(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        project_id = data.get("project_id")
        if not project_id:
            raise PermanentAPIError("project_id is required", self.service_key)

        url = f"{self._table_url('project_table_id', DEFAULT_PROJECT_TABLE)}/{project_id}"
        fields = {**data.get("updates", {}), "Last Updated": datetime.now(UTC).isoformat()}
        return await self.make_api_call(url, "PATCH", json={"fields": fields})

    async def sync_crm_data(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        """
        Push a batch of CRM records, one request per record.

        Records carrying an ``airtable_id`` are updated, the rest created.
        Per-record failures are collected rather than aborting the batch.
        """
        synced = 0
        errors = []
        for record in data.get("records", []):
            try:
                if record.get("airtable_id"):
                    await self.update_project(
                        {"project_id": record["airtable_id"], "updates": record.get("updates", {})},
                        metadata,
                    )
                else:
                    await self.create_project(record, metadata)
                synced += 1
            except IntegrationError as e:
                logger.warning(f"[airtable] sync of record {record.get('id')} failed: {e}")
                errors.append({"record_id": record.get("id"), "error": str(e)})

        return {"synced": synced, "errors": errors}

    async def track_lead(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        url = self._table_url("lead_table_id", DEFAULT_LEAD_TABLE)
        fields = _fields(
            {
                "Lead ID": data.get("id"),
                "Customer Name": data.get("customer_name"),
                "Email": data.get("email"),
                "Phone": data.get("phone"),
                "Status": data.get("status"),
                "Priority": data.get("priority"),
                "Source": data.get("source"),
                "Created Date": data.get("created_at"),
                "Value": data.get("estimated_value"),
                "Notes": data.get("notes"),
            }
        )
        return await self.make_api_call(url, "POST", json={"records": [{"fields": fields}]})


__all__ = ["AirtableAdapter"]
