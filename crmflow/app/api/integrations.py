"""
Integration endpoints.

Every route acts on behalf of the user named in the ``X-User-Id``
header. Workflow failures are reported in the response body with HTTP
200, mirroring `IntegrationManager.trigger_workflow`, which never raises.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from crmflow.app.dependencies import get_manager
from crmflow.manager import IntegrationManager, TriggerMetadata, WorkflowTrigger
from crmflow.pipeline import TimeRange

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["integrations"])


class TriggerRequest(BaseModel):
    """Body of POST /integrations/trigger."""

    service_key: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_trigger(self) -> WorkflowTrigger:
        known = {k: self.metadata.get(k) for k in ("user_id", "project_id", "lead_id", "customer_id")}
        extra = {k: v for k, v in self.metadata.items() if k not in known}
        return WorkflowTrigger(
            service_key=self.service_key,
            action=self.action,
            data=self.data,
            metadata=TriggerMetadata(**known, extra=extra),
        )


class NewLeadRequest(BaseModel):
    lead_id: str = Field(..., min_length=1)
    lead: dict[str, Any] = Field(default_factory=dict)


@router.post("/trigger")
async def trigger_workflow(
    request: TriggerRequest,
    manager: IntegrationManager = Depends(get_manager),
) -> dict[str, Any]:
    result = await manager.trigger_workflow(request.to_trigger())
    return result.to_dict()


@router.post("/zapier/new-lead")
async def trigger_new_lead(
    request: NewLeadRequest,
    manager: IntegrationManager = Depends(get_manager),
) -> dict[str, Any]:
    result = await manager.trigger_zapier_for_new_lead(request.lead_id, request.lead)
    return result.to_dict()


@router.put("/{service_key}/config")
async def configure_integration(
    service_key: str,
    config: dict[str, Any],
    manager: IntegrationManager = Depends(get_manager),
) -> dict[str, Any]:
    if not manager.user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return {"success": await manager.configure_integration(service_key, config)}


@router.get("/status")
async def get_status(
    service_key: str | None = None,
    manager: IntegrationManager = Depends(get_manager),
) -> dict[str, Any]:
    """Status of every adapter, or of ``service_key`` only."""
    if service_key is None:
        statuses = await manager.get_integration_status()
        return {"integrations": {key: status.to_dict() for key, status in statuses.items()}}

    status = await manager.get_integration_status(service_key)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Unknown service: {service_key}")
    return status.to_dict()


@router.get("/{service_key}/health")
async def get_health(
    service_key: str,
    manager: IntegrationManager = Depends(get_manager),
) -> dict[str, Any]:
    health = await manager.get_service_health(service_key)
    return health.to_dict()


@router.get("/analytics")
async def get_analytics(
    service_key: str | None = None,
    days: int = Query(30, ge=1, le=365),
    manager: IntegrationManager = Depends(get_manager),
) -> dict[str, Any]:
    try:
        metrics = await manager.get_analytics(
            service_key, TimeRange.trailing(timedelta(days=days))
        )
    except Exception as e:
        logger.error(f"Analytics query failed: {e}", exc_info=True)
        raise HTTPException(status_code=503, detail="Activity log unavailable") from e
    return metrics.to_dict()
