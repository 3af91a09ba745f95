"""
Social content adapter for Buffer and Canva.

Buffer schedules posts to connected social profiles; Canva creates and
exports designs. ``create_and_schedule_post`` chains the two halves
that apply to the provider.
"""

from __future__ import annotations

from typing import Any

from crmflow.keys import ServiceKey
from crmflow.pipeline.retry import OperationType

from .base import PermanentAPIError, ProviderAdapter

BUFFER = ServiceKey.BUFFER.value
CANVA = ServiceKey.CANVA.value


class SocialContentAdapter(ProviderAdapter):
    """Post scheduling (Buffer) and design generation (Canva)."""

    base_urls = {
        BUFFER: "https://api.bufferapp.com/1",
        CANVA: "https://api.canva.com/rest/v1",
    }
    provider_actions = {
        BUFFER: {
            "schedule_post": OperationType.CREATE,
            "get_profiles": OperationType.READ,
            "get_scheduled_posts": OperationType.READ,
            "delete_post": OperationType.DELETE,
            "create_and_schedule_post": OperationType.CREATE,
        },
        CANVA: {
            "create_design": OperationType.CREATE,
            "get_design": OperationType.READ,
            "export_design": OperationType.CREATE,
            "get_templates": OperationType.READ,
            "create_and_schedule_post": OperationType.CREATE,
        },
    }

    async def probe(self) -> dict[str, Any] | None:
        if self.provider != BUFFER:
            return None
        profiles = await self.get_profiles({}, {})
        return {"profile_count": len(profiles) if isinstance(profiles, list) else 0}

    def _required(self, data: dict[str, Any], key: str) -> Any:
        if not data.get(key):
            raise PermanentAPIError(f"{key} is required", self.service_key)
        return data[key]

    # -------------------------------------------------------------------------
    # Buffer
    # -------------------------------------------------------------------------

    async def schedule_post(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        payload = {
            "text": data.get("text"),
            "profile_ids": data.get("profile_ids") or [],
            "scheduled_at": data.get("scheduled_at"),
        }
        if data.get("media"):
            payload["media"] = data["media"]
        if data.get("link"):
            payload["link"] = data["link"]
        return await self.make_api_call(f"{self.base_url}/updates/create.json", "POST", json=payload)

    async def get_profiles(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        return await self.make_api_call(f"{self.base_url}/profiles.json")

    async def get_scheduled_posts(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        profile_id = self._required(data, "profile_id")
        return await self.make_api_call(f"{self.base_url}/profiles/{profile_id}/updates/pending.json")

    async def delete_post(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        post_id = self._required(data, "post_id")
        return await self.make_api_call(f"{self.base_url}/updates/{post_id}/destroy.json", "POST")

    # -------------------------------------------------------------------------
    # Canva
    # -------------------------------------------------------------------------

    async def create_design(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        payload = {"design_type": data.get("design_type") or "Instagram Post", "name": data.get("name")}
        if data.get("template_id"):
            payload["template_id"] = data["template_id"]
        return await self.make_api_call(f"{self.base_url}/designs", "POST", json=payload)

    async def get_design(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        design_id = self._required(data, "design_id")
        return await self.make_api_call(f"{self.base_url}/designs/{design_id}")

    async def export_design(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        design_id = self._required(data, "design_id")
        payload = {"format": data.get("format") or "png", "quality": data.get("quality") or "standard"}
        return await self.make_api_call(
            f"{self.base_url}/designs/{design_id}/export", "POST", json=payload
        )

    async def get_templates(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        params = {
            "category": data.get("category"),
            "query": data.get("query"),
            "limit": data.get("limit"),
        }
        return await self.make_api_call(f"{self.base_url}/design-templates", params=params)

    # -------------------------------------------------------------------------
    # Workflow
    # -------------------------------------------------------------------------

    async def create_and_schedule_post(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        """
        Canva: create and export a design, returning its media URL.
        Buffer: schedule a post, attaching ``media_url`` when given.
        """
        media_url = data.get("media_url")

        if self.provider == CANVA:
            if data.get("create_design"):
                design = await self.create_design(
                    {
                        "design_type": data.get("design_type"),
                        "name": data.get("design_name") or "Social Media Post",
                        "template_id": data.get("template_id"),
                    },
                    metadata,
                )
                exported = await self.export_design({"design_id": design.get("id")}, metadata)
                media_url = exported.get("url")
            return {"design_created": bool(data.get("create_design")), "media_url": media_url}

        return await self.schedule_post(
            {
                "text": data.get("text"),
                "profile_ids": data.get("profile_ids"),
                "scheduled_at": data.get("scheduled_at"),
                "media": {"photo": media_url} if media_url else None,
                "link": data.get("link"),
            },
            metadata,
        )


__all__ = ["SocialContentAdapter"]
