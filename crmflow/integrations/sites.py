"""
Site builder adapter for Webflow and Typedream.

Deploys client microsites. Webflow sites are created (or updated) and
then explicitly published; Typedream publishes on save.
"""

from __future__ import annotations

import re
from typing import Any

from crmflow.keys import ServiceKey
from crmflow.pipeline.retry import OperationType

from .base import PermanentAPIError, ProviderAdapter

WEBFLOW = ServiceKey.WEBFLOW.value
TYPEDREAM = ServiceKey.TYPEDREAM.value

_COMMON_ACTIONS = {
    "deploy_microsite": OperationType.CREATE,
    "update_site": OperationType.UPDATE,
    "get_sites": OperationType.READ,
    "deploy_microsite_from_crm": OperationType.CREATE,
}


def slugify(name: str) -> str:
    return re.sub(r"\s+", "-", name.strip().lower())


def default_site_content(site: dict[str, Any]) -> dict[str, Any]:
    """Hero, about and contact blocks for a site created without content."""
    return {
        "blocks": [
            {
                "type": "hero",
                "content": {
                    "headline": site.get("headline") or f"Welcome to {site.get('name')}",
                    "subheadline": site.get("description") or "Professional services you can trust",
                    "background_image": site.get("hero_image"),
                    "cta_text": site.get("cta_text") or "Get Started",
                    "cta_url": site.get("cta_url") or "#contact",
                },
            },
            {
                "type": "about",
                "content": {
                    "title": "About Us",
                    "description": site.get("about_text")
                    or "We provide professional services with excellence and reliability.",
                    "features": site.get("features")
                    or ["Professional Service", "Quality Guaranteed", "Customer Focused"],
                },
            },
            {
                "type": "contact",
                "content": {
                    "title": "Get In Touch",
                    "email": site.get("email"),
                    "phone": site.get("phone"),
                    "address": site.get("address"),
                },
            },
        ]
    }


class SiteBuilderAdapter(ProviderAdapter):
    """Microsite deployment on Webflow or Typedream."""

    base_urls = {
        WEBFLOW: "https://api.webflow.com/v2",
        TYPEDREAM: "https://api.typedream.com/v1",
    }
    provider_actions = {
        WEBFLOW: {**_COMMON_ACTIONS, "create_cms_item": OperationType.CREATE},
        TYPEDREAM: {**_COMMON_ACTIONS, "create_page": OperationType.CREATE},
    }

    async def probe(self) -> dict[str, Any] | None:
        sites = await self.get_sites({}, {})
        if isinstance(sites, list):
            return {"site_count": len(sites)}
        return {"site_count": len(sites.get("sites") or [])}

    def _name(self, data: dict[str, Any]) -> str:
        if not data.get("name"):
            raise PermanentAPIError("name is required", self.service_key)
        return data["name"]

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def get_sites(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        return await self.make_api_call(f"{self.base_url}/sites")

    async def update_site(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        site_id = data.get("site_id")
        if not site_id:
            raise PermanentAPIError("site_id is required", self.service_key)

        if self.provider == WEBFLOW:
            payload = {"displayName": data.get("name")}
            if data.get("custom_code"):
                payload["customCode"] = data["custom_code"]
        else:
            payload = {
                "title": data.get("name"),
                "content": data.get("content"),
                "theme": data.get("theme"),
                "customDomain": data.get("custom_domain"),
            }
        return await self.make_api_call(f"{self.base_url}/sites/{site_id}", "PATCH", json=payload)

    async def _create_or_update_site(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        if data.get("site_id"):
            return await self.update_site(data, metadata)

        name = self._name(data)
        slug = data.get("slug") or slugify(name)
        if self.provider == WEBFLOW:
            payload = {
                "displayName": name,
                "shortName": slug,
                "workspaceId": self.config.setting("workspace_id") if self.config else None,
            }
        else:
            payload = {
                "title": name,
                "slug": slug,
                "content": data.get("content") or default_site_content(data),
                "theme": data.get("theme") or "minimal",
                "customDomain": data.get("custom_domain"),
            }
        return await self.make_api_call(f"{self.base_url}/sites", "POST", json=payload)

    async def deploy_microsite(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        site = await self._create_or_update_site(data, metadata)

        if self.provider == TYPEDREAM:
            return {
                "site_id": site.get("id"),
                "published": True,
                "url": site.get("url"),
                "edit_url": site.get("editUrl"),
            }

        domains = data.get("domains") or []
        publish_result = await self.make_api_call(
            f"{self.base_url}/sites/{site.get('id')}/publish", "POST", json={"domains": domains}
        )
        return {
            "site_id": site.get("id"),
            "published": True,
            "url": site.get("defaultDomain"),
            "custom_domains": domains,
            "publish_result": publish_result,
        }

    async def deploy_microsite_from_crm(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        """Build a portfolio microsite from a CRM client record and deploy it."""
        client = data.get("client_name")
        if not client:
            raise PermanentAPIError("client_name is required", self.service_key)

        site = {
            "name": f"{client} - Portfolio",
            "slug": data.get("slug") or slugify(client),
            "headline": f"{client} - Professional Services",
            "description": data.get("description") or f"Quality services by {client}",
            "email": data.get("email"),
            "phone": data.get("phone"),
            "address": data.get("address"),
            "features": data.get("services") or [],
            "hero_image": data.get("hero_image"),
            "custom_domain": data.get("custom_domain"),
            "content": data.get("content"),
        }
        return await self.deploy_microsite(site, metadata)

    async def create_cms_item(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        collection_id = data.get("collection_id")
        if not collection_id:
            raise PermanentAPIError("collection_id is required", self.service_key)
        payload = {"isArchived": False, "isDraft": False, "fieldData": data.get("fields") or {}}
        return await self.make_api_call(
            f"{self.base_url}/collections/{collection_id}/items", "POST", json=payload
        )

    async def create_page(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        site_id = data.get("site_id")
        if not site_id:
            raise PermanentAPIError("site_id is required", self.service_key)
        payload = {
            "title": data.get("title"),
            "slug": data.get("slug"),
            "content": data.get("content"),
            "isPublished": data.get("is_published", True) is not False,
        }
        return await self.make_api_call(
            f"{self.base_url}/sites/{site_id}/pages", "POST", json=payload
        )


__all__ = ["SiteBuilderAdapter", "default_site_content", "slugify"]
