"""
Generative media adapter for OpenAI and RunwayML.

OpenAI produces marketing copy and images; RunwayML produces and edits
video. Both can assemble a project showcase from a CRM project record.
"""

from __future__ import annotations

from typing import Any

from crmflow.keys import ServiceKey
from crmflow.pipeline.retry import OperationType

from .base import PermanentAPIError, ProviderAdapter

OPENAI = ServiceKey.OPENAI.value
RUNWAYML = ServiceKey.RUNWAYML.value

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant that creates professional marketing content."
DEFAULT_CHAT_MODEL = "gpt-4o-mini"
DEFAULT_IMAGE_MODEL = "gpt-image-1"


class GenerativeMediaAdapter(ProviderAdapter):
    """Text, image and video generation."""

    base_urls = {
        OPENAI: "https://api.openai.com/v1",
        RUNWAYML: "https://api.runwayml.com/v1",
    }
    provider_actions = {
        OPENAI: {
            "generate_image": OperationType.CREATE,
            "generate_content": OperationType.CREATE,
            "generate_description": OperationType.CREATE,
            "optimize_content": OperationType.CREATE,
            "generate_project_showcase": OperationType.CREATE,
        },
        RUNWAYML: {
            "generate_video": OperationType.CREATE,
            "generate_image": OperationType.CREATE,
            "upscale_image": OperationType.CREATE,
            "edit_video": OperationType.CREATE,
            "generate_project_showcase": OperationType.CREATE,
        },
    }

    async def probe(self) -> dict[str, Any] | None:
        # RunwayML has no cheap read endpoint
        if self.provider == OPENAI:
            await self.make_api_call(f"{self.base_url}/models")
        return None

    def _prompt(self, data: dict[str, Any]) -> str:
        if not data.get("prompt"):
            raise PermanentAPIError("prompt is required", self.service_key)
        return data["prompt"]

    # -------------------------------------------------------------------------
    # Text
    # -------------------------------------------------------------------------

    async def generate_content(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        payload = {
            "model": data.get("model") or DEFAULT_CHAT_MODEL,
            "messages": [
                {"role": "system", "content": data.get("system_prompt") or DEFAULT_SYSTEM_PROMPT},
                {"role": "user", "content": self._prompt(data)},
            ],
            "max_tokens": data.get("max_tokens") or 1000,
            "temperature": data.get("temperature", 0.7),
        }
        return await self.make_api_call(f"{self.base_url}/chat/completions", "POST", json=payload)

    async def generate_description(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        services = ", ".join(data.get("services") or []) or "Professional services"
        features = ", ".join(data.get("features") or []) or "Quality workmanship"
        prompt = (
            f"Create a professional description for a {data.get('project_type')} project "
            f"with the following details:\n"
            f"- Client: {data.get('client_name')}\n"
            f"- Services: {services}\n"
            f"- Location: {data.get('location') or 'Local area'}\n"
            f"- Special features: {features}\n\n"
            f"Make it engaging, professional, and highlight the key benefits "
            f"for potential customers."
        )
        return await self.generate_content(
            {"prompt": prompt, "max_tokens": 200, "temperature": 0.8}, metadata
        )

    async def optimize_content(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        if not data.get("content"):
            raise PermanentAPIError("content is required", self.service_key)
        prompt = (
            f"Optimize the following content for {data.get('purpose') or 'marketing'}:\n"
            f'"{data["content"]}"\n\n'
            f"Requirements:\n"
            f"- Keep it {data.get('tone') or 'professional'} in tone\n"
            f"- Target audience: {data.get('audience') or 'potential customers'}\n"
            f"- Length: {data.get('length') or 'concise but informative'}\n"
            f"- Include call-to-action: {data.get('include_call_to_action', True) is not False}"
        )
        return await self.generate_content(
            {"prompt": prompt, "max_tokens": data.get("max_tokens") or 300, "temperature": 0.7},
            metadata,
        )

    # -------------------------------------------------------------------------
    # Images and video
    # -------------------------------------------------------------------------

    async def generate_image(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        if self.provider == OPENAI:
            payload = {
                "model": data.get("model") or DEFAULT_IMAGE_MODEL,
                "prompt": self._prompt(data),
                "n": data.get("count") or 1,
                "size": data.get("size") or "1024x1024",
                "quality": data.get("quality") or "standard",
            }
            return await self.make_api_call(
                f"{self.base_url}/images/generations", "POST", json=payload
            )

        payload = {
            "prompt": self._prompt(data),
            "model": data.get("model") or "runway-image-1",
            "width": data.get("width") or 1024,
            "height": data.get("height") or 1024,
            "num_outputs": data.get("count") or 1,
        }
        return await self.make_api_call(f"{self.base_url}/generate/image", "POST", json=payload)

    async def generate_video(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        payload = {
            "mode": data.get("mode") or "gen2",
            "prompt": self._prompt(data),
            "duration": data.get("duration") or 4,
            "seed": data.get("seed"),
        }
        if data.get("image_url"):
            payload["init_image"] = data["image_url"]
        if data.get("style"):
            payload["style"] = data["style"]
        return await self.make_api_call(f"{self.base_url}/generate", "POST", json=payload)

    async def upscale_image(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        if not data.get("image_url"):
            raise PermanentAPIError("image_url is required", self.service_key)
        payload = {
            "image": data["image_url"],
            "scale_factor": data.get("scale_factor") or 2,
            "model": data.get("model") or "esrgan",
        }
        return await self.make_api_call(f"{self.base_url}/upscale", "POST", json=payload)

    async def edit_video(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        if not data.get("video_url"):
            raise PermanentAPIError("video_url is required", self.service_key)
        payload = {
            "video": data["video_url"],
            "prompt": data.get("prompt"),
            "mode": data.get("mode") or "inpainting",
        }
        if data.get("mask"):
            payload["mask"] = data["mask"]
        return await self.make_api_call(f"{self.base_url}/edit", "POST", json=payload)

    # -------------------------------------------------------------------------
    # Workflow
    # -------------------------------------------------------------------------

    async def generate_project_showcase(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        """
        Showcase material for a CRM project.

        OpenAI writes a description and, when ``generate_images`` is set,
        up to three images. RunwayML renders a video when
        ``generate_video`` is set.
        """
        project_type = data.get("type") or "construction"
        client = data.get("client_name")
        result: dict[str, Any] = {"description": None, "images": [], "video": None}

        if self.provider == OPENAI:
            completion = await self.generate_description(
                {
                    "project_type": project_type,
                    "client_name": client,
                    "services": data.get("services"),
                    "location": data.get("location"),
                    "features": data.get("features"),
                },
                metadata,
            )
            choices = completion.get("choices") or []
            if choices:
                result["description"] = choices[0]["message"]["content"]

            if data.get("generate_images"):
                prompts = [
                    f"Professional {project_type} project showcase for {client}, "
                    f"high quality, modern design",
                    f"Before and after comparison of {project_type} project, "
                    f"professional photography style",
                    f"Detail shot of {project_type} work, emphasizing quality and craftsmanship",
                ]
                for prompt in prompts[: data.get("image_count") or 2]:
                    image = await self.generate_image({"prompt": prompt}, metadata)
                    result["images"].extend((image.get("data") or [])[:1])

        if self.provider == RUNWAYML and data.get("generate_video"):
            result["video"] = await self.generate_video(
                {
                    "prompt": f"Professional showcase video of {project_type} project, smooth "
                    f"camera movement, highlighting quality work",
                    "duration": data.get("video_duration") or 4,
                    "style": "cinematic",
                },
                metadata,
            )

        return result


__all__ = ["GenerativeMediaAdapter"]
