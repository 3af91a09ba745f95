"""
Calendly adapter.

Calendly does not allow creating bookings directly; ``schedule_booking``
instead creates a single-use scheduling link for an event type.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from crmflow.keys import ServiceKey
from crmflow.pipeline.retry import OperationType

from .base import ConfigurationError, ServiceAdapter

CALENDLY_API_URL = "https://api.calendly.com"
DEFAULT_AVAILABILITY_WINDOW = timedelta(days=30)


class CalendlyAdapter(ServiceAdapter):
    """Scheduling links, availability and event types."""

    service_key = ServiceKey.CALENDLY.value
    actions = {
        "schedule_booking": OperationType.CREATE,
        "get_availability": OperationType.READ,
        "create_event_type": OperationType.CREATE,
        "get_scheduled_events": OperationType.READ,
    }

    async def probe(self) -> dict[str, Any] | None:
        me = await self.make_api_call(f"{CALENDLY_API_URL}/users/me")
        return {"user": (me.get("resource") or {}).get("name")}

    def _user_uri(self, data: dict[str, Any]) -> str:
        uri = data.get("user_uri") or (self.config.setting("user_uri") if self.config else None)
        if not uri:
            raise ConfigurationError("User URI not configured", self.service_key)
        return uri

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def schedule_booking(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        event_type_uri = data.get("event_type_uri") or (
            self.config.setting("default_event_type_uri") if self.config else None
        )
        if not event_type_uri:
            raise ConfigurationError("Event type URI not configured", self.service_key)

        response = await self.make_api_call(
            f"{CALENDLY_API_URL}/scheduling_links",
            "POST",
            json={"max_event_count": 1, "owner": event_type_uri, "owner_type": "EventType"},
        )
        resource = response.get("resource") or {}

        result = {
            "booking_url": resource.get("booking_url"),
            "expires_at": resource.get("expires_at"),
            "event_type": event_type_uri,
        }
        if data.get("send_invite"):
            result["invite"] = self.booking_invite(data, resource.get("booking_url"))
        return result

    @staticmethod
    def booking_invite(data: dict[str, Any], booking_url: str | None) -> dict[str, Any]:
        """Invite message for the booking link. Delivery is left to the caller."""
        meeting = data.get("meeting_type") or "consultation"
        body = (
            f"Hi {data.get('name') or 'there'},\n\n"
            f"Please use the following link to schedule your appointment:\n"
            f"{booking_url}\n\n"
            f"Best regards,\n{data.get('organizer_name') or 'Your Team'}"
        )
        return {
            "to": data.get("email"),
            "subject": f"Schedule your {meeting}",
            "body": body,
            "booking_url": booking_url,
        }

    async def get_availability(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        now = datetime.now(UTC)
        params = {
            "user": self._user_uri(data),
            "start_time": data.get("start_time") or now.isoformat(),
            "end_time": data.get("end_time") or (now + DEFAULT_AVAILABILITY_WINDOW).isoformat(),
        }
        return await self.make_api_call(
            f"{CALENDLY_API_URL}/user_availability_schedules", params=params
        )

    async def create_event_type(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        payload = {
            "name": data.get("name"),
            "duration": data.get("duration") or 30,
            "description_plain": data.get("description"),
            "kind": "solo",
            "scheduling_url": data.get("scheduling_url"),
            "slug": data.get("slug"),
            "color": data.get("color") or "#0069ff",
            "type": "StandardEventType",
        }
        return await self.make_api_call(f"{CALENDLY_API_URL}/event_types", "POST", json=payload)

    async def get_scheduled_events(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        params = {
            "user": self._user_uri(data),
            "status": data.get("status"),
            "min_start_time": data.get("min_start_time"),
            "max_start_time": data.get("max_start_time"),
        }
        return await self.make_api_call(f"{CALENDLY_API_URL}/scheduled_events", params=params)


__all__ = ["CalendlyAdapter"]
