"""
Stripe adapter.

Stripe's API takes form-encoded bodies with bracketed keys for nested
values (``metadata[source]=crm``, ``line_items[0][quantity]=1``);
`encode_form` produces them. Amounts are given in major units by
callers and sent in minor units (cents).
"""

from __future__ import annotations

from typing import Any

from crmflow.keys import ServiceKey
from crmflow.pipeline.retry import OperationType

from .base import PermanentAPIError, ServiceAdapter

STRIPE_API_URL = "https://api.stripe.com/v1"
SOURCE_TAG = "crmflow_crm"


def encode_form(data: Any, prefix: str = "") -> list[tuple[str, str]]:
    """
    Flatten nested dicts and lists into Stripe's bracketed form pairs.

    Example:
        >>> encode_form({"metadata": {"a": 1}, "items": [{"q": 2}]})
        [('metadata[a]', '1'), ('items[0][q]', '2')]
    """
    pairs: list[tuple[str, str]] = []
    if isinstance(data, dict):
        items = data.items()
    elif isinstance(data, (list, tuple)):
        items = enumerate(data)
    else:
        if data is None:
            return pairs
        if isinstance(data, bool):
            data = "true" if data else "false"
        return [(prefix, str(data))]

    for key, value in items:
        name = f"{prefix}[{key}]" if prefix else str(key)
        pairs.extend(encode_form(value, name))
    return pairs


def to_minor_units(amount: float | int) -> int:
    return int(round(float(amount) * 100))


class StripeAdapter(ServiceAdapter):
    """Payment links, invoices, payment intents and customers."""

    service_key = ServiceKey.STRIPE.value
    actions = {
        "create_payment_link": OperationType.CREATE,
        "create_invoice": OperationType.CREATE,
        "process_payment": OperationType.WRITE,
        "create_customer": OperationType.CREATE,
    }

    def _secret_key(self) -> str | None:
        return self.config.secret("secret_key") if self.config else None

    def is_configured(self) -> bool:
        return bool(self._secret_key())

    def _auth_headers(self) -> dict[str, str]:
        key = self._secret_key()
        return {"Authorization": f"Bearer {key}"} if key else {}

    def status_details(self) -> dict[str, Any]:
        key = self._secret_key()
        return {"test_mode": bool(key and key.startswith("sk_test_"))}

    async def probe(self) -> dict[str, Any] | None:
        balance = await self.make_api_call(f"{STRIPE_API_URL}/balance")
        return {"livemode": balance.get("livemode")} if isinstance(balance, dict) else None

    async def _post(self, path: str, payload: dict[str, Any] | None = None) -> Any:
        return await self.make_api_call(
            f"{STRIPE_API_URL}/{path}", "POST", form=encode_form(payload or {})
        )

    # -------------------------------------------------------------------------
    # Actions
    # -------------------------------------------------------------------------

    async def create_payment_link(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        if data.get("amount") is None:
            raise PermanentAPIError("amount is required", self.service_key)

        payload = {
            "line_items": [
                {
                    "price_data": {
                        "currency": data.get("currency") or "usd",
                        "product_data": {
                            "name": data.get("product_name"),
                            "description": data.get("description"),
                        },
                        "unit_amount": to_minor_units(data["amount"]),
                    },
                    "quantity": data.get("quantity") or 1,
                }
            ],
            "metadata": {**data.get("metadata", {}), "source": SOURCE_TAG},
        }
        return await self._post("payment_links", payload)

    async def create_customer(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        payload = {
            "email": data.get("email"),
            "name": data.get("name"),
            "metadata": {"crm_customer_id": data.get("crm_customer_id"), "source": SOURCE_TAG},
        }
        return await self._post("customers", payload)

    async def create_invoice(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        """
        Create, fill and finalize an invoice.

        A customer is created first when no ``customer_id`` is given.
        """
        customer_id = data.get("customer_id")
        if not customer_id:
            customer = await self.create_customer(
                {"email": data.get("customer_email"), "name": data.get("customer_name")}, metadata
            )
            customer_id = customer["id"]

        invoice = await self._post(
            "invoices",
            {
                "customer": customer_id,
                "metadata": {"crm_invoice_id": data.get("crm_invoice_id"), "source": SOURCE_TAG},
            },
        )

        for item in data.get("line_items", []):
            await self._post(
                "invoiceitems",
                {
                    "customer": item.get("customer_id") or customer_id,
                    "invoice": invoice["id"],
                    "amount": to_minor_units(item["amount"]),
                    "currency": item.get("currency") or "usd",
                    "description": item.get("description"),
                },
            )

        return await self._post(f"invoices/{invoice['id']}/finalize")

    async def process_payment(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        if data.get("amount") is None:
            raise PermanentAPIError("amount is required", self.service_key)

        payload = {
            "amount": to_minor_units(data["amount"]),
            "currency": data.get("currency") or "usd",
            "customer": data.get("customer_id"),
            "metadata": {**data.get("metadata", {}), "source": SOURCE_TAG},
        }
        return await self._post("payment_intents", payload)


__all__ = ["StripeAdapter", "encode_form", "to_minor_units"]
