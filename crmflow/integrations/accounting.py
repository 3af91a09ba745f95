"""
Accounting adapter for Xero and QuickBooks.

Both providers expose the same four actions; only URLs, headers and
payload shapes differ. Xero addresses an organisation with the
``Xero-tenant-id`` header, QuickBooks puts the company id in the path.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from crmflow.keys import ServiceKey
from crmflow.pipeline.retry import OperationType

from .base import ConfigurationError, PermanentAPIError, ProviderAdapter

logger = logging.getLogger(__name__)

XERO = ServiceKey.XERO.value
QUICKBOOKS = ServiceKey.QUICKBOOKS.value

_ACTIONS = {
    "sync_invoice": OperationType.CREATE,
    "create_contact": OperationType.CREATE,
    "get_invoices": OperationType.READ,
    "update_payment_status": OperationType.UPDATE,
}


def _today() -> str:
    return datetime.now(UTC).date().isoformat()


def _drop_none(values: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


class AccountingAdapter(ProviderAdapter):
    """
    Invoices, contacts and payments in Xero or QuickBooks.

    Example:
        xero = AccountingAdapter("xero")
        xero.configure(IntegrationConfig(service_name="xero", access_token="...", tenant_id="t1"))
        await xero.execute_action("create_contact", {"name": "Ada", "email": "ada@example.com"})
    """

    base_urls = {
        XERO: "https://api.xero.com/api.xro/2.0",
        QUICKBOOKS: "https://sandbox-quickbooks.api.intuit.com/v3/company",
    }
    provider_actions = {XERO: _ACTIONS, QUICKBOOKS: _ACTIONS}

    @property
    def _org_setting(self) -> str:
        return "tenant_id" if self.provider == XERO else "company_id"

    def is_configured(self) -> bool:
        return bool(
            self.config
            and self.config.secret("access_token")
            and self.config.setting(self._org_setting)
        )

    def _auth_headers(self) -> dict[str, str]:
        token = self.config.secret("access_token") if self.config else None
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if self.provider == XERO and self.config and self.config.setting("tenant_id"):
            headers["Xero-tenant-id"] = str(self.config.setting("tenant_id"))
        return headers

    def _url(self, path: str) -> str:
        if self.provider == XERO:
            return f"{self.base_url}/{path}"
        company_id = self.require("company_id", "QuickBooks company ID")
        return f"{self.base_url}/{company_id}/{path}"

    async def _query(self, statement: str) -> Any:
        return await self.make_api_call(self._url("query"), params={"query": statement})

    async def probe(self) -> dict[str, Any] | None:
        if self.provider == XERO:
            await self.make_api_call(self._url("Organisation"))
        else:
            await self.make_api_call(self._url(f"companyinfo/{self.config.setting('company_id')}"))
        return None

    # -------------------------------------------------------------------------
    # Contacts
    # -------------------------------------------------------------------------

    async def create_contact(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        address = data.get("address")
        if self.provider == XERO:
            contact = {
                "Name": data.get("name"),
                "EmailAddress": data.get("email"),
                "Phones": (
                    [{"PhoneType": "DEFAULT", "PhoneNumber": data["phone"]}]
                    if data.get("phone")
                    else []
                ),
                "Addresses": (
                    [
                        {
                            "AddressType": "STREET",
                            "AddressLine1": address.get("line1"),
                            "City": address.get("city"),
                            "PostalCode": address.get("postal_code"),
                            "Country": address.get("country"),
                        }
                    ]
                    if address
                    else []
                ),
            }
            return await self.make_api_call(
                self._url("Contacts"), "POST", json={"Contacts": [contact]}
            )

        customer = _drop_none(
            {
                "DisplayName": data.get("name"),
                "PrimaryEmailAddr": {"Address": data["email"]} if data.get("email") else None,
                "PrimaryPhone": {"FreeFormNumber": data["phone"]} if data.get("phone") else None,
                "BillAddr": (
                    {
                        "Line1": address.get("line1"),
                        "City": address.get("city"),
                        "PostalCode": address.get("postal_code"),
                        "Country": address.get("country"),
                    }
                    if address
                    else None
                ),
            }
        )
        return await self.make_api_call(self._url("customer"), "POST", json=customer)

    async def _find_or_create_contact(self, customer: dict[str, Any]) -> str:
        """Look a contact up by email, creating it when absent."""
        email = customer.get("email")
        if email:
            try:
                if self.provider == XERO:
                    found = await self.make_api_call(
                        self._url("Contacts"), params={"where": f'EmailAddress=="{email}"'}
                    )
                    contacts = found.get("Contacts") or []
                    if contacts:
                        return contacts[0]["ContactID"]
                else:
                    found = await self._query(
                        f"SELECT * FROM Customer WHERE PrimaryEmailAddr = '{email}'"
                    )
                    matches = (found.get("QueryResponse") or {}).get("Customer") or []
                    if matches:
                        return matches[0]["Id"]
            except PermanentAPIError as e:
                logger.debug(f"[{self.provider}] contact lookup for {email} failed: {e}")

        created = await self.create_contact(customer, {})
        if self.provider == XERO:
            return created["Contacts"][0]["ContactID"]
        return created["Customer"]["Id"]

    # -------------------------------------------------------------------------
    # Invoices
    # -------------------------------------------------------------------------

    async def sync_invoice(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        line_items = data.get("line_items") or []
        if not line_items:
            raise PermanentAPIError("line_items must not be empty", self.service_key)

        if self.provider == XERO:
            contact_id = data.get("contact_id") or await self._find_or_create_contact(
                data.get("customer") or {}
            )
            invoice = _drop_none(
                {
                    "Type": "ACCREC",
                    "Contact": {"ContactID": contact_id},
                    "Date": data.get("date") or _today(),
                    "DueDate": data.get("due_date"),
                    "InvoiceNumber": data.get("invoice_number"),
                    "Reference": data.get("reference") or f"CRM-{data.get('crm_invoice_id')}",
                    "LineItems": [
                        {
                            "Description": item.get("description"),
                            "Quantity": item.get("quantity") or 1,
                            "UnitAmount": item.get("unit_amount"),
                            "TaxType": item.get("tax_type") or "NONE",
                            "AccountCode": item.get("account_code") or "200",
                        }
                        for item in line_items
                    ],
                    "Status": data.get("status") or "DRAFT",
                }
            )
            return await self.make_api_call(
                self._url("Invoices"), "POST", json={"Invoices": [invoice]}
            )

        customer_id = data.get("customer_id") or await self._find_or_create_contact(
            data.get("customer") or {}
        )
        invoice = _drop_none(
            {
                "DocNumber": data.get("invoice_number"),
                "CustomerRef": {"value": customer_id},
                "TxnDate": data.get("date") or _today(),
                "DueDate": data.get("due_date"),
                "Line": [
                    {
                        "Id": str(index),
                        "Amount": (item.get("quantity") or 1) * item.get("unit_amount", 0),
                        "DetailType": "SalesItemLineDetail",
                        "SalesItemLineDetail": {
                            "ItemRef": {"value": item.get("item_id") or "1"},
                            "Qty": item.get("quantity") or 1,
                            "UnitPrice": item.get("unit_amount"),
                        },
                    }
                    for index, item in enumerate(line_items, start=1)
                ],
            }
        )
        return await self.make_api_call(self._url("invoice"), "POST", json=invoice)

    async def get_invoices(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        if self.provider == XERO:
            return await self.make_api_call(
                self._url("Invoices"), params={"Statuses": data.get("status")}
            )
        return await self._query("SELECT * FROM Invoice")

    async def update_payment_status(self, data: dict[str, Any], metadata: dict[str, Any]) -> Any:
        """
        Record a payment against an invoice.

        Xero needs the paying bank account code; QuickBooks links the
        payment to the invoice through ``LinkedTxn``.
        """
        invoice_id = data.get("invoice_id")
        amount = data.get("amount")
        if not invoice_id or amount is None:
            raise PermanentAPIError("invoice_id and amount are required", self.service_key)

        if self.provider == XERO:
            account_code = data.get("account_code") or (
                self.config.setting("payment_account_code") if self.config else None
            )
            if not account_code:
                raise ConfigurationError("Payment account code not configured", self.service_key)
            payment = {
                "Invoice": {"InvoiceID": invoice_id},
                "Account": {"Code": account_code},
                "Date": data.get("date") or _today(),
                "Amount": amount,
            }
            return await self.make_api_call(
                self._url("Payments"), "PUT", json={"Payments": [payment]}
            )

        customer_id = data.get("customer_id")
        if not customer_id:
            raise PermanentAPIError("customer_id is required for QuickBooks", self.service_key)
        payment = {
            "CustomerRef": {"value": customer_id},
            "TotalAmt": amount,
            "Line": [
                {"Amount": amount, "LinkedTxn": [{"TxnId": invoice_id, "TxnType": "Invoice"}]}
            ],
        }
        return await self.make_api_call(self._url("payment"), "POST", json=payment)


__all__ = ["AccountingAdapter"]
