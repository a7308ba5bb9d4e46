"""Invoicing executors for the Fatture in Cloud API."""

from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, List, Optional

import httpx

from ..errors import StepConfigurationError
from .base import (
    ExecutorContext,
    HttpStepExecutor,
    InvoiceConnection,
    raise_for_response,
    require_setting,
    response_json,
)

logger = logging.getLogger(__name__)

DEFAULT_CURRENCY = "EUR"
DEFAULT_DESCRIPTION = "Servizio"

# Labels shown in the editor mapped to API status values.
STATUS_LABELS = {
    "Paid": "paid",
    "Pending": "not_paid",
    "Cancelled": "cancelled",
    "Pagata": "paid",
    "In sospeso": "not_paid",
    "Annullata": "cancelled",
}

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def normalize_due_date(value: str) -> Optional[str]:
    """Accept ``DD/MM/YYYY`` or ``YYYY-MM-DD`` and return ISO format."""
    value = value.strip()
    if not value:
        return None
    if "/" in value:
        parts = value.split("/")
        if len(parts) == 3 and all(part.strip() for part in parts):
            day, month, year = (part.strip() for part in parts)
            return f"{year}-{month.zfill(2)}-{day.zfill(2)}"
    if _ISO_DATE_RE.match(value):
        return value
    raise StepConfigurationError(f"Invalid due date '{value}' (use DD/MM/YYYY)")


def _unwrap_list(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict) and isinstance(payload.get("data"), list):
        return payload["data"]
    return []


def _unwrap_object(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload if isinstance(payload, dict) else {}


def client_display_name(client: Dict[str, Any]) -> str:
    full_name = " ".join(
        part for part in (client.get("firstname"), client.get("lastname")) if part
    )
    return client.get("name") or client.get("company_name") or full_name or "Cliente"


class InvoiceExecutor(HttpStepExecutor):
    @property
    def base_url(self) -> str:
        return self.config.invoice_api_url

    def api(self, connection: InvoiceConnection, **headers: str) -> httpx.AsyncClient:
        return self.client(connection.token, Accept="application/json", **headers)


class CreateInvoiceExecutor(InvoiceExecutor):
    """Issue an invoice for a client, optionally with a single due payment."""

    node_types = ("invoice-create", "fic-create-invoice")

    async def execute(self, settings: Dict[str, Any], context: ExecutorContext) -> Any:
        client_id = require_setting(settings, "clientId", "Client")
        raw_amount = require_setting(settings, "amount", "Amount")
        vat_type_id = require_setting(settings, "vatTypeId", "VAT rate")
        currency = str(settings.get("currency") or "").strip() or DEFAULT_CURRENCY
        description = str(settings.get("description") or "").strip() or DEFAULT_DESCRIPTION
        due_date = normalize_due_date(str(settings.get("dueDate") or ""))

        try:
            amount = float(raw_amount)
        except ValueError:
            amount = math.nan
        if not math.isfinite(amount) or amount <= 0:
            raise StepConfigurationError(f"Invalid amount '{raw_amount}'")

        connection = await self.credentials.get_invoice_connection(context.company_id)
        entity = connection.entity_id

        async with self.api(connection, **{"Idempotency-Key": context.dedup_key}) as api:
            vat_types = raise_for_response(
                await api.get(f"/c/{entity}/info/vat_types"), "Could not load VAT rates"
            )
            gross_amount = self._gross_amount(amount, vat_type_id, _unwrap_list(vat_types))

            payment_method = None
            if due_date:
                payment_method = await self._first_payment_method(api, entity)
                if not payment_method or not payment_method.get("id"):
                    raise StepConfigurationError("No payment method available")

            client = _unwrap_object(
                raise_for_response(
                    await api.get(f"/c/{entity}/entities/clients/{client_id}"),
                    "Could not load client",
                )
            )

            def build(payment_amount: Optional[float]) -> Dict[str, Any]:
                data: Dict[str, Any] = {
                    "type": "invoice",
                    "entity": {"id": client_id, "name": client_display_name(client)},
                    "currency": {"code": currency},
                    "language": {"code": "it", "name": "Italiano"},
                    "items_list": [
                        {
                            "name": description,
                            "qty": 1,
                            "net_price": amount,
                            "vat": {"id": vat_type_id},
                        }
                    ],
                }
                if due_date and payment_amount is not None and payment_method:
                    data["payment_method"] = {
                        "id": int(payment_method["id"]),
                        "name": payment_method.get("name"),
                        "type": payment_method.get("type"),
                    }
                    data["payments_list"] = [{"amount": payment_amount, "due_date": due_date}]
                return {"data": data}

            path = f"/c/{entity}/issued_documents"
            response = await api.post(path, json=build(gross_amount if due_date else None))
            amount_due = self._reported_amount_due(response)
            if response.is_error and due_date and amount_due is not None:
                logger.info(
                    f"Run {context.run_id}: retrying invoice with amount_due={amount_due}"
                )
                response = await api.post(path, json=build(amount_due))
            result = raise_for_response(response, "Invoice creation failed")

        invoice_id = None
        if isinstance(result, dict):
            invoice_id = _unwrap_object(result).get("id", result.get("id"))
        return {
            "entityId": entity,
            "entityName": connection.entity_name,
            "invoiceId": invoice_id,
            "dueDate": due_date,
            "raw": result,
        }

    @staticmethod
    def _gross_amount(amount: float, vat_type_id: str, vat_types: List[Dict[str, Any]]) -> float:
        match = next((vat for vat in vat_types if str(vat.get("id")) == vat_type_id), None)
        if match is None or match.get("value") is None:
            return amount
        try:
            rate = float(match["value"])
        except (TypeError, ValueError):
            return amount
        if not math.isfinite(rate):
            return amount
        return round(amount * (1 + rate / 100), 2)

    @staticmethod
    async def _first_payment_method(
        api: httpx.AsyncClient, entity: str
    ) -> Optional[Dict[str, Any]]:
        response = await api.get(f"/c/{entity}/settings/payment_methods")
        if response.is_error:
            response = await api.get(f"/c/{entity}/info/payment_methods")
        methods = _unwrap_list(raise_for_response(response, "Could not load payment methods"))
        return methods[0] if methods else None

    @staticmethod
    def _reported_amount_due(response: httpx.Response) -> Optional[float]:
        if not response.is_error:
            return None
        payload = response_json(response)
        if not isinstance(payload, dict):
            return None
        amount_due = ((payload.get("extra") or {}).get("totals") or {}).get("amount_due")
        return amount_due if isinstance(amount_due, (int, float)) else None


class UpdateInvoiceStatusExecutor(InvoiceExecutor):
    """Change the payment status of an issued invoice."""

    node_types = ("invoice-update-status", "fic-update-status")

    async def execute(self, settings: Dict[str, Any], context: ExecutorContext) -> Any:
        invoice_id = require_setting(settings, "invoiceId", "Invoice id")
        status_input = require_setting(settings, "status", "Invoice status")
        status = STATUS_LABELS.get(status_input, status_input)

        connection = await self.credentials.get_invoice_connection(context.company_id)
        async with self.api(connection) as api:
            response = await api.post(
                f"/c/{connection.entity_id}/issued_documents/{invoice_id}/status",
                json={"status": status},
            )
            result = raise_for_response(response, "Invoice status update failed")

        return {
            "entityId": connection.entity_id,
            "entityName": connection.entity_name,
            "invoiceId": invoice_id,
            "status": status,
            "raw": result,
        }
