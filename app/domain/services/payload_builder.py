"""
Payload Builder - canonical wire shape of a document for the external system.

Takes a document row, the organization name and the frozen version data,
enriches it with reference names, and checks it against the document's type
case from the registry. Anything the external system would reject for a
structural reason is rejected here, before a queue item exists.
"""
import time
from datetime import date, datetime
from decimal import Decimal
from typing import Any

from app.core.exceptions import PayloadValidationError, UnknownDocumentTypeError
from app.db.models.document import Document
from app.domain.services.document_types import DocumentTypeSpec, get_document_type
from app.domain.services.reference_lookup import ReferenceLookup

DEFAULT_CURRENCY = "RUB"
DEFAULT_UNIT = "шт"

# Copied from version data when present, in addition to the type's optional fields
PASSTHROUGH_FIELDS = (
    "contractId",
    "dueDate",
    "vatOnTop",
    "vatIncluded",
    "purpose",
    "servicePeriod",
    "serviceStartDate",
    "serviceEndDate",
    "warehouseIdFrom",
    "warehouseNameFrom",
    "warehouseIdTo",
    "warehouseNameTo",
)

_WAREHOUSE_KEYS = ("warehouseId", "warehouse", "warehouseIdFrom", "warehouseIdTo")
_ACCOUNT_KEYS = ("accountId", "paymentAccountId")


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    try:
        return float(str(value).replace(",", ".").strip())
    except ValueError:
        return None


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _format_date(value: date | datetime | str) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)[:10]


_last_token_ms = 0


def new_freshness_token() -> str:
    """Epoch milliseconds, strictly increasing within the process"""
    global _last_token_ms
    _last_token_ms = max(int(time.time() * 1000), _last_token_ms + 1)
    return str(_last_token_ms)


def build_idempotency_key(document_id: int, version: int, freshness_token: str) -> str:
    return f"{document_id}-v{version}-{freshness_token}"


def normalize_item(row: dict[str, Any], row_number: int) -> dict[str, Any]:
    """Table row in the external format, whatever key spelling the form used"""
    service_name = _first(row, "serviceName", "service")
    quantity = _number(row.get("quantity"))
    if quantity is None:
        quantity = _number(row.get("amount"))
    price = _number(row.get("price"))
    total = _number(row.get("totalAmount"))
    if total is None:
        total = _number(row.get("amount"))
    if total is None and price is not None and quantity is not None:
        total = round(price * quantity, 2)
    explicit_row = _number(row.get("rowNumber"))

    item: dict[str, Any] = {
        "nomenclatureName": _first(row, "nomenclatureName") or service_name,
        "quantity": quantity,
        "unit": _first(row, "unit") or DEFAULT_UNIT,
        "price": price,
        "totalAmount": total,
        "rowNumber": int(explicit_row) if explicit_row is not None else row_number,
    }
    if service_name is not None:
        item["serviceName"] = service_name
    for key in ("amount", "vatPercent", "vatAmount"):
        value = _number(row.get(key))
        if value is not None:
            item[key] = value
    return item


class PayloadBuilder:
    """Builds and validates the outbound payload of one document version"""

    def __init__(self, lookup: ReferenceLookup):
        self.lookup = lookup

    async def build(
        self,
        document: Document,
        organization_name: str | None,
        version_data: dict[str, Any] | None,
        freshness_token: str | None = None,
    ) -> dict[str, Any]:
        spec = get_document_type(document.type)
        if spec is None:
            raise UnknownDocumentTypeError(document.type, document.id)

        data = dict(version_data or {})
        version = document.current_version or 1
        token = freshness_token or new_freshness_token()

        total = _number(_first(data, "totalAmount", "amount"))
        if total is None:
            total = _number(document.amount) or 0.0

        payload: dict[str, Any] = {
            "portalDocId": document.id,
            "portalVersion": version,
            "idempotencyKey": build_idempotency_key(document.id, version, token),
            "type": document.type,
            "externalType": spec.external_type,
            "number": document.number,
            "date": _format_date(document.date),
            "sourceCompany": organization_name or "",
            "amount": total,
            "totalAmount": total,
            "currency": document.currency or data.get("currency") or DEFAULT_CURRENCY,
        }

        if document.counterparty_name:
            payload["counterpartyName"] = document.counterparty_name
        if document.counterparty_inn:
            payload["counterpartyInn"] = document.counterparty_inn

        await self._enrich(payload, data)

        for key in PASSTHROUGH_FIELDS + spec.optional_fields:
            if key in data and data[key] is not None and key not in payload:
                payload[key] = data[key]

        if spec.has_items:
            raw_items = data.get("items") or data.get("goods") or []
            payload["items"] = [
                normalize_item(row, idx) for idx, row in enumerate(raw_items, start=1)
            ]

        missing = self._missing_fields(spec, payload, data)
        if missing:
            raise PayloadValidationError(spec.portal_type, missing, document.id)

        return payload

    async def _enrich(self, payload: dict[str, Any], data: dict[str, Any]) -> None:
        warehouse = await self.lookup.warehouse(_first(data, "warehouseId", "warehouse"))
        if warehouse:
            if warehouse.name:
                payload["warehouseName"] = warehouse.name
            if warehouse.code:
                payload["warehouseCode"] = warehouse.code

        account = await self.lookup.account(_first(data, *_ACCOUNT_KEYS))
        if account:
            if account.name:
                payload["accountName"] = account.name
            if account.code:
                payload["accountCode"] = account.code

        contract = await self.lookup.contract(data.get("contractId"))
        if contract:
            if contract.name:
                payload["contractName"] = contract.name
            if contract.code:
                payload["contractCode"] = contract.code

    @staticmethod
    def _missing_fields(
        spec: DocumentTypeSpec, payload: dict[str, Any], data: dict[str, Any]
    ) -> list[str]:
        missing = [f for f in spec.required_fields if _is_missing(payload.get(f))]

        if spec.requires_warehouse and _first(data, *_WAREHOUSE_KEYS) is None:
            missing.append("warehouseId")
        if spec.requires_account and _first(data, *_ACCOUNT_KEYS) is None:
            missing.append("accountId")

        for item in payload.get("items", ()):
            for field in spec.item_required_fields:
                if _is_missing(item.get(field)):
                    missing.append(f"items[{item['rowNumber']}].{field}")
        return missing
