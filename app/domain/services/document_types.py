"""
Document type registry.

Each portal document type is one case of a tagged variant: the external
document it maps to and the fields the payload must carry. The payload
builder checks a document against its case before anything is queued.
"""
from dataclasses import dataclass

_BASE_REQUIRED = ("type", "number", "date", "sourceCompany", "totalAmount", "currency")
_WITH_COUNTERPARTY = ("type", "number", "date", "sourceCompany", "counterpartyName", "totalAmount", "currency")

_GOODS_ITEM_FIELDS = ("nomenclatureName", "quantity", "unit", "price", "totalAmount", "vatPercent")
_SERVICE_ITEM_FIELDS = ("serviceName", "quantity", "unit", "price", "totalAmount", "vatPercent")


@dataclass(frozen=True)
class DocumentTypeSpec:
    portal_type: str
    external_type: str
    required_fields: tuple[str, ...]
    optional_fields: tuple[str, ...] = ()
    has_items: bool = False
    item_required_fields: tuple[str, ...] = ()
    requires_warehouse: bool = False
    requires_account: bool = False


def _goods(portal_type: str, external_type: str, optional: tuple[str, ...], *, warehouse: bool = False) -> DocumentTypeSpec:
    return DocumentTypeSpec(
        portal_type=portal_type,
        external_type=external_type,
        required_fields=_WITH_COUNTERPARTY,
        optional_fields=optional,
        has_items=True,
        item_required_fields=_GOODS_ITEM_FIELDS,
        requires_warehouse=warehouse,
    )


_CONTRACT = ("counterpartyInn", "contractId")
_CONTRACT_WAREHOUSE = ("counterpartyInn", "contractId", "warehouseId", "warehouseName")

DOCUMENT_TYPES: tuple[DocumentTypeSpec, ...] = (
    # Purchases
    _goods(
        "ReceiptGoods", "ПоступлениеТоваровУслуг",
        _CONTRACT_WAREHOUSE + ("dueDate", "vatOnTop", "vatIncluded"),
        warehouse=True,
    ),
    DocumentTypeSpec(
        portal_type="ReceiptServices",
        external_type="ПоступлениеТоваровУслуг",
        required_fields=_WITH_COUNTERPARTY,
        optional_fields=_CONTRACT + ("servicePeriod", "serviceStartDate", "serviceEndDate"),
        has_items=True,
        item_required_fields=_SERVICE_ITEM_FIELDS,
    ),
    _goods("ReceiptRights", "ПоступлениеТоваровУслуг", _CONTRACT),
    _goods("ReceiptGoodsServicesCommission", "ПоступлениеТоваровУслуг", _CONTRACT_WAREHOUSE),
    _goods("ReceiptAdditionalExpenses", "ПоступлениеДопРасходов", _CONTRACT),
    _goods("ReceiptTickets", "ПоступлениеБилетов", _CONTRACT),
    _goods("ReturnToSupplier", "ВозвратТоваровПоставщику", _CONTRACT_WAREHOUSE, warehouse=True),
    _goods("ReceiptAdjustment", "КорректировкаПоступления", _CONTRACT),
    _goods("DiscrepancyAct", "АктРасхождений", _CONTRACT_WAREHOUSE, warehouse=True),
    DocumentTypeSpec(
        portal_type="InvoiceFromSupplier",
        external_type="СчетНаОплату",
        required_fields=_WITH_COUNTERPARTY,
        optional_fields=_CONTRACT + ("dueDate",),
    ),
    _goods("ReceivedInvoice", "СчетФактураПолученный", _CONTRACT),

    # Sales
    _goods("SaleGoods", "РеализацияТоваровУслуг", _CONTRACT_WAREHOUSE, warehouse=True),
    DocumentTypeSpec(
        portal_type="SaleServices",
        external_type="РеализацияТоваровУслуг",
        required_fields=_WITH_COUNTERPARTY,
        optional_fields=_CONTRACT,
        has_items=True,
        item_required_fields=_SERVICE_ITEM_FIELDS,
    ),
    _goods("SaleRights", "РеализацияТоваровУслуг", _CONTRACT),
    _goods("ReturnFromBuyer", "ВозвратТоваровОтПокупателя", _CONTRACT_WAREHOUSE, warehouse=True),
    _goods("SaleAdjustment", "КорректировкаРеализации", _CONTRACT),
    DocumentTypeSpec(
        portal_type="InvoiceToBuyer",
        external_type="СчетНаОплату",
        required_fields=_WITH_COUNTERPARTY,
        optional_fields=_CONTRACT + ("dueDate",),
    ),
    _goods("IssuedInvoice", "СчетФактураВыданный", _CONTRACT),

    # Bank and cash
    DocumentTypeSpec(
        portal_type="BankStatement",
        external_type="ВыпискаБанка",
        required_fields=_BASE_REQUIRED,
        optional_fields=("accountId", "accountName", "counterpartyName", "counterpartyInn"),
        requires_account=True,
    ),
    DocumentTypeSpec(
        portal_type="PaymentOrderOutgoing",
        external_type="ПлатежноеПоручениеИсходящее",
        required_fields=_WITH_COUNTERPARTY,
        optional_fields=_CONTRACT + ("accountId", "accountName", "purpose"),
        requires_account=True,
    ),
    DocumentTypeSpec(
        portal_type="PaymentOrderIncoming",
        external_type="ПлатежноеПоручениеВходящее",
        required_fields=_WITH_COUNTERPARTY,
        optional_fields=_CONTRACT + ("accountId", "accountName", "purpose"),
        requires_account=True,
    ),
    DocumentTypeSpec(
        portal_type="CashReceiptOrder",
        external_type="ПриходныйКассовыйОрдер",
        required_fields=_BASE_REQUIRED,
        optional_fields=("counterpartyName", "counterpartyInn", "purpose"),
    ),
    DocumentTypeSpec(
        portal_type="CashExpenseOrder",
        external_type="РасходныйКассовыйОрдер",
        required_fields=_BASE_REQUIRED,
        optional_fields=("counterpartyName", "counterpartyInn", "purpose"),
    ),

    # Stock
    DocumentTypeSpec(
        portal_type="GoodsTransfer",
        external_type="ПеремещениеТоваров",
        required_fields=_BASE_REQUIRED,
        optional_fields=("warehouseIdFrom", "warehouseNameFrom", "warehouseIdTo", "warehouseNameTo"),
        has_items=True,
        item_required_fields=_GOODS_ITEM_FIELDS,
        requires_warehouse=True,
    ),
    DocumentTypeSpec(
        portal_type="GoodsWriteOff",
        external_type="СписаниеТоваров",
        required_fields=_BASE_REQUIRED,
        optional_fields=("counterpartyName", "warehouseId", "warehouseName"),
        has_items=True,
        item_required_fields=_GOODS_ITEM_FIELDS,
        requires_warehouse=True,
    ),
    DocumentTypeSpec(
        portal_type="GoodsReceipt",
        external_type="ОприходованиеТоваров",
        required_fields=_BASE_REQUIRED,
        optional_fields=("counterpartyName", "counterpartyInn", "warehouseId", "warehouseName"),
        has_items=True,
        item_required_fields=_GOODS_ITEM_FIELDS,
        requires_warehouse=True,
    ),
    DocumentTypeSpec(
        portal_type="Inventory",
        external_type="ИнвентаризацияТоваров",
        required_fields=_BASE_REQUIRED,
        optional_fields=("warehouseId", "warehouseName"),
        has_items=True,
        item_required_fields=_GOODS_ITEM_FIELDS,
        requires_warehouse=True,
    ),

    # Commission
    _goods("TransferToConsignor", "ПередачаТоваровКомитенту", _CONTRACT_WAREHOUSE, warehouse=True),
    _goods("ConsignorReport", "ОтчетКомитенту", _CONTRACT),

    # Other
    DocumentTypeSpec(
        portal_type="PowerOfAttorney",
        external_type="Доверенность",
        required_fields=("type", "number", "date", "sourceCompany", "counterpartyName"),
        optional_fields=_CONTRACT + ("dueDate",),
    ),
    DocumentTypeSpec(
        portal_type="AdvanceReport",
        external_type="АвансовыйОтчет",
        required_fields=_BASE_REQUIRED,
        optional_fields=("counterpartyName", "counterpartyInn", "purpose"),
        has_items=True,
        item_required_fields=_GOODS_ITEM_FIELDS,
    ),
)

_BY_PORTAL_TYPE = {spec.portal_type: spec for spec in DOCUMENT_TYPES}


def get_document_type(portal_type: str) -> DocumentTypeSpec | None:
    return _BY_PORTAL_TYPE.get(portal_type)


def is_supported_document_type(portal_type: str) -> bool:
    return portal_type in _BY_PORTAL_TYPE
