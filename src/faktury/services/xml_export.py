from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal

from lxml import etree

from faktury.config import EXPORT_NS
from faktury.models.invoice import DraftInvoice
from faktury.services.exceptions import MalformedInputError
from faktury.utils.formatters import format_amount

NSMAP = {None: EXPORT_NS}
CONTENT_TYPE = "application/xml"

# characters XML 1.0 cannot carry at all (stray control codes from spreadsheets)
_XML_INVALID = re.compile("[^\x09\x0a\x0d\x20-\ud7ff\ue000-\ufffd\U00010000-\U0010ffff]")


@dataclass(frozen=True)
class ExportOptions:
    due_in_days: int | None = None  # None keeps each invoice's own due days
    export_date: date | None = None  # None = today


@dataclass(frozen=True)
class ExportDocument:
    content: bytes
    filename: str
    content_type: str = CONTENT_TYPE

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")


def invoice_number(export_date: date, position: int) -> str:
    """FAK + YYYYMMDD + 3-digit 1-based position, unique within one export."""
    return f"FAK{export_date:%Y%m%d}{position:03d}"


def variable_symbol(export_date: date, position: int) -> str:
    """YYMMDD + 3-digit position: 9 digits, inside the 10-digit payment symbol limit."""
    return f"{export_date:%y%m%d}{position:03d}"


def _sub(parent: etree._Element, tag: str, text: str | None = None) -> etree._Element:
    el = etree.SubElement(parent, tag)
    if text is not None:
        el.text = _XML_INVALID.sub("", text)
    return el


def _build_invoice(
    parent: etree._Element,
    invoice: DraftInvoice,
    position: int,
    export_date: date,
    due_in_days: int,
) -> None:
    inv = _sub(parent, "Invoice")
    _sub(inv, "InvoiceNumber", invoice_number(export_date, position))
    _sub(inv, "VariableSymbol", variable_symbol(export_date, position))
    _sub(inv, "IssuedDate", export_date.isoformat())
    _sub(inv, "TaxableFulfillmentDate", invoice.taxable_fulfillment_due.isoformat())
    _sub(inv, "DueDate", (export_date + timedelta(days=due_in_days)).isoformat())
    _sub(inv, "Currency", invoice.currency)

    client = _sub(inv, "Client")
    if invoice.tax_id:
        _sub(client, "ICO", invoice.tax_id)
    _sub(client, "Name", invoice.client_name or "")
    _sub(client, "Country", invoice.country or "")

    # totals are re-derived here from the lines, never taken from the draft
    total = Decimal("0")
    total_vat = Decimal("0")
    items = _sub(inv, "Items")
    for line in invoice.lines:
        price = line.effective_price
        vat = line.vat_amount
        total += price
        total_vat += vat

        item = _sub(items, "Item")
        _sub(item, "Name", line.effective_name)
        _sub(item, "Quantity", str(line.quantity))
        _sub(item, "UnitPrice", format_amount(price))
        _sub(item, "VATRate", format_amount(line.effective_vat_rate))
        _sub(item, "VATAmount", format_amount(vat))
        _sub(item, "TotalWithVAT", format_amount(price + vat))

    totals = _sub(inv, "Totals")
    _sub(totals, "TotalWithoutVAT", format_amount(total))
    _sub(totals, "TotalVAT", format_amount(total_vat))
    _sub(totals, "TotalWithVAT", format_amount(total + total_vat))


def build_export_tree(
    invoices: Sequence[DraftInvoice], options: ExportOptions | None = None
) -> etree._Element:
    """Build the <Invoices> document element for *invoices* in list order."""
    if not invoices:
        raise MalformedInputError("Žádné faktury k exportu")
    options = options or ExportOptions()
    export_date = options.export_date or date.today()

    root = etree.Element("Invoices", nsmap=NSMAP)  # type: ignore[arg-type]  # lxml stubs don't model None key for default ns
    root.set("version", "1.0")
    root.set("exportDate", export_date.isoformat())

    for position, invoice in enumerate(invoices, start=1):
        due = options.due_in_days if options.due_in_days is not None else invoice.due_in_days
        _build_invoice(root, invoice, position, export_date, due)
    return root


def to_export_document(
    invoices: Sequence[DraftInvoice], options: ExportOptions | None = None
) -> ExportDocument:
    """Render *invoices* as a downloadable XML document.

    Text nodes are escaped by the serializer, so ledger data containing
    markup characters cannot break the document.
    """
    options = options or ExportOptions()
    export_date = options.export_date or date.today()
    root = build_export_tree(invoices, ExportOptions(options.due_in_days, export_date))
    content = etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True)
    return ExportDocument(content=content, filename=f"faktury-{export_date.isoformat()}.xml")
