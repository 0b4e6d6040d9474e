from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from faktury.models.invoice import DraftInvoice
from faktury.utils.formatters import format_amount

# Created invoices stay open (to be sent); nothing is issued automatically.
OPEN_STATUS = "open"


def _number(value: Decimal) -> int | float:
    """JSON number for a rate: integral rates as int (21), others as float (10.5)."""
    if value == value.to_integral_value():
        return int(value)
    return float(value)


def to_submission_payload(
    invoice: DraftInvoice,
    subject_id: int,
    language: str = "cz",
    issued_on: date | None = None,
) -> dict[str, Any]:
    """Map a draft invoice to the Fakturoid v3 invoice-create body.

    Edited names, prices and VAT rates take precedence over computed ones.
    *issued_on* replaces the draft's issue date when the draft is submitted later.
    """
    return {
        "subject_id": subject_id,
        "issued_on": (issued_on or invoice.issued_on).isoformat(),
        "taxable_fulfillment_due": invoice.taxable_fulfillment_due.isoformat(),
        "due": invoice.due_in_days,
        "currency": invoice.currency,
        "language": language,
        "status": OPEN_STATUS,
        "lines": [
            {
                "name": line.effective_name,
                "quantity": str(line.quantity),
                "unit_name": line.unit_name,
                "unit_price": format_amount(line.effective_price),
                "vat_rate": _number(line.effective_vat_rate),
            }
            for line in invoice.lines
        ],
    }
