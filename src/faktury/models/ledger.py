from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum


class InvoicedState(str, Enum):
    """Value of the "Vyfakturováno" column."""

    NO = "no"
    PARTIAL = "partial"
    YES = "yes"


@dataclass
class LedgerRecord:
    """One client/license row of the ledger after normalization.

    Fields are set once at import; only ``selected`` is meant to change
    afterwards, to choose which rows take part in grouping.
    """

    row_id: int
    tax_id: str | None
    client_name: str | None
    billable_amount: Decimal
    original_id: str | None = None
    municipality_code: str | None = None
    district: str | None = None
    region: str | None = None
    country: str | None = None
    population: str | None = None
    client_type: str | None = None
    consultant: str | None = None
    activity_type: str | None = None
    service: str | None = None
    billing_interval: str | None = None
    commitment_years: str | None = None
    ordered_amount: Decimal = Decimal("0")
    activation_date: date | None = None
    period_end_date: date | None = None
    termination_date: date | None = None
    license_start_month: str | None = None
    invoice_month: date | None = None
    invoiced: InvoicedState = InvoicedState.NO
    vat_liable: bool = False
    note: str | None = None
    continuation_result: str | None = None
    auto_renewal: str | None = None
    can_invoice: bool = False
    selected: bool = False
