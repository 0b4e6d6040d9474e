from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal

from faktury.models.invoice import DraftInvoice, DraftLine, InvoiceGroup, LineOverride
from faktury.models.ledger import LedgerRecord
from faktury.services.country_defaults import defaults_for
from faktury.services.grouping import GroupingPolicy, group_by_key
from faktury.utils.formatters import format_period

logger = logging.getLogger(__name__)

DEFAULT_LINE_NAME = "Licence"


def _today() -> date:
    return date.today()


@dataclass(frozen=True)
class InvoiceOptions:
    include_period_in_name: bool = True
    vat_rate: Decimal | None = None  # None = country default
    due_in_days: int = 14
    currency: str | None = None  # None = country default
    default_line_name: str = DEFAULT_LINE_NAME
    unit_name: str = "ks"
    # group key -> line index -> edits
    line_overrides: Mapping[str, Mapping[int, LineOverride]] = field(default_factory=dict)


def line_name(record: LedgerRecord, options: InvoiceOptions) -> str:
    name = record.service or options.default_line_name
    if options.include_period_in_name:
        period = format_period(record.activation_date, record.period_end_date)
        if period:
            name = f"{name} ({period})"
    return name


def build_line(record: LedgerRecord, group_rate: Decimal, options: InvoiceOptions) -> DraftLine:
    return DraftLine(
        name=line_name(record, options),
        unit_price=record.billable_amount,
        vat_rate=group_rate if record.vat_liable else Decimal("0"),
        unit_name=options.unit_name,
    )


def apply_overrides(draft: DraftInvoice, overrides: Mapping[int, LineOverride]) -> DraftInvoice:
    """Apply per-line user edits; indexes outside the invoice are ignored with a warning."""
    lines = list(draft.lines)
    for index, override in overrides.items():
        if not 0 <= index < len(lines):
            logger.warning("Override for missing line %d of %s ignored", index, draft.group_key)
            continue
        lines[index] = lines[index].with_edits(override)
    return replace(draft, lines=tuple(lines))


def assemble(group: InvoiceGroup, options: InvoiceOptions | None = None) -> DraftInvoice:
    """Turn an invoice group into a draft invoice.

    Currency and VAT rate default from the group's country unless *options*
    override them; rows that are not VAT-liable always get rate 0. DUZP is
    the first row's activation date, falling back to the issue date.
    """
    if not group.records:
        raise ValueError(f"Invoice group {group.key!r} has no records")
    options = options or InvoiceOptions()

    country = defaults_for(group.country)
    rate = Decimal(options.vat_rate) if options.vat_rate is not None else country.vat_rate
    issued_on = _today()
    first = group.records[0]

    draft = DraftInvoice(
        group_key=group.key,
        tax_id=group.tax_id,
        client_name=group.client_name,
        country=group.country,
        currency=options.currency or country.currency,
        issued_on=issued_on,
        taxable_fulfillment_due=first.activation_date or issued_on,
        due_in_days=options.due_in_days,
        lines=tuple(build_line(r, rate, options) for r in group.records),
    )

    overrides = options.line_overrides.get(group.key)
    if overrides:
        draft = apply_overrides(draft, overrides)
    return draft


def build_preview(
    records: Iterable[LedgerRecord],
    options: InvoiceOptions | None = None,
    policy: GroupingPolicy = GroupingPolicy.INCLUSIVE,
    *,
    selected_only: bool = False,
) -> list[DraftInvoice]:
    """Group *records* and assemble one draft per group, in group order. No remote calls."""
    groups = group_by_key(records, policy, selected_only=selected_only)
    return [assemble(group, options) for group in groups]


def totals_by_currency(drafts: Iterable[DraftInvoice]) -> dict[str, Decimal]:
    """Total without VAT per currency, in first-seen currency order."""
    totals: dict[str, Decimal] = {}
    for draft in drafts:
        totals[draft.currency] = totals.get(draft.currency, Decimal("0")) + draft.total_without_vat
    return totals
