"""Ledger workbook ingestion: workbook -> worksheet -> LedgerRecords."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from io import BytesIO
from pathlib import Path
from typing import Any

import pandas as pd

from faktury.config import DEFAULT_SHEET_NAME
from faktury.models.ledger import LedgerRecord
from faktury.services.billability import BillabilityPolicy, can_invoice
from faktury.services.exceptions import MalformedInputError
from faktury.services.field_resolver import HeaderAmbiguity, resolve_columns
from faktury.utils.normalizers import (
    clean_text,
    is_blank,
    normalize_tax_id,
    parse_amount,
    parse_date,
    parse_invoiced_state,
    parse_yes_no,
)

logger = logging.getLogger(__name__)

_TEXT_FIELDS = (
    "original_id",
    "client_name",
    "municipality_code",
    "district",
    "region",
    "population",
    "client_type",
    "consultant",
    "activity_type",
    "service",
    "billing_interval",
    "commitment_years",
    "license_start_month",
    "note",
    "continuation_result",
    "auto_renewal",
)
_DATE_FIELDS = ("activation_date", "period_end_date", "termination_date", "invoice_month")


@dataclass
class LedgerImport:
    records: list[LedgerRecord]
    sheets: list[str] = field(default_factory=list)
    sheet_name: str | None = None

    @property
    def billable_count(self) -> int:
        return sum(1 for r in self.records if r.can_invoice)


def ensure_bytes(source: BytesIO | Path | str | bytes) -> bytes:
    if isinstance(source, bytes):
        return source
    if isinstance(source, BytesIO):
        return source.getvalue()
    if isinstance(source, (str, Path)):
        return Path(source).read_bytes()
    raise TypeError(f"Unsupported source type: {type(source)!r}")


def pick_sheet(sheets: list[str], preferred: str) -> str:
    """Return *preferred* (exact, then case-insensitive) or the first sheet."""
    if not sheets:
        raise MalformedInputError("Sešit neobsahuje žádný list")
    if preferred in sheets:
        return preferred
    lower_map = {name.lower(): name for name in sheets}
    if preferred.lower() in lower_map:
        return lower_map[preferred.lower()]
    logger.info("Sheet %r not found, using %r", preferred, sheets[0])
    return sheets[0]


def read_rows(
    source: BytesIO | Path | str | bytes, sheet_name: str = DEFAULT_SHEET_NAME
) -> tuple[list[dict[Any, Any]], list[Any], list[str], str]:
    """Decode a workbook and return ``(rows, headers, sheet names, chosen sheet)``.

    Rows are header -> cell mappings with None for empty cells.
    """
    data = ensure_bytes(source)
    try:
        xls = pd.ExcelFile(BytesIO(data), engine="openpyxl")
        sheets = [str(s) for s in xls.sheet_names]
        chosen = pick_sheet(sheets, sheet_name)
        df = pd.read_excel(xls, sheet_name=chosen)
    except MalformedInputError:
        raise
    except Exception as exc:
        raise MalformedInputError(f"Soubor nelze načíst jako Excel: {exc}") from exc

    df = df.astype(object).where(pd.notna(df), None)
    return df.to_dict(orient="records"), list(df.columns), sheets, chosen


def record_from_row(
    row_id: int,
    row: Mapping[str, Any],
    columns: Mapping[str, Any],
    billability: BillabilityPolicy = BillabilityPolicy.LENIENT,
) -> LedgerRecord:
    def cell(field_name: str) -> Any:
        header = columns.get(field_name)
        return None if header is None else row.get(header)

    values: dict[str, Any] = {name: clean_text(cell(name)) for name in _TEXT_FIELDS}
    values.update({name: parse_date(cell(name)) for name in _DATE_FIELDS})

    country = clean_text(cell("country"))
    record = LedgerRecord(
        row_id=row_id,
        tax_id=normalize_tax_id(cell("tax_id")),
        billable_amount=max(parse_amount(cell("billable_amount")), Decimal("0")),
        ordered_amount=parse_amount(cell("ordered_amount")),
        country=country.upper() if country else None,
        invoiced=parse_invoiced_state(cell("invoiced")),
        vat_liable=parse_yes_no(cell("vat_liable")),
        **values,
    )
    record.can_invoice = can_invoice(record, billability)
    return record


def records_from_rows(
    rows: Iterable[Mapping[str, Any]],
    billability: BillabilityPolicy = BillabilityPolicy.LENIENT,
    ambiguity: HeaderAmbiguity = HeaderAmbiguity.FIRST,
    headers: Iterable[Any] | None = None,
) -> list[LedgerRecord]:
    """Normalize raw sheet rows; row ids follow sheet order starting at 1.

    *headers* defaults to the union of the rows' keys in first-seen order.
    """
    rows = list(rows)
    if headers is None:
        seen: dict[Any, None] = {}
        for row in rows:
            seen.update(dict.fromkeys(row))
        headers = seen
    columns = resolve_columns(headers, ambiguity=ambiguity)
    if "billable_amount" not in columns:
        raise MalformedInputError("V listu chybí sloupec 'Fakturovaná hodnota'")

    records = []
    for index, row in enumerate(rows, start=1):
        if all(is_blank(v) for v in row.values()):
            logger.debug("Skipping empty row %d", index)
            continue
        records.append(record_from_row(index, row, columns, billability))
    return records


def load_ledger(
    source: BytesIO | Path | str | bytes,
    sheet_name: str = DEFAULT_SHEET_NAME,
    billability: BillabilityPolicy = BillabilityPolicy.LENIENT,
    ambiguity: HeaderAmbiguity = HeaderAmbiguity.FIRST,
) -> LedgerImport:
    rows, headers, sheets, chosen = read_rows(source, sheet_name)
    records = records_from_rows(rows, billability, ambiguity, headers=headers)
    logger.info("Loaded %d ledger rows from sheet %r", len(records), chosen)
    return LedgerImport(records=records, sheets=sheets, sheet_name=chosen)
