from __future__ import annotations

import logging
from collections.abc import Collection, Iterable
from enum import Enum

from faktury.models.invoice import InvoiceGroup
from faktury.models.ledger import LedgerRecord

logger = logging.getLogger(__name__)

# Normalized tax ids never contain "-", so synthetic keys cannot collide with them.
SYNTHETIC_KEY_PREFIX = "no-ico-"
# Separate namespaces keep a client named "12" apart from a nameless row 12.
_NAME_KEY_PREFIX = f"{SYNTHETIC_KEY_PREFIX}name-"
_ROW_KEY_PREFIX = f"{SYNTHETIC_KEY_PREFIX}row-"


class GroupingPolicy(str, Enum):
    STRICT = "strict"  # rows without IČO are left out
    INCLUSIVE = "inclusive"  # rows without IČO get a synthetic key


def group_key(record: LedgerRecord) -> str:
    if record.tax_id:
        return record.tax_id
    if record.client_name:
        return f"{_NAME_KEY_PREFIX}{record.client_name}"
    return f"{_ROW_KEY_PREFIX}{record.row_id}"


def group_by_key(
    records: Iterable[LedgerRecord],
    policy: GroupingPolicy = GroupingPolicy.INCLUSIVE,
    *,
    selected_only: bool = False,
) -> list[InvoiceGroup]:
    """Group ledger rows into invoices, one per billing subject.

    Groups come out in first-seen order of their key, which later drives
    invoice numbering in the export.
    """
    groups: dict[str, InvoiceGroup] = {}
    for record in records:
        if selected_only and not record.selected:
            continue
        if not record.tax_id and policy is GroupingPolicy.STRICT:
            logger.info("Row %d has no IČO, left out of grouping", record.row_id)
            continue

        key = group_key(record)
        group = groups.get(key)
        if group is None:
            group = InvoiceGroup(
                key=key,
                tax_id=record.tax_id,
                client_name=record.client_name,
                country=record.country,
                vat_liable=record.vat_liable,
            )
            groups[key] = group
        group.records.append(record)
    return list(groups.values())


def select_records(
    records: Iterable[LedgerRecord],
    row_ids: Collection[int] | None = None,
    *,
    billable_only: bool = True,
) -> list[LedgerRecord]:
    """Set the ``selected`` flag and return the selected rows.

    With *row_ids* exactly those rows are selected; otherwise every row
    (or every billable row when *billable_only*).
    """
    chosen = []
    for record in records:
        if row_ids is not None:
            record.selected = record.row_id in row_ids
        else:
            record.selected = record.can_invoice or not billable_only
        if record.selected:
            chosen.append(record)
    return chosen
