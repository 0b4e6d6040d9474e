from __future__ import annotations

from enum import Enum

from faktury.models.ledger import InvoicedState, LedgerRecord


class BillabilityPolicy(str, Enum):
    LENIENT = "lenient"  # partially invoiced rows can still be billed
    STRICT = "strict"  # partially invoiced rows are treated as done


def can_invoice(record: LedgerRecord, policy: BillabilityPolicy = BillabilityPolicy.LENIENT) -> bool:
    """Whether a ledger row looks ready to bill.

    Advisory only: grouping uses the caller's selection, not this flag.
    """
    if record.billable_amount <= 0:
        return False
    if record.invoiced is InvoicedState.YES:
        return False
    if policy is BillabilityPolicy.STRICT and record.invoiced is InvoicedState.PARTIAL:
        return False
    return True
