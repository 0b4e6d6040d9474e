from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from faktury.models.ledger import LedgerRecord

CENT = Decimal("0.01")


def quantize(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass
class InvoiceGroup:
    """Ledger records billed to one subject.

    ``records`` holds references to the imported LedgerRecords, never copies.
    """

    key: str
    tax_id: str | None
    client_name: str | None
    country: str | None
    vat_liable: bool
    records: list[LedgerRecord] = field(default_factory=list)

    @property
    def has_tax_id(self) -> bool:
        return self.tax_id is not None


@dataclass(frozen=True)
class LineOverride:
    """User edits for one draft line; None leaves the computed value in place."""

    name: str | None = None
    price: Decimal | None = None
    vat_rate: Decimal | None = None


@dataclass(frozen=True)
class DraftLine:
    name: str
    unit_price: Decimal
    vat_rate: Decimal
    edited_name: str | None = None
    edited_price: Decimal | None = None
    edited_vat_rate: Decimal | None = None
    quantity: int = 1
    unit_name: str = "ks"

    @property
    def effective_name(self) -> str:
        return self.edited_name if self.edited_name is not None else self.name

    @property
    def effective_price(self) -> Decimal:
        return self.edited_price if self.edited_price is not None else self.unit_price

    @property
    def effective_vat_rate(self) -> Decimal:
        return self.edited_vat_rate if self.edited_vat_rate is not None else self.vat_rate

    @property
    def vat_amount(self) -> Decimal:
        return quantize(self.effective_price * self.effective_vat_rate / Decimal(100))

    @property
    def total_with_vat(self) -> Decimal:
        return self.effective_price + self.vat_amount

    def with_edits(self, override: LineOverride) -> DraftLine:
        """Return a copy with the non-None parts of *override* applied."""
        changes = {}
        if override.name is not None:
            changes["edited_name"] = override.name
        if override.price is not None:
            changes["edited_price"] = Decimal(override.price)
        if override.vat_rate is not None:
            changes["edited_vat_rate"] = Decimal(override.vat_rate)
        return replace(self, **changes)


@dataclass(frozen=True)
class DraftInvoice:
    """An invoice under preparation; totals are always derived from the lines."""

    group_key: str
    tax_id: str | None
    client_name: str | None
    country: str | None
    currency: str
    issued_on: date
    taxable_fulfillment_due: date
    due_in_days: int
    lines: tuple[DraftLine, ...]
    subject_id: int | None = None

    @property
    def has_tax_id(self) -> bool:
        return self.tax_id is not None

    @property
    def item_count(self) -> int:
        return len(self.lines)

    @property
    def due_on(self) -> date:
        return self.issued_on + timedelta(days=self.due_in_days)

    @property
    def total_without_vat(self) -> Decimal:
        return sum((line.effective_price for line in self.lines), Decimal("0"))

    @property
    def total_vat(self) -> Decimal:
        return sum((line.vat_amount for line in self.lines), Decimal("0"))

    @property
    def total_with_vat(self) -> Decimal:
        return self.total_without_vat + self.total_vat

    def edit_line(
        self,
        index: int,
        *,
        name: str | None = None,
        price: Decimal | None = None,
        vat_rate: Decimal | None = None,
    ) -> DraftInvoice:
        """Return a copy with line *index* edited. Raises IndexError for a bad index."""
        if not 0 <= index < len(self.lines):
            raise IndexError(f"Invoice {self.group_key} has no line {index}")
        lines = list(self.lines)
        lines[index] = lines[index].with_edits(
            LineOverride(name=name, price=price, vat_rate=vat_rate)
        )
        return replace(self, lines=tuple(lines))
