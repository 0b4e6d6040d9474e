from __future__ import annotations

from datetime import date
from decimal import Decimal

from faktury.models.invoice import quantize


def format_date_cz(value: date | None) -> str:
    """Format a date as DD/MM/YYYY, or "" when absent."""
    if value is None:
        return ""
    return value.strftime("%d/%m/%Y")


def format_period(start: date | None, end: date | None) -> str:
    """Format a billing period as "DD/MM/YYYY - DD/MM/YYYY"; "" unless both ends exist."""
    if start is None or end is None:
        return ""
    return f"{format_date_cz(start)} - {format_date_cz(end)}"


def format_money(value: Decimal | str, currency: str = "CZK") -> str:
    """Format an amount Czech style: 1 234 567,89 CZK."""
    d = Decimal(value)
    formatted = f"{d:,.2f}".replace(",", " ").replace(".", ",")
    return f"{formatted} {currency}"


def format_amount(value: Decimal) -> str:
    """Fixed two-decimal rendering used in documents and API payloads."""
    return str(quantize(Decimal(value)))
