"""Currency and VAT defaults per client country (ISO 3166 alpha-3)."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class CountryDefaults:
    currency: str
    vat_rate: Decimal


HOME_DEFAULTS = CountryDefaults(currency="CZK", vat_rate=Decimal("21"))

_TABLE: dict[str, CountryDefaults] = {
    "CZE": HOME_DEFAULTS,
    "SVK": CountryDefaults(currency="EUR", vat_rate=Decimal("23")),
    "HUN": CountryDefaults(currency="HUF", vat_rate=Decimal("27")),
    "POL": CountryDefaults(currency="PLN", vat_rate=Decimal("23")),
    "AUT": CountryDefaults(currency="EUR", vat_rate=Decimal("20")),
    "DEU": CountryDefaults(currency="EUR", vat_rate=Decimal("19")),
}


def defaults_for(country: str | None) -> CountryDefaults:
    """Defaults for *country*; unknown or missing codes get the home (CZE) values."""
    if not country:
        return HOME_DEFAULTS
    return _TABLE.get(country.strip().upper(), HOME_DEFAULTS)


def currency_for(country: str | None) -> str:
    return defaults_for(country).currency


def vat_rate_for(country: str | None) -> Decimal:
    return defaults_for(country).vat_rate
