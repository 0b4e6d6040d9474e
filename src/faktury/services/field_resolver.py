"""Tolerant mapping of ledger spreadsheet headers to record fields.

Exports of the ledger differ in language (Czech/Slovak), casing and
diacritics, so headers are compared in a normalized form and matched by
substring. New header variants go into ``FIELD_MATCHERS``.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from faktury.services.exceptions import AmbiguousHeaderError
from faktury.utils.normalizers import is_blank, normalize_label


class HeaderAmbiguity(str, Enum):
    FIRST = "first"  # first matching header in column order wins
    STRICT = "strict"  # several matching headers abort the import


@dataclass(frozen=True)
class HeaderMatcher:
    fragments: tuple[str, ...]
    exact: bool = False

    def matches(self, header: object) -> bool:
        label = normalize_label(header)
        if not label:
            return False
        for fragment in self.fragments:
            wanted = normalize_label(fragment)
            if (label == wanted) if self.exact else (wanted in label):
                return True
        return False


FIELD_MATCHERS: dict[str, HeaderMatcher] = {
    "original_id": HeaderMatcher(("id",), exact=True),
    "tax_id": HeaderMatcher(("ičo", "ico")),
    "municipality_code": HeaderMatcher(("kód obce",)),
    "client_name": HeaderMatcher(("názov klienta", "název klienta", "nazev klienta")),
    "district": HeaderMatcher(("okres",)),
    "region": HeaderMatcher(("kraj",), exact=True),
    "country": HeaderMatcher(("štát", "stát", "krajina", "země", "country"), exact=True),
    "population": HeaderMatcher(("počet obyvatel",)),
    "client_type": HeaderMatcher(("typ klienta",)),
    "consultant": HeaderMatcher(("konzultant",)),
    "activity_type": HeaderMatcher(("typ činnosti",)),
    "service": HeaderMatcher(("zakoupená služba", "zakúpená služba", "služba")),
    "billing_interval": HeaderMatcher(("interval platby",)),
    "commitment_years": HeaderMatcher(("väzanost", "vázanost", "viazanost")),
    "ordered_amount": HeaderMatcher(("hodnota objednávky",)),
    "billable_amount": HeaderMatcher(("fakturovaná hodnota",)),
    "activation_date": HeaderMatcher(("datum aktivace", "dátum aktivácie")),
    "period_end_date": HeaderMatcher(
        (
            "konca fakturačného obdobia",
            "konce fakturačního období",
            "konec fakturačního období",
        )
    ),
    "termination_date": HeaderMatcher(("datum ukončenia", "datum ukončení", "dátum ukončenia")),
    "license_start_month": HeaderMatcher(("mesiac začiatku", "měsíc začátku")),
    "invoiced": HeaderMatcher(("vyfakturováno", "vyfakturované")),
    "invoice_month": HeaderMatcher(("měsíc fakturace", "mesiac fakturácie")),
    "vat_liable": HeaderMatcher(("plátce dph", "platce dph", "platiteľ dph")),
    "note": HeaderMatcher(("poznámka",)),
    "continuation_result": HeaderMatcher(("výsledek pokračování", "výsledok pokračovania")),
    "auto_renewal": HeaderMatcher(("autoprolongace", "autoprolongácia")),
}


def resolve(row: Mapping[Any, Any], candidates: Sequence[str]) -> Any:
    """Return the cell of the first header containing one of *candidates*.

    Headers are visited in the row's key order. Returns None when no header
    matches or the matched cell is empty.
    """
    matcher = HeaderMatcher(tuple(candidates))
    for header, value in row.items():
        if matcher.matches(header):
            return None if is_blank(value) else value
    return None


def resolve_columns(
    headers: Iterable[Any],
    matchers: Mapping[str, HeaderMatcher] = FIELD_MATCHERS,
    ambiguity: HeaderAmbiguity = HeaderAmbiguity.FIRST,
) -> dict[str, Any]:
    """Map each field name to the sheet header that carries it.

    Fields without a matching header are absent from the result. With
    ``HeaderAmbiguity.STRICT`` a field matched by several headers raises
    AmbiguousHeaderError.
    """
    headers = list(headers)
    columns: dict[str, Any] = {}
    for field_name, matcher in matchers.items():
        hits = [h for h in headers if matcher.matches(h)]
        if not hits:
            continue
        if len(hits) > 1 and ambiguity is HeaderAmbiguity.STRICT:
            raise AmbiguousHeaderError(field_name, [str(h) for h in hits])
        columns[field_name] = hits[0]
    return columns
