"""Cell value normalization for ledger spreadsheets.

Every function here is total: messy input degrades to a safe default
(``0``, ``None`` or ``False``) instead of raising, so one bad row cannot
abort a whole import.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from decimal import Decimal, InvalidOperation

import pandas as pd

from faktury.models.ledger import InvoicedState

_EMPTY_TOKENS = frozenset({"", "-", "nat", "nan", "none"})
_ISO_PREFIX = re.compile(r"^\d{4}-\d{2}-\d{2}")
_YEAR_FIRST = re.compile(r"^\d{4}[-/.]")
_WHITESPACE = re.compile(r"\s+")
_TAX_ID_SEPARATORS = re.compile(r"[-\s]")
_AMOUNT_SHAPE = re.compile(r"^[+-]?\d+([.,]\d+)*$")
_CURRENCY_SUFFIX = re.compile(r"(kč|kc|czk|eur|€|huf|pln|zł)\.?$", re.IGNORECASE)

_YES_TOKENS = frozenset({"ano", "yes", "y", "x"})
_PARTIAL_PREFIXES = ("castecn", "ciastocn", "partial")


def is_blank(value: object) -> bool:
    """True for None, NaN/NaT, and strings that are empty or a placeholder."""
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip().lower() in _EMPTY_TOKENS
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_label(text: object) -> str:
    """Lowercase, diacritic-free, single-spaced form used for comparisons."""
    if text is None:
        return ""
    return _WHITESPACE.sub(" ", strip_diacritics(str(text))).strip().lower()


def clean_text(value: object) -> str | None:
    """Return a stripped string, or None for blank cells."""
    if is_blank(value):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def _canonical_number(s: str) -> str | None:
    """Rewrite "1.234,50" / "1,234.50" / "1 234,5" style numbers as "1234.50".

    When both separators appear, the last one is the decimal point. A
    separator that repeats is a thousands separator and must be followed by
    groups of three digits. A single separator of one kind is a decimal point.
    Returns None when the grouping is not plausible.
    """
    dot, comma = s.rfind("."), s.rfind(",")
    if dot < 0 and comma < 0:
        return s
    if dot >= 0 and comma >= 0:
        decimal_sep = "." if dot > comma else ","
        thousands_sep = "," if decimal_sep == "." else "."
        if s.count(decimal_sep) != 1:
            return None
    else:
        sep = "." if dot >= 0 else ","
        if s.count(sep) == 1:
            return s.replace(sep, ".")
        decimal_sep, thousands_sep = None, sep

    if decimal_sep is None:
        integral, fraction = s, ""
    else:
        integral, _, fraction = s.rpartition(decimal_sep)
    head, *groups = integral.split(thousands_sep)
    if not 1 <= len(head.lstrip("+-")) <= 3 or any(len(g) != 3 for g in groups):
        return None
    number = "".join([head, *groups])
    return f"{number}.{fraction}" if fraction else number


def parse_amount(value: object) -> Decimal:
    """Parse a monetary cell into a Decimal.

    Accepts space-grouped thousands, comma or dot decimals and a trailing
    currency ("1 234,50 Kč", "1,234.50", "1.234.567"). Anything else,
    including text that merely contains digits ("12/2024", "viz řádek 3"),
    yields ``Decimal("0")``.
    """
    if is_blank(value) or isinstance(value, bool):
        return Decimal("0")
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal("0")
    if isinstance(value, (int, float)):
        try:
            result = Decimal(str(value))
        except InvalidOperation:
            return Decimal("0")
        return result if result.is_finite() else Decimal("0")

    s = _WHITESPACE.sub("", str(value))
    s = _CURRENCY_SUFFIX.sub("", s)
    if not _AMOUNT_SHAPE.match(s):
        return Decimal("0")
    s = _canonical_number(s)
    if s is None:
        return Decimal("0")
    try:
        result = Decimal(s)
    except InvalidOperation:
        return Decimal("0")
    if not result.is_finite():
        return Decimal("0")
    return result


def parse_date(value: object) -> date | None:
    """Parse a date cell into a calendar date, or None.

    Native dates and timestamps keep their calendar day. Strings are tried as
    ISO first, then permissively with day-first ordering ("1.3.2024").
    """
    if is_blank(value):
        return None
    if isinstance(value, datetime):
        # also covers pandas.Timestamp
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if _ISO_PREFIX.match(text):
        try:
            return date.fromisoformat(text[:10])
        except ValueError:
            return None
    try:
        parsed = pd.to_datetime(
            text, errors="coerce", dayfirst=not _YEAR_FIRST.match(text)
        )
    except (ValueError, TypeError, OverflowError):
        return None
    if pd.isna(parsed):
        return None
    return parsed.date()


def normalize_tax_id(value: object) -> str | None:
    """Strip hyphens and whitespace from an IČO; None when nothing remains."""
    text = clean_text(value)
    if text is None:
        return None
    normalized = _TAX_ID_SEPARATORS.sub("", text)
    return normalized or None


def parse_yes_no(value: object) -> bool:
    """True only for "ano" (any case, with or without diacritics)."""
    if is_blank(value):
        return False
    return normalize_label(value) == "ano"


def parse_invoiced_state(value: object) -> InvoicedState:
    if is_blank(value):
        return InvoicedState.NO
    token = normalize_label(value)
    if token in _YES_TOKENS:
        return InvoicedState.YES
    if token.startswith(_PARTIAL_PREFIXES):
        return InvoicedState.PARTIAL
    return InvoicedState.NO
