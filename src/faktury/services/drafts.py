"""JSON form of draft invoices, written by ``preview`` and read back by
``export-xml``/``submit`` after the operator had a chance to edit it.

Amounts are stored as strings to keep Decimal precision. Computed values
(``name``, ``unit_price``, ``vat_rate``) and the operator's edits
(``edited_*``) are kept apart so edits never overwrite the defaults.
"""

from __future__ import annotations

import json
from collections.abc import Sequence
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

from faktury.models.invoice import DraftInvoice, DraftLine
from faktury.services.exceptions import MalformedInputError

FORMAT_VERSION = 1


def _opt_str(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def line_to_dict(line: DraftLine) -> dict[str, Any]:
    return {
        "name": line.name,
        "edited_name": line.edited_name,
        "quantity": line.quantity,
        "unit_name": line.unit_name,
        "unit_price": str(line.unit_price),
        "edited_price": _opt_str(line.edited_price),
        "vat_rate": str(line.vat_rate),
        "edited_vat_rate": _opt_str(line.edited_vat_rate),
    }


def draft_to_dict(draft: DraftInvoice) -> dict[str, Any]:
    return {
        "group_key": draft.group_key,
        "tax_id": draft.tax_id,
        "client_name": draft.client_name,
        "country": draft.country,
        "currency": draft.currency,
        "issued_on": draft.issued_on.isoformat(),
        "taxable_fulfillment_due": draft.taxable_fulfillment_due.isoformat(),
        "due_in_days": draft.due_in_days,
        "subject_id": draft.subject_id,
        "lines": [line_to_dict(line) for line in draft.lines],
        # informational only, recomputed from lines when read back
        "total_without_vat": str(draft.total_without_vat),
        "total_with_vat": str(draft.total_with_vat),
    }


def _decimal(value: Any, where: str) -> Decimal:
    try:
        result = Decimal(str(value).strip().replace(",", "."))
    except InvalidOperation:
        raise MalformedInputError(f"{where}: neplatné číslo '{value}'") from None
    if not result.is_finite():
        raise MalformedInputError(f"{where}: neplatné číslo '{value}'")
    return result


def _opt_decimal(value: Any, where: str) -> Decimal | None:
    if value is None or value == "":
        return None
    return _decimal(value, where)


def _date(value: Any, where: str) -> date:
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise MalformedInputError(f"{where}: neplatné datum '{value}'. Použijte YYYY-MM-DD.") from None


def line_from_dict(d: dict, where: str) -> DraftLine:
    try:
        return DraftLine(
            name=str(d["name"]),
            unit_price=_decimal(d["unit_price"], f"{where}.unit_price"),
            vat_rate=_decimal(d["vat_rate"], f"{where}.vat_rate"),
            edited_name=d.get("edited_name") or None,
            edited_price=_opt_decimal(d.get("edited_price"), f"{where}.edited_price"),
            edited_vat_rate=_opt_decimal(d.get("edited_vat_rate"), f"{where}.edited_vat_rate"),
            quantity=int(d.get("quantity", 1)),
            unit_name=d.get("unit_name", "ks"),
        )
    except KeyError as exc:
        raise MalformedInputError(f"{where}: chybí pole {exc}") from None


def draft_from_dict(d: dict, where: str = "invoice") -> DraftInvoice:
    """Rebuild a DraftInvoice; raises MalformedInputError for missing or invalid fields."""
    try:
        lines = d["lines"]
        if not isinstance(lines, list) or not lines:
            raise MalformedInputError(f"{where}: faktura musí mít alespoň jednu položku")
        subject_id = d.get("subject_id")
        return DraftInvoice(
            group_key=str(d["group_key"]),
            tax_id=d.get("tax_id"),
            client_name=d.get("client_name"),
            country=d.get("country"),
            currency=str(d["currency"]),
            issued_on=_date(d["issued_on"], f"{where}.issued_on"),
            taxable_fulfillment_due=_date(
                d["taxable_fulfillment_due"], f"{where}.taxable_fulfillment_due"
            ),
            due_in_days=int(d.get("due_in_days", 14)),
            lines=tuple(
                line_from_dict(line, f"{where}.lines[{i}]") for i, line in enumerate(lines)
            ),
            subject_id=int(subject_id) if subject_id is not None else None,
        )
    except KeyError as exc:
        raise MalformedInputError(f"{where}: chybí pole {exc}") from None
    except MalformedInputError:
        raise
    except (TypeError, ValueError) as exc:
        raise MalformedInputError(f"{where}: {exc}") from None


def dumps(drafts: Sequence[DraftInvoice]) -> str:
    return json.dumps(
        {"version": FORMAT_VERSION, "invoices": [draft_to_dict(d) for d in drafts]},
        indent=2,
        ensure_ascii=False,
    )


def loads(text: str) -> list[DraftInvoice]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedInputError(f"Soubor s návrhy není platný JSON: {exc}") from None
    invoices = data.get("invoices") if isinstance(data, dict) else None
    if not isinstance(invoices, list):
        raise MalformedInputError("Soubor s návrhy neobsahuje seznam 'invoices'")
    return [draft_from_dict(d, f"invoices[{i}]") for i, d in enumerate(invoices)]


def save_drafts(path: Path, drafts: Sequence[DraftInvoice]) -> Path:
    """Write drafts atomically (tmp file + rename)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(dumps(drafts) + "\n", encoding="utf-8")
    tmp.replace(path)
    return path


def load_drafts(path: Path) -> list[DraftInvoice]:
    return loads(path.read_text(encoding="utf-8"))
