from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from io import BytesIO

import pandas as pd
import pytest
from lxml import etree

from faktury.config import Credentials
from faktury.models.invoice import DraftInvoice, DraftLine
from faktury.models.ledger import LedgerRecord

LEDGER_HEADERS = [
    "ID",
    "IČO",
    "Kód obce",
    "Názov klienta",
    "Okres",
    "Kraj",
    "Štát",
    "Typ klienta",
    "Zakoupená služba",
    "Hodnota objednávky",
    "Fakturovaná hodnota",
    "Datum aktivace",
    "Datum konca fakturačného obdobia",
    "Vyfakturováno",
    "Plátce DPH",
    "Poznámka",
]


def xml_text(el: etree._Element, xpath: str) -> str | None:
    """Extract text from an XML element by xpath."""
    found = el.find(xpath)
    return found.text if found is not None else None


def make_workbook(rows: list[dict], sheet_name: str = "Databáza klientov", extra_sheets=()) -> bytes:
    """Serialize *rows* into an in-memory .xlsx workbook."""
    buf = BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        for name in extra_sheets:
            pd.DataFrame({"x": [1]}).to_excel(writer, sheet_name=name, index=False)
        pd.DataFrame(rows).to_excel(writer, sheet_name=sheet_name, index=False)
    return buf.getvalue()


# --- Environment isolation ---


@pytest.fixture(autouse=True)
def _isolate_credentials(monkeypatch):
    for name in ("FAKTUROID_CLIENT_ID", "FAKTUROID_CLIENT_SECRET", "FAKTUROID_SLUG", "FAKTUROID_EMAIL"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("faktury.config._get_keyring_secret", lambda: None)


# --- Ledger fixtures ---


@pytest.fixture
def ledger_rows() -> list[dict]:
    return [
        {
            "ID": 1,
            "IČO": "123 456 78",
            "Kód obce": 500011,
            "Názov klienta": "Obec Horní Lhota",
            "Okres": "Ostrava",
            "Kraj": "Moravskoslezský",
            "Štát": "cze",
            "Typ klienta": "Obec",
            "Zakoupená služba": "Mobilní rozhlas",
            "Hodnota objednávky": "12 000",
            "Fakturovaná hodnota": "1 234,50",
            "Datum aktivace": datetime(2024, 3, 1),
            "Datum konca fakturačného obdobia": datetime(2025, 2, 28),
            "Vyfakturováno": None,
            "Plátce DPH": "Ano",
            "Poznámka": None,
        },
        {
            "ID": 2,
            "IČO": "12345678",
            "Kód obce": 500011,
            "Názov klienta": "Obec Horní Lhota",
            "Okres": "Ostrava",
            "Kraj": "Moravskoslezský",
            "Štát": "CZE",
            "Typ klienta": "Obec",
            "Zakoupená služba": "Web",
            "Hodnota objednávky": 5000,
            "Fakturovaná hodnota": 5000,
            "Datum aktivace": "15.4.2024",
            "Datum konca fakturačného obdobia": None,
            "Vyfakturováno": "částečně",
            "Plátce DPH": "Ano",
            "Poznámka": "druhá licence",
        },
        {
            "ID": 3,
            "IČO": "-",
            "Kód obce": None,
            "Názov klienta": "Spolek bez IČO",
            "Okres": None,
            "Kraj": None,
            "Štát": "CZE",
            "Typ klienta": "Spolek",
            "Zakoupená služba": None,
            "Hodnota objednávky": None,
            "Fakturovaná hodnota": "800",
            "Datum aktivace": None,
            "Datum konca fakturačného obdobia": None,
            "Vyfakturováno": None,
            "Plátce DPH": "Ne",
            "Poznámka": None,
        },
        {
            "ID": 4,
            "IČO": "87654321",
            "Kód obce": 600123,
            "Názov klienta": "Obec Dolný Kubín",
            "Okres": "Dolný Kubín",
            "Kraj": "Žilinský",
            "Štát": "SVK",
            "Typ klienta": "Obec",
            "Zakoupená služba": "Mobilný rozhlas",
            "Hodnota objednávky": 300,
            "Fakturovaná hodnota": 300,
            "Datum aktivace": datetime(2024, 1, 10),
            "Datum konca fakturačného obdobia": datetime(2024, 12, 31),
            "Vyfakturováno": "Ano",
            "Plátce DPH": "Ano",
            "Poznámka": None,
        },
    ]


@pytest.fixture
def ledger_workbook(ledger_rows) -> bytes:
    return make_workbook(ledger_rows)


@pytest.fixture
def make_record():
    def _make(row_id: int = 1, **kwargs) -> LedgerRecord:
        defaults = {
            "tax_id": "12345678",
            "client_name": "Obec Horní Lhota",
            "billable_amount": Decimal("1000"),
            "country": "CZE",
            "vat_liable": True,
            "can_invoice": True,
            "selected": True,
        }
        defaults.update(kwargs)
        return LedgerRecord(row_id=row_id, **defaults)

    return _make


# --- Draft fixtures ---


@pytest.fixture
def sample_draft() -> DraftInvoice:
    return DraftInvoice(
        group_key="12345678",
        tax_id="12345678",
        client_name="Obec Horní Lhota",
        country="CZE",
        currency="CZK",
        issued_on=date(2024, 5, 1),
        taxable_fulfillment_due=date(2024, 3, 1),
        due_in_days=14,
        lines=(
            DraftLine(
                name="Mobilní rozhlas (01/03/2024 - 28/02/2025)",
                unit_price=Decimal("1234.50"),
                vat_rate=Decimal("21"),
            ),
            DraftLine(name="Web", unit_price=Decimal("5000"), vat_rate=Decimal("21")),
        ),
    )


@pytest.fixture
def no_ico_draft() -> DraftInvoice:
    return DraftInvoice(
        group_key="no-ico-name-Spolek bez IČO",
        tax_id=None,
        client_name="Spolek bez IČO",
        country="CZE",
        currency="CZK",
        issued_on=date(2024, 5, 1),
        taxable_fulfillment_due=date(2024, 5, 1),
        due_in_days=14,
        lines=(DraftLine(name="Licence", unit_price=Decimal("800"), vat_rate=Decimal("0")),),
    )


# --- Credentials ---


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(
        client_id="cid", client_secret="secret", slug="moje-firma", email="ucetni@example.com"
    )
