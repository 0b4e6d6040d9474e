from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import patch

import pytest

from faktury.models.invoice import InvoiceGroup, LineOverride
from faktury.services.assembler import (
    InvoiceOptions,
    assemble,
    build_preview,
    line_name,
    totals_by_currency,
)
from faktury.services.grouping import GroupingPolicy, group_by_key

TODAY = date(2024, 5, 1)


@pytest.fixture(autouse=True)
def _fixed_today():
    with patch("faktury.services.assembler._today", return_value=TODAY):
        yield


class TestLineName:
    def test_service_with_period(self, make_record):
        record = make_record(
            service="Mobilní rozhlas",
            activation_date=date(2024, 3, 1),
            period_end_date=date(2025, 2, 28),
        )
        assert line_name(record, InvoiceOptions()) == "Mobilní rozhlas (01/03/2024 - 28/02/2025)"

    def test_period_disabled(self, make_record):
        record = make_record(
            service="Web", activation_date=date(2024, 3, 1), period_end_date=date(2025, 2, 28)
        )
        assert line_name(record, InvoiceOptions(include_period_in_name=False)) == "Web"

    def test_partial_period_omitted(self, make_record):
        record = make_record(service="Web", activation_date=date(2024, 3, 1))
        assert line_name(record, InvoiceOptions()) == "Web"

    def test_default_name(self, make_record):
        assert line_name(make_record(service=None), InvoiceOptions()) == "Licence"


class TestAssemble:
    def test_one_line_per_record(self, make_record):
        records = [
            make_record(1, billable_amount=Decimal("1000"), activation_date=date(2024, 3, 1)),
            make_record(2, billable_amount=Decimal("500")),
        ]
        draft = assemble(group_by_key(records)[0])
        assert draft.item_count == 2
        assert [line.unit_price for line in draft.lines] == [Decimal("1000"), Decimal("500")]
        assert [line.vat_rate for line in draft.lines] == [Decimal("21"), Decimal("21")]
        assert draft.currency == "CZK"
        assert draft.total_without_vat == Decimal("1500")

    def test_country_defaults(self, make_record):
        draft = assemble(group_by_key([make_record(country="SVK")])[0])
        assert draft.currency == "EUR"
        assert draft.lines[0].vat_rate == Decimal("23")

    def test_unknown_country_uses_home_defaults(self, make_record):
        draft = assemble(group_by_key([make_record(country=None)])[0])
        assert draft.currency == "CZK"
        assert draft.lines[0].vat_rate == Decimal("21")

    def test_explicit_rate_and_currency(self, make_record):
        options = InvoiceOptions(vat_rate=Decimal("12"), currency="EUR")
        draft = assemble(group_by_key([make_record()])[0], options)
        assert draft.currency == "EUR"
        assert draft.lines[0].vat_rate == Decimal("12")

    def test_not_vat_liable_forces_zero(self, make_record):
        options = InvoiceOptions(vat_rate=Decimal("21"))
        draft = assemble(group_by_key([make_record(vat_liable=False)])[0], options)
        assert draft.lines[0].vat_rate == Decimal("0")
        assert draft.total_vat == Decimal("0")

    def test_fulfillment_date_from_first_record(self, make_record):
        records = [make_record(1, activation_date=date(2024, 2, 1)), make_record(2, activation_date=date(2024, 4, 1))]
        draft = assemble(group_by_key(records)[0])
        assert draft.taxable_fulfillment_due == date(2024, 2, 1)
        assert draft.issued_on == TODAY

    def test_fulfillment_date_falls_back_to_today(self, make_record):
        draft = assemble(group_by_key([make_record()])[0])
        assert draft.taxable_fulfillment_due == TODAY

    def test_due_days(self, make_record):
        draft = assemble(group_by_key([make_record()])[0], InvoiceOptions(due_in_days=30))
        assert draft.due_on == date(2024, 5, 31)

    def test_carries_group_identity(self, make_record):
        group = group_by_key([make_record(tax_id=None, client_name="Spolek")])[0]
        draft = assemble(group)
        assert draft.group_key == "no-ico-name-Spolek"
        assert draft.tax_id is None
        assert draft.client_name == "Spolek"

    def test_empty_group(self):
        group = InvoiceGroup(key="x", tax_id="x", client_name=None, country=None, vat_liable=False)
        with pytest.raises(ValueError):
            assemble(group)

    def test_overrides_applied(self, make_record):
        options = InvoiceOptions(
            line_overrides={"12345678": {0: LineOverride(name="Upraveno", price=Decimal("0"))}}
        )
        draft = assemble(group_by_key([make_record()])[0], options)
        assert draft.lines[0].effective_name == "Upraveno"
        assert draft.lines[0].effective_price == Decimal("0")
        assert draft.total_without_vat == Decimal("0")

    def test_out_of_range_override_ignored(self, make_record, caplog):
        options = InvoiceOptions(line_overrides={"12345678": {3: LineOverride(name="X")}})
        draft = assemble(group_by_key([make_record()])[0], options)
        assert draft.lines[0].edited_name is None
        assert "ignored" in caplog.text


class TestBuildPreview:
    def test_one_draft_per_group(self, make_record):
        records = [
            make_record(1),
            make_record(2, tax_id="87654321", country="SVK"),
            make_record(3),
            make_record(4, tax_id=None, client_name="Spolek"),
        ]
        drafts = build_preview(records)
        assert [d.group_key for d in drafts] == ["12345678", "87654321", "no-ico-name-Spolek"]
        assert drafts[0].item_count == 2

    def test_strict_grouping(self, make_record):
        records = [make_record(1), make_record(2, tax_id=None, client_name="Spolek")]
        drafts = build_preview(records, policy=GroupingPolicy.STRICT)
        assert [d.group_key for d in drafts] == ["12345678"]

    def test_selected_only(self, make_record):
        records = [make_record(1), make_record(2, tax_id="B", selected=False)]
        drafts = build_preview(records, selected_only=True)
        assert [d.group_key for d in drafts] == ["12345678"]

    def test_does_not_touch_records(self, make_record):
        record = make_record(1)
        build_preview([record])
        assert record.billable_amount == Decimal("1000")
        assert record.selected is True


class TestTotalsByCurrency:
    def test_sums_per_currency(self, make_record):
        records = [
            make_record(1, billable_amount=Decimal("100")),
            make_record(2, tax_id="B", billable_amount=Decimal("50"), country="SVK"),
            make_record(3, tax_id="C", billable_amount=Decimal("25")),
        ]
        totals = totals_by_currency(build_preview(records))
        assert totals == {"CZK": Decimal("125"), "EUR": Decimal("50")}
        assert list(totals) == ["CZK", "EUR"]

    def test_empty(self):
        assert totals_by_currency([]) == {}
