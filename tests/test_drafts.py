from __future__ import annotations

import json
from datetime import date
from decimal import Decimal

import pytest

from faktury.services.drafts import draft_from_dict, draft_to_dict, load_drafts, loads, save_drafts
from faktury.services.exceptions import MalformedInputError


class TestDraftToDict:
    def test_amounts_as_strings(self, sample_draft):
        d = draft_to_dict(sample_draft)
        assert d["lines"][0]["unit_price"] == "1234.50"
        assert d["lines"][0]["edited_price"] is None
        assert d["total_with_vat"] == "7543.75"
        assert d["issued_on"] == "2024-05-01"


class TestSaveAndLoad:
    def test_preserves_edits(self, tmp_path, sample_draft, no_ico_draft):
        edited = sample_draft.edit_line(0, name="Upraveno", price=Decimal("0"))
        path = save_drafts(tmp_path / "out" / "drafts.json", [edited, no_ico_draft])

        loaded = load_drafts(path)

        assert loaded == [edited, no_ico_draft]
        assert loaded[0].lines[0].effective_price == Decimal("0")
        assert loaded[0].lines[0].name == sample_draft.lines[0].name
        assert not (tmp_path / "out" / "drafts.tmp").exists()

    def test_file_is_readable_json(self, tmp_path, sample_draft):
        path = save_drafts(tmp_path / "drafts.json", [sample_draft])
        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["version"] == 1
        assert data["invoices"][0]["client_name"] == "Obec Horní Lhota"


class TestOperatorEdits:
    def test_hand_edited_values(self, sample_draft):
        d = draft_to_dict(sample_draft)
        d["lines"][1]["edited_price"] = "4500,5"
        d["lines"][1]["edited_vat_rate"] = 0
        d["taxable_fulfillment_due"] = "2024-04-01"
        draft = draft_from_dict(d)
        assert draft.lines[1].effective_price == Decimal("4500.5")
        assert draft.lines[1].effective_vat_rate == Decimal("0")
        assert draft.taxable_fulfillment_due == date(2024, 4, 1)

    def test_stale_totals_ignored(self, sample_draft):
        d = draft_to_dict(sample_draft)
        d["total_with_vat"] = "1"
        assert draft_from_dict(d).total_with_vat == Decimal("7543.75")

    def test_empty_edited_name_means_no_edit(self, sample_draft):
        d = draft_to_dict(sample_draft)
        d["lines"][0]["edited_name"] = ""
        assert draft_from_dict(d).lines[0].effective_name == sample_draft.lines[0].name


class TestMalformed:
    def test_not_json(self):
        with pytest.raises(MalformedInputError, match="JSON"):
            loads("{not json")

    def test_no_invoices_list(self):
        with pytest.raises(MalformedInputError, match="invoices"):
            loads('{"version": 1}')

    def test_missing_field(self, sample_draft):
        d = draft_to_dict(sample_draft)
        del d["currency"]
        with pytest.raises(MalformedInputError, match="currency"):
            draft_from_dict(d)

    def test_bad_price(self, sample_draft):
        d = draft_to_dict(sample_draft)
        d["lines"][0]["edited_price"] = "hodně"
        with pytest.raises(MalformedInputError, match=r"lines\[0\].edited_price"):
            draft_from_dict(d)

    def test_bad_date(self, sample_draft):
        d = draft_to_dict(sample_draft)
        d["issued_on"] = "1.5.2024"
        with pytest.raises(MalformedInputError, match="YYYY-MM-DD"):
            draft_from_dict(d)

    def test_no_lines(self, sample_draft):
        d = draft_to_dict(sample_draft)
        d["lines"] = []
        with pytest.raises(MalformedInputError):
            draft_from_dict(d)

    def test_bad_due_days(self, sample_draft):
        d = draft_to_dict(sample_draft)
        d["due_in_days"] = "brzy"
        with pytest.raises(MalformedInputError):
            draft_from_dict(d)
