from datetime import date
from decimal import Decimal

import pytest

from crm.models import CatalogProduct, Consumables
from crm.validation import (
    ValidationError,
    clean_comment,
    validate_opportunity_create,
    validate_opportunity_patch,
)


BASE = {"client_id": "client-x", "title": "Venta monitor", "description": "Licitación hospital"}


def _violations(exc_info) -> dict:
    return {v.field: v.message for v in exc_info.value.violations}


class TestCreate:
    def test_minimal_payload(self):
        cleaned = validate_opportunity_create(BASE)
        assert cleaned["client_id"] == "client-x"
        assert cleaned["product_association"] is None
        assert cleaned["estimated_value"] is None
        assert cleaned["notes"] is None

    def test_text_is_trimmed(self):
        cleaned = validate_opportunity_create(dict(BASE, title="  Venta monitor  "))
        assert cleaned["title"] == "Venta monitor"

    @pytest.mark.parametrize("field_name,limit", [("title", 200), ("description", 1000), ("notes", 1000)])
    def test_length_limits(self, field_name, limit):
        validate_opportunity_create(dict(BASE, **{field_name: "a" * limit}))
        with pytest.raises(ValidationError) as exc:
            validate_opportunity_create(dict(BASE, **{field_name: "a" * (limit + 1)}))
        assert field_name in _violations(exc)

    def test_non_dict_payload(self):
        with pytest.raises(ValidationError):
            validate_opportunity_create(["not", "a", "dict"])

    def test_unknown_field_rejected(self):
        with pytest.raises(ValidationError) as exc:
            validate_opportunity_create(dict(BASE, priority="alta"))
        assert _violations(exc)["priority"] == "Field not allowed: priority"

    @pytest.mark.parametrize("raw,expected", [
        (100, Decimal("100.00")),
        ("99.999", Decimal("100.00")),
        ("0", Decimal("0.00")),
        (None, None),
        ("", None),
    ])
    def test_estimated_value(self, raw, expected):
        assert validate_opportunity_create(dict(BASE, estimated_value=raw))["estimated_value"] == expected

    @pytest.mark.parametrize("raw", [-1, "abc", True, "NaN", "1e20", [1]])
    def test_bad_estimated_value(self, raw):
        with pytest.raises(ValidationError) as exc:
            validate_opportunity_create(dict(BASE, estimated_value=raw))
        assert "estimated_value" in _violations(exc)

    def test_expected_close_date(self):
        cleaned = validate_opportunity_create(dict(BASE, expected_close_date="2026-12-01"))
        assert cleaned["expected_close_date"] == date(2026, 12, 1)

    @pytest.mark.parametrize("raw", ["01/12/2026", "2026-13-01", 20261201])
    def test_bad_expected_close_date(self, raw):
        with pytest.raises(ValidationError) as exc:
            validate_opportunity_create(dict(BASE, expected_close_date=raw))
        assert "expected_close_date" in _violations(exc)

    def test_product_variants(self):
        assert validate_opportunity_create(dict(BASE, product_id="p-1"))["product_association"] == CatalogProduct("p-1")
        assert validate_opportunity_create(dict(BASE, consumables=True))["product_association"] == Consumables()
        assert validate_opportunity_create(dict(BASE, consumables=False))["product_association"] is None

    def test_consumables_must_be_boolean(self):
        with pytest.raises(ValidationError) as exc:
            validate_opportunity_create(dict(BASE, consumables="yes"))
        assert "consumables" in _violations(exc)

    def test_violations_serialize(self):
        with pytest.raises(ValidationError) as exc:
            validate_opportunity_create({"title": ""})
        data = exc.value.to_dict()
        assert data["error"] == "Validation failed"
        assert {v["field"] for v in data["violations"]} == {"client_id", "title", "description"}


class TestPatch:
    def test_only_present_fields_returned(self):
        assert validate_opportunity_patch({"notes": "Llamar el lunes"}) == {"notes": "Llamar el lunes"}

    def test_notes_can_be_cleared(self):
        assert validate_opportunity_patch({"notes": ""}) == {"notes": None}

    def test_clearing_product(self):
        assert validate_opportunity_patch({"product_id": None}) == {"product_association": None}

    def test_consumables_off_does_not_replace_product(self):
        patch = validate_opportunity_patch({"consumables": False, "notes": "x"})
        assert "product_association" not in patch
        assert patch == {"clear_consumables": True, "notes": "x"}

    def test_consumables_off_with_product_sets_product(self):
        patch = validate_opportunity_patch({"consumables": False, "product_id": "p-1"})
        assert patch == {"product_association": CatalogProduct("p-1")}

    @pytest.mark.parametrize("field_name", ["created_by", "state", "client_id", "state_seq", "pending_transitions"])
    def test_immutable_fields(self, field_name):
        with pytest.raises(ValidationError) as exc:
            validate_opportunity_patch({field_name: "x"})
        assert _violations(exc)[field_name] == f"{field_name} cannot be changed"

    def test_empty_patch(self):
        with pytest.raises(ValidationError) as exc:
            validate_opportunity_patch({})
        assert str(exc.value) == "No editable fields supplied"


class TestComment:
    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_blank_is_none(self, raw):
        assert clean_comment(raw) is None

    def test_trimmed(self):
        assert clean_comment("  Llamó  ") == "Llamó"

    def test_non_string_rejected(self):
        with pytest.raises(ValidationError):
            clean_comment(42)
