from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any

from crm.models import CatalogProduct, Consumables
from crm.time_utils import parse_iso_date


TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 1000
NOTES_MAX_LENGTH = 1000
REFERENCE_MAX_LENGTH = 36

# Largest value that fits Numeric(12, 2)
MAX_ESTIMATED_VALUE = Decimal("9999999999.99")


@dataclass(frozen=True)
class FieldViolation:
    field: str | None
    message: str

    def to_dict(self) -> dict:
        return {"field": self.field, "message": self.message}


class ValidationError(ValueError):
    """400-level input problem. Carries every violated constraint, not just the first."""

    def __init__(self, violations):
        if isinstance(violations, str):
            violations = [FieldViolation(None, violations)]
        self.violations: list[FieldViolation] = list(violations)
        super().__init__("; ".join(v.message for v in self.violations))

    def to_dict(self) -> dict:
        return {
            "error": "Validation failed",
            "violations": [v.to_dict() for v in self.violations],
        }


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for create
    - immutable_fields: known fields that may never be sent on edit
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()
    immutable_fields: frozenset[str] = frozenset()


OPPORTUNITY_POLICY = ModelValidationPolicy(
    writable_fields=frozenset({
        "client_id",
        "title",
        "description",
        "product_id",
        "consumables",
        "estimated_value",
        "expected_close_date",
        "notes",
    }),
    required_on_create=frozenset({"client_id", "title", "description"}),
    # created_by is forced server side; state moves only through change_state
    immutable_fields=frozenset({
        "id",
        "client_id",
        "created_by",
        "created_at",
        "updated_at",
        "state",
        "state_seq",
        "pending_transitions",
        "version_id",
    }),
)


@dataclass
class _Collector:
    violations: list[FieldViolation] = field(default_factory=list)

    def add(self, name: str | None, message: str) -> None:
        self.violations.append(FieldViolation(name, message))

    def raise_if_any(self) -> None:
        if self.violations:
            raise ValidationError(self.violations)


def _clean_text(c: _Collector, name: str, raw: Any, *, max_length: int, required: bool) -> str | None:
    if raw is None:
        if required:
            c.add(name, f"{name} is required")
        return None
    if not isinstance(raw, str):
        c.add(name, f"{name} must be a string")
        return None
    value = raw.strip()
    if not value:
        if required:
            c.add(name, f"{name} cannot be blank")
        return None
    if len(value) > max_length:
        c.add(name, f"{name} exceeds max length {max_length}")
        return None
    return value


def _clean_decimal(c: _Collector, name: str, raw: Any) -> Decimal | None:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str, Decimal)):
        c.add(name, f"{name} must be a number")
        return None
    try:
        value = Decimal(str(raw).strip())
    except InvalidOperation:
        c.add(name, f"{name} must be a number")
        return None
    if not value.is_finite():
        c.add(name, f"{name} must be a number")
        return None
    if value < 0:
        c.add(name, f"{name} must be >= 0")
        return None
    if value > MAX_ESTIMATED_VALUE:
        c.add(name, f"{name} cannot exceed {MAX_ESTIMATED_VALUE}")
        return None
    return value.quantize(Decimal("0.01"))


def _clean_date(c: _Collector, name: str, raw: Any) -> date | None:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return None
    if isinstance(raw, date):
        return raw
    if not isinstance(raw, str):
        c.add(name, f"{name} must be an ISO-8601 date (YYYY-MM-DD)")
        return None
    try:
        return parse_iso_date(raw)
    except ValueError:
        c.add(name, f"{name} must be an ISO-8601 date (YYYY-MM-DD)")
        return None


def _clean_product(c: _Collector, payload: dict):
    """
    Resolve product_id / consumables into a single ProductAssociation.

    At most one kind may be requested; asking for both is a violation rather
    than a silent preference for either.
    """
    raw_product = payload.get("product_id")
    raw_consumables = payload.get("consumables", False)

    product_id = None
    if raw_product is not None:
        product_id = _clean_text(c, "product_id", raw_product, max_length=REFERENCE_MAX_LENGTH, required=False)

    if raw_consumables is None:
        raw_consumables = False
    if not isinstance(raw_consumables, bool):
        c.add("consumables", "consumables must be true or false")
        return None

    if product_id and raw_consumables:
        c.add("product_id", "An opportunity can reference a catalog product or consumables, not both")
        return None
    if product_id:
        return CatalogProduct(product_id)
    if raw_consumables:
        return Consumables()
    return None


def _check_payload_shape(c: _Collector, payload: Any, policy: ModelValidationPolicy, *, partial: bool) -> dict:
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    for k in payload.keys():
        if partial and k in policy.immutable_fields:
            c.add(k, f"{k} cannot be changed")
        elif k not in policy.writable_fields:
            c.add(k, f"Field not allowed: {k}")

    if not partial:
        for k in sorted(policy.required_on_create):
            if k not in payload:
                c.add(k, f"{k} is required")

    return payload


def validate_opportunity_create(payload: Any) -> dict:
    """
    Validate a create request and return the cleaned column values.

    The returned dict holds: client_id, title, description,
    product_association, estimated_value, expected_close_date, notes.
    Raises ValidationError listing every problem found.
    """
    c = _Collector()
    payload = _check_payload_shape(c, payload, OPPORTUNITY_POLICY, partial=False)

    cleaned = {
        "client_id": _clean_text(c, "client_id", payload.get("client_id"), max_length=REFERENCE_MAX_LENGTH, required="client_id" in payload),
        "title": _clean_text(c, "title", payload.get("title"), max_length=TITLE_MAX_LENGTH, required="title" in payload),
        "description": _clean_text(c, "description", payload.get("description"), max_length=DESCRIPTION_MAX_LENGTH, required="description" in payload),
        "product_association": _clean_product(c, payload),
        "estimated_value": _clean_decimal(c, "estimated_value", payload.get("estimated_value")),
        "expected_close_date": _clean_date(c, "expected_close_date", payload.get("expected_close_date")),
        "notes": _clean_text(c, "notes", payload.get("notes"), max_length=NOTES_MAX_LENGTH, required=False),
    }

    c.raise_if_any()
    return cleaned


def validate_opportunity_patch(payload: Any) -> dict:
    """
    Validate an edit request; only keys present in the payload are checked
    and returned. Product keys collapse into a single "product_association"
    entry when either is present, except that a lone `consumables: false`
    becomes "clear_consumables" and does not touch a catalog product link.
    """
    c = _Collector()
    payload = _check_payload_shape(c, payload, OPPORTUNITY_POLICY, partial=True)

    patch: dict = {}
    if "title" in payload:
        patch["title"] = _clean_text(c, "title", payload["title"], max_length=TITLE_MAX_LENGTH, required=True)
    if "description" in payload:
        patch["description"] = _clean_text(c, "description", payload["description"], max_length=DESCRIPTION_MAX_LENGTH, required=True)
    if "product_id" not in payload and payload.get("consumables") is False:
        # Only switches consumables off; a catalog product link is left alone.
        patch["clear_consumables"] = True
    elif "product_id" in payload or "consumables" in payload:
        patch["product_association"] = _clean_product(c, payload)
    if "estimated_value" in payload:
        patch["estimated_value"] = _clean_decimal(c, "estimated_value", payload["estimated_value"])
    if "expected_close_date" in payload:
        patch["expected_close_date"] = _clean_date(c, "expected_close_date", payload["expected_close_date"])
    if "notes" in payload:
        patch["notes"] = _clean_text(c, "notes", payload["notes"], max_length=NOTES_MAX_LENGTH, required=False)

    c.raise_if_any()
    if not patch:
        raise ValidationError("No editable fields supplied")
    return patch


def clean_comment(raw: Any) -> str | None:
    """Normalize a transition comment; blank -> None."""
    c = _Collector()
    value = _clean_text(c, "comment", raw, max_length=NOTES_MAX_LENGTH, required=False)
    c.raise_if_any()
    return value
