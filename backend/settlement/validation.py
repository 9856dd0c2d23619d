from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Prices and amounts are whole won. 1,000,000,000 won per unit is already absurd.
MAX_UNIT_PRICE = 1_000_000_000
MAX_LINE_QUANTITY = 100_000

DEFAULT_OPTION = "default"


class ValidationError(ValueError):
    """400-level input problem."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if "." in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    Fields in the policy that are not model columns (e.g. "lines") are passed
    through untouched for the caller to validate.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    patch: dict = {}
    for k, raw in payload.items():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            patch[k] = raw
            continue

        col = cols[k]
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def normalize_option(value: Any) -> str:
    """Color/size normalization: missing or blank options collapse to "default"."""
    if value is None:
        return DEFAULT_OPTION
    text = str(value).strip()
    return text or DEFAULT_OPTION


def normalize_line_item(raw: Any, *, position: int) -> dict:
    """
    Validate one statement line in its canonical shape:
    {product_id?, product_name, color, size, quantity, unit_price}.
    """
    if not isinstance(raw, dict):
        raise ValidationError(f"line {position}: must be an object")

    product_id = raw.get("product_id")
    if product_id is not None:
        product_id = coerce_int(product_id, f"line {position}: product_id")

    product_name = str(raw.get("product_name") or "").strip()
    if not product_name and product_id is None:
        raise ValidationError(f"line {position}: product_name or product_id is required")

    if "quantity" not in raw:
        raise ValidationError(f"line {position}: quantity is required")
    quantity = coerce_int(raw["quantity"], f"line {position}: quantity")
    if quantity <= 0:
        raise ValidationError(f"line {position}: quantity must be > 0")
    if quantity > MAX_LINE_QUANTITY:
        raise ValidationError(f"line {position}: quantity cannot exceed {MAX_LINE_QUANTITY}")

    if "unit_price" not in raw:
        raise ValidationError(f"line {position}: unit_price is required")
    unit_price = coerce_int(raw["unit_price"], f"line {position}: unit_price")
    if unit_price < 0:
        raise ValidationError(f"line {position}: unit_price must be >= 0")
    if unit_price > MAX_UNIT_PRICE:
        raise ValidationError(f"line {position}: unit_price cannot exceed {MAX_UNIT_PRICE}")

    return {
        "product_id": product_id,
        "product_name": product_name,
        "color": normalize_option(raw.get("color")),
        "size": normalize_option(raw.get("size")),
        "quantity": quantity,
        "unit_price": unit_price,
    }


def normalize_line_items(raw_lines: Any) -> list[dict]:
    if not isinstance(raw_lines, list) or not raw_lines:
        raise ValidationError("lines must be a non-empty list")
    return [normalize_line_item(raw, position=i) for i, raw in enumerate(raw_lines, start=1)]


def enforce_rules_stock_adjust(patch: dict) -> None:
    if "delta" not in patch or patch["delta"] is None:
        raise ValidationError("delta is required")
    if patch["delta"] == 0:
        raise ValidationError("delta must be non-zero")


def enforce_rules_mileage_amount(amount: Any) -> int:
    value = coerce_int(amount, "amount")
    if value <= 0:
        raise ValidationError("amount must be > 0")
    return value
