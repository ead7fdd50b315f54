from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError


# Maximum price: R$ 9.999.999,99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999
MAX_QUANTITY = 1_000_000

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


# Order header fields a client may patch. order_number, status and the
# derived money columns are deliberately absent.
ORDER_TERMS_POLICY = ModelValidationPolicy(
    writable_fields={
        "payment_terms",
        "delivery_terms",
        "validity_terms",
        "notes",
        "shipping_cost_cents",
        "contact_preference",
        "salesperson_id",
    },
)

ORDER_CREATE_POLICY = ModelValidationPolicy(
    writable_fields=ORDER_TERMS_POLICY.writable_fields | {"customer_email"},
    required_on_create={"customer_email"},
)


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer")
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{key} must be a plain integer (scientific notation not allowed)")
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer")
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    raise ValidationError(f"{key} must be an integer")


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
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

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
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

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", details={"field": k})
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", details={"field": k})

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def validate_email(value: Any, field: str = "customer_email") -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", details={"field": field})
    email = value.strip()
    if not EMAIL_RE.match(email):
        raise ValidationError(f"{field} is not a valid email address", details={"field": field})
    return email


def validate_price_cents(key: str, value: Any) -> int:
    price = coerce_int(key, value)
    if price < 0:
        raise ValidationError(f"{key} must be >= 0")
    if price > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}")
    return price


def validate_quantity(value: Any) -> int:
    quantity = coerce_int("quantity", value)
    if quantity < 1:
        raise ValidationError("quantity must be >= 1", details={"field": "quantity"})
    if quantity > MAX_QUANTITY:
        raise ValidationError(f"quantity cannot exceed {MAX_QUANTITY}", details={"field": "quantity"})
    return quantity


def validate_variants(value: Any) -> dict[str, str]:
    """selected_variants must be a str -> str mapping (None means no selection)."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationError("selected_variants must be an object")
    variants = {}
    for k, v in value.items():
        if not isinstance(k, str) or not k.strip():
            raise ValidationError("selected_variants keys must be non-empty strings")
        if not isinstance(v, str):
            raise ValidationError(f"selected_variants['{k}'] must be a string")
        variants[k.strip()] = v.strip()
    return variants


def enforce_rules_order_terms(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    Keep these small and centralized.
    """
    if "shipping_cost_cents" in patch:
        patch["shipping_cost_cents"] = validate_price_cents("shipping_cost_cents", patch["shipping_cost_cents"])


ITEM_FIELDS = {
    "product_id",
    "custom_name",
    "custom_image_url",
    "quantity",
    "unit_price_cents",
    "selected_variants",
}


def validate_item_payload(payload: Any, *, partial: bool = False) -> dict:
    """
    Normalize one order item.

    Create: quantity >= 1 and unit_price_cents >= 0 are required, and the
    line references either a product (product_id) or is ad-hoc (custom_name).
    Patch: only the given keys are validated; product_id cannot change.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Invalid item payload")

    for k in payload.keys():
        if k not in ITEM_FIELDS:
            raise ValidationError(f"Field not allowed: {k}", details={"field": k})

    clean: dict = {}

    if partial:
        if "product_id" in payload:
            raise ValidationError("product_id cannot be changed; remove and re-add the item")
    else:
        for required in ("quantity", "unit_price_cents"):
            if payload.get(required) is None:
                raise ValidationError(f"{required} is required", details={"field": required})

        product_id = payload.get("product_id")
        custom_name = payload.get("custom_name")
        custom_name = custom_name.strip() if isinstance(custom_name, str) else ""
        if product_id is None and not custom_name:
            raise ValidationError("Item requires product_id or custom_name")
        clean["product_id"] = coerce_int("product_id", product_id) if product_id is not None else None

    if "quantity" in payload:
        clean["quantity"] = validate_quantity(payload["quantity"])
    if "unit_price_cents" in payload:
        clean["unit_price_cents"] = validate_price_cents("unit_price_cents", payload["unit_price_cents"])
    if "selected_variants" in payload or not partial:
        clean["selected_variants"] = validate_variants(payload.get("selected_variants"))

    for key, limit in (("custom_name", 255), ("custom_image_url", 1024)):
        if key in payload:
            raw = payload[key]
            if raw is None:
                clean[key] = None
                continue
            if not isinstance(raw, str):
                raise ValidationError(f"{key} must be a string")
            val = raw.strip() or None
            if val and len(val) > limit:
                raise ValidationError(f"{key} exceeds max length {limit}")
            clean[key] = val

    return clean
