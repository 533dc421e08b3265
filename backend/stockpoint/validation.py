from __future__ import annotations
from datetime import date, datetime
from stockpoint.time_utils import parse_iso_datetime, parse_iso_date

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, Date, Integer, Numeric, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum price: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999


class ValidationError(ValueError):
    """400-level input problem."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., duplicate short name)."""


class NotFoundError(LookupError):
    """404-level: record missing or outside the caller's scope."""


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
            raise ValidationError(f"{field} must be an integer", field)
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)", field)
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)", field)
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer", field)
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal", field)
    raise ValidationError(f"{field} must be an integer", field)


def coerce_decimal(value: Any, field: str) -> Decimal:
    """Rates arrive as strings or numbers; floats go through str() to avoid binary noise."""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number", field)
    try:
        result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", field)
    if not result.is_finite():
        raise ValidationError(f"{field} must be a number", field)
    return result


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)

    if isinstance(coltype, Numeric):
        return coerce_decimal(value, col.key)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean", col.key)

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", col.key)
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", col.key)
            return dt
        raise ValidationError(f"{col.key} must be a datetime", col.key)

    if isinstance(coltype, Date):
        if isinstance(value, (date, str)):
            try:
                return parse_iso_date(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 date", col.key)
        raise ValidationError(f"{col.key} must be a date", col.key)

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
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", missing[0])

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", k)
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", k)

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", k)
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", k)

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", k)

        patch[k] = val

    return patch


def require_text(value: Any, field: str) -> str:
    text = str(value).strip() if value is not None else ""
    if not text:
        raise ValidationError(f"{field} is required", field)
    return text


def optional_text(value: Any, field: str) -> str | None:
    """Stripped string or None; anything other than a string is rejected."""
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field)
    return value.strip() or None


def enforce_rules_prices(patch: dict) -> None:
    """Every *_cents price in a product patch must be within [0, MAX_PRICE_CENTS]."""
    for key in ("mrp_cents", "sale_rate_cents", "purchase_rate_cents"):
        if key not in patch or patch[key] is None:
            continue
        price = patch[key]
        if price < 0:
            raise ValidationError(f"{key} must be >= 0", key)
        if price > MAX_PRICE_CENTS:
            raise ValidationError(
                f"{key} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})", key
            )


def enforce_rules_stock_line(line: dict, index: int) -> dict:
    """Normalize one stock-in line; quantity must be > 0."""
    if not isinstance(line, dict):
        raise ValidationError(f"items[{index}] must be an object", "items")
    if line.get("product_id") is None:
        raise ValidationError(f"items[{index}].product_id is required", "product_id")
    product_id = coerce_int(line["product_id"], "product_id")
    quantity = coerce_int(line.get("quantity"), "quantity")
    if quantity <= 0:
        raise ValidationError("quantity must be > 0", "quantity")
    pricing = {}
    for key in ("mrp_cents", "sale_rate_cents", "purchase_rate_cents"):
        if line.get(key) is not None:
            pricing[key] = coerce_int(line[key], key)
    enforce_rules_prices(pricing)
    try:
        expiry = parse_iso_date(line.get("expiry_date"))
    except ValueError:
        raise ValidationError("expiry_date must be an ISO-8601 date", "expiry_date")
    return {
        "product_id": product_id,
        "quantity": quantity,
        "pricing": pricing,
        "batch_number": (str(line["batch_number"]).strip() or None) if line.get("batch_number") else None,
        "expiry_date": expiry,
        "location": optional_text(line.get("location"), "location"),
        "remark": optional_text(line.get("remark"), "remark"),
    }


def enforce_rules_adjustment(quantity: Any, reason: Any) -> tuple[int, str]:
    qty = coerce_int(quantity, "quantity")
    if qty == 0:
        raise ValidationError("quantity must be non-zero", "quantity")
    return qty, require_text(reason, "reason")


def enforce_rules_transfer_items(items: Any) -> list[tuple[int, int]]:
    """
    Transfer lines as (product_id, quantity) pairs.

    Rejects an empty list, non-positive quantities and a product named twice.
    """
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list", "items")
    seen: set[int] = set()
    lines: list[tuple[int, int]] = []
    for i, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object", "items")
        product_id = coerce_int(raw.get("product_id"), "product_id")
        quantity = coerce_int(raw.get("quantity"), "quantity")
        if quantity <= 0:
            raise ValidationError("quantity must be > 0", "quantity")
        if product_id in seen:
            raise ValidationError(f"Product {product_id} appears more than once", "items")
        seen.add(product_id)
        lines.append((product_id, quantity))
    return lines
