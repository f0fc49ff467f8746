from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .time_utils import parse_iso_datetime, parse_range_end


# Hard ceilings on single requests; larger values are data entry mistakes
MAX_REQUEST_KG = Decimal("10000")
MAX_REQUEST_BOXES = 1000
MAX_MONEY = Decimal("9999999.99")

KG_QUANTUM = Decimal("0.001")
MONEY_QUANTUM = Decimal("0.01")
KG_PLACES = 3
MONEY_PLACES = 2


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., a second pending proposal)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for create requests
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def parse_int(value: Any, field: str, *, minimum: int | None = 0, maximum: int | None = None) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{field} must be a plain integer")
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    elif isinstance(value, Decimal) and value == value.to_integral_value():
        result = int(value)
    else:
        raise ValidationError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}")
    return result


def parse_decimal(
    value: Any,
    field: str,
    *,
    minimum: Decimal | None = Decimal("0"),
    maximum: Decimal | None = None,
    positive: bool = False,
    places: int | None = None,
) -> Decimal:
    """
    Coerce a JSON number or numeric string into a finite Decimal.

    Floats go through str() so 2.6 becomes Decimal("2.6"), not its binary
    expansion. places rejects values the target column would round.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, float)):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number")
    else:
        raise ValidationError(f"{field} must be a number")

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    if positive and result <= 0:
        raise ValidationError(f"{field} must be > 0")
    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}")
    if maximum is not None and result > maximum:
        raise ValidationError(f"{field} must be <= {maximum}")
    if places is not None and -result.normalize().as_tuple().exponent > places:
        raise ValidationError(f"{field} supports at most {places} decimal places")
    return result


def parse_kg(value: Any, field: str, *, signed: bool = False) -> Decimal:
    """Kg quantity at the 3-place scale of every kg column."""
    return parse_decimal(value, field, minimum=None if signed else Decimal("0"), places=KG_PLACES)


def parse_text(value: Any, field: str, *, max_length: int | None = None, required: bool = True) -> str | None:
    if value is None:
        if required:
            raise ValidationError(f"{field} is required")
        return None
    text = str(value).strip()
    if not text:
        if required:
            raise ValidationError(f"{field} cannot be blank")
        return None
    if max_length is not None and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return text


def require_choice(value: Any, field: str, choices) -> str:
    if value not in choices:
        raise ValidationError(
            f"Invalid {field} '{value}'. Must be one of: {', '.join(sorted(choices))}"
        )
    return value


def decimal_str(value) -> str | None:
    """Serialize a Decimal for JSON without losing precision."""
    if value is None:
        return None
    return str(value)


def to_decimal(value) -> Decimal:
    """Normalize values read back from Numeric columns (SQLite may hand back floats)."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be a boolean")

    if isinstance(coltype, Integer):
        return parse_int(value, col.key)

    # Numeric after Integer: quantities, ratios and money are never negative
    if isinstance(coltype, Numeric):
        return parse_decimal(value, col.key, maximum=MAX_MONEY, places=coltype.scale)

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
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
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


def enforce_rules_product(patch: dict) -> None:
    """
    Business rules that are not captured by SQLAlchemy metadata alone.
    """
    ratio = patch.get("box_to_kg_ratio")
    if ratio is not None and ratio <= 0:
        raise ValidationError("box_to_kg_ratio must be > 0")


def enforce_sale_request(requested_kg: Decimal, requested_boxes: int) -> None:
    if requested_kg != requested_kg.quantize(KG_QUANTUM):
        raise ValidationError("requested_kg supports at most 3 decimal places")
    if requested_kg == 0 and requested_boxes == 0:
        raise ValidationError("At least one of requested_kg or requested_boxes must be greater than 0")
    if requested_kg > MAX_REQUEST_KG:
        raise ValidationError(f"requested_kg cannot exceed {MAX_REQUEST_KG}")
    if requested_boxes > MAX_REQUEST_BOXES:
        raise ValidationError(f"requested_boxes cannot exceed {MAX_REQUEST_BOXES}")


def parse_date_filter(value: Any, field: str, *, end: bool = False) -> datetime | None:
    """ISO date/datetime filter bound; a bare date as an end bound covers the whole day."""
    if value is None or value == "" or isinstance(value, datetime):
        return value or None
    try:
        return parse_range_end(str(value)) if end else parse_iso_datetime(str(value))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date or datetime")
