from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .time_utils import parse_iso_datetime


# Upper bound for any single money amount in minor units
MAX_PRICE_CENTS = 999_999_999_999
MAX_QUANTITY = 1_000_000
MAX_SALE_LINES = 100
MAX_NOTES_LENGTH = 500
SKU_MAX_LENGTH = 50


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = field(default_factory=set)


def coerce_int(value: Any, name: str, *, minimum: int | None = None, maximum: int | None = None) -> int:
    """
    Strict integer coercion: ints and plain-digit strings only.
    Rejects bools, floats, decimals and scientific notation.
    """
    if isinstance(value, bool):
        raise ValidationError(f"{name} must be an integer", {"field": name})
    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise ValidationError(f"{name} must be a plain integer", {"field": name})
        try:
            result = int(stripped)
        except ValueError:
            raise ValidationError(f"{name} must be an integer", {"field": name})
    else:
        raise ValidationError(f"{name} must be an integer", {"field": name})

    if minimum is not None and result < minimum:
        raise ValidationError(f"{name} must be >= {minimum}", {"field": name})
    if maximum is not None and result > maximum:
        raise ValidationError(f"{name} must be <= {maximum}", {"field": name})
    return result


def coerce_percent_bps(value: Any, name: str) -> int:
    """
    A percentage in [0, 100] (decimals allowed, e.g. 12.5) as basis points.
    At most two decimal places.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{name} must be a number", {"field": name})
    try:
        pct = Decimal(str(value).strip())
    except InvalidOperation:
        raise ValidationError(f"{name} must be a number", {"field": name})
    if not pct.is_finite():
        raise ValidationError(f"{name} must be a number", {"field": name})
    if pct < 0 or pct > 100:
        raise ValidationError(f"{name} must be between 0 and 100", {"field": name})
    bps = pct * 100
    if bps != bps.to_integral_value():
        raise ValidationError(f"{name} allows at most two decimal places", {"field": name})
    return int(bps)


def optional_str(value: Any, name: str, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be a string", {"field": name})
    stripped = value.strip()
    if not stripped:
        return None
    if max_length is not None and len(stripped) > max_length:
        raise ValidationError(f"{name} exceeds max length {max_length}", {"field": name})
    return stripped


def required_str(value: Any, name: str, *, max_length: int | None = None) -> str:
    result = optional_str(value, name, max_length=max_length)
    if result is None:
        raise ValidationError(f"{name} is required", {"field": name})
    return result


def optional_datetime(value: Any, name: str) -> datetime | None:
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{name} must be an ISO-8601 datetime", {"field": name})
    try:
        return parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 datetime", {"field": name})


def parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"1", "true", "yes", "on", "0", "false", "no", "off"}:
        return value.strip().lower() in {"1", "true", "yes", "on"}
    raise ValidationError(f"{name} must be a boolean", {"field": name})


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None
    if isinstance(coltype, Integer):
        return coerce_int(value, col.key)
    if isinstance(coltype, Boolean):
        return parse_bool(value, col.key)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        result = optional_datetime(value, col.key)
        if result is None:
            raise ValidationError(f"{col.key} must be an ISO-8601 datetime", {"field": col.key})
        return result
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
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}", {"missing": missing})

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields or k not in cols:
            raise ValidationError(f"Field not allowed: {k}", {"field": k})

    patch: dict = {}
    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", {"field": k})
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable and val == "":
            raise ValidationError(f"{k} cannot be blank", {"field": k})

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", {"field": k})

        patch[k] = val

    return patch


def enforce_rules_catalog_item(patch: dict) -> None:
    """Pricing and stock rules that column metadata cannot express."""
    for key in ("cost_price_cents", "selling_price_cents", "wholesale_price_cents"):
        value = patch.get(key)
        if value is None:
            continue
        if value < 0:
            raise ValidationError(f"{key} must be >= 0", {"field": key})
        if value > MAX_PRICE_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}", {"field": key})

    cost = patch.get("cost_price_cents") or 0
    selling = patch.get("selling_price_cents")
    if selling is not None and selling < cost:
        raise ValidationError(
            "selling_price_cents must be >= cost_price_cents",
            {"field": "selling_price_cents"},
        )

    for key in ("current_stock", "min_stock", "reorder_point", "tax_rate_bps"):
        value = patch.get(key)
        if value is not None and value < 0:
            raise ValidationError(f"{key} must be >= 0", {"field": key})

    if patch.get("sku"):
        patch["sku"] = patch["sku"].upper()
