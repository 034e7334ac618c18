from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable

from sqlalchemy import Boolean, Date, DateTime, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from duka.time_utils import parse_iso_date, parse_iso_datetime
from .money_utils import parse_decimal


# Largest accepted price: KES 9,999,999.99
MAX_PRICE_CENTS = 999_999_999


class ValidationError(ValueError):
    """Bad client input (HTTP 400)."""


class ConflictError(ValueError):
    """Input that clashes with stored data, e.g. a barcode already in use (HTTP 409)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    What an API client may write on a model.

    writable_fields: allowlist; any other key in a payload is rejected
    required_on_create: keys a create payload must carry
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = field(default_factory=frozenset)


def _as_int(key: str, value: Any) -> int:
    # bool is an int subclass but never a valid amount
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal")
    text = str(value).strip()
    if not text.lstrip("-").isdigit():
        raise ValidationError(f"{key} must be a plain integer (no decimals or exponents)")
    return int(text)


def _as_quantity(key: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValidationError(f"{key} must be a number")
    try:
        return parse_decimal(value)
    except ValueError:
        raise ValidationError(f"{key} must be a number")


def _as_datetime(key: str, value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        parsed = parse_iso_datetime(str(value))
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 datetime")
    return parsed


def _as_date(key: str, value: Any) -> date:
    try:
        parsed = parse_iso_date(value)
    except ValueError:
        parsed = None
    if parsed is None:
        raise ValidationError(f"{key} must be an ISO-8601 date")
    return parsed


def _as_text(key: str, value: Any) -> str:
    return str(value).strip()


# Checked in order: DateTime before Date, Integer before Numeric
_COERCERS: list[tuple[type, Callable[[str, Any], Any]]] = [
    (Boolean, lambda key, value: bool(value)),
    (Integer, _as_int),
    (Numeric, _as_quantity),
    (DateTime, _as_datetime),
    (Date, _as_date),
    (String, _as_text),
    (Text, _as_text),
]


def coerce_column_value(col, value: Any) -> Any:
    """Convert raw JSON input to the Python type of a mapped column."""
    if value is None:
        return None
    for column_type, coerce in _COERCERS:
        if isinstance(col.type, column_type):
            return coerce(col.key, value)
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Check a JSON body against the policy and the model's columns and return
    a clean patch dict.

    partial=False is create: every required_on_create key must be present.
    partial=True is update: only the keys sent are checked.
    Blank optional text becomes NULL; blank required text is an error.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    columns = {c.key: c for c in model.__mapper__.columns}

    if not partial:
        missing = sorted(policy.required_on_create - payload.keys())
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    patch: dict = {}
    for key, raw in payload.items():
        if key not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {key}")
        col = columns.get(key)
        if col is None:
            raise ValidationError(f"Unknown field: {key}")

        value = coerce_column_value(col, raw)
        if value == "" and isinstance(col.type, (String, Text)):
            value = None
        if value is None and not col.nullable:
            raise ValidationError(f"{key} cannot be blank")

        length = getattr(col.type, "length", None)
        if length and isinstance(value, str) and len(value) > length:
            raise ValidationError(f"{key} exceeds max length {length}")
        patch[key] = value
    return patch


def enforce_rules_product(patch: dict) -> None:
    """Product rules the column types cannot express: price range and non-negative quantities."""
    for key in ("buying_price_cents", "selling_price_cents"):
        price = patch.get(key)
        if price is None:
            continue
        if price < 0:
            raise ValidationError(f"{key} must be >= 0")
        if price > MAX_PRICE_CENTS:
            raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS} (KES {MAX_PRICE_CENTS / 100:,.2f})")

    for key in ("stock", "reorder_level"):
        quantity = patch.get(key)
        if quantity is not None and Decimal(quantity) < 0:
            raise ValidationError(f"{key} must be >= 0")


def require_date(value: Any, key: str) -> date:
    """Parse a required ISO date field (invoice issue / due / payment dates)."""
    if value in (None, ""):
        raise ValidationError(f"{key} is required")
    return _as_date(key, value)
