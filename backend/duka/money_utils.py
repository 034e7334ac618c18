from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


def parse_decimal(value: Any) -> Decimal:
    """
    Parse user-entered numeric text ("1,250.50", " 45 ", "KES 60") into a Decimal.

    Raises ValueError for blanks, exponent notation ("1e5"), NaN/Infinity and
    anything unparseable.
    """
    if isinstance(value, bool):
        raise ValueError("not a number")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        text = str(value if value is not None else "").strip()
        for token in ("KES", "KSh", "Ksh", "$", ","):
            text = text.replace(token, "")
        text = text.strip()
        if not text:
            raise ValueError("blank")
        if "e" in text.lower():
            raise ValueError(f"exponent notation not accepted: {value!r}")
        try:
            result = Decimal(text)
        except InvalidOperation:
            raise ValueError(f"not a number: {value!r}")
    if not result.is_finite():
        raise ValueError("not a finite number")
    return result


def to_cents(value: Any) -> int:
    """Decimal currency amount -> integer cents, rounding half-up."""
    amount = parse_decimal(value)
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def cents_to_decimal(cents: int | None) -> Decimal:
    return (Decimal(cents or 0) / 100).quantize(Decimal("0.01"))


def format_cents(cents: int | None) -> str:
    """1234567 -> '12345.67' (plain, for CSV)."""
    return f"{cents_to_decimal(cents):.2f}"


def format_money(cents: int | None, currency: str = "KES") -> str:
    """1234567 -> 'KES 12,345.67' (display)."""
    return f"{currency} {cents_to_decimal(cents):,.2f}"
