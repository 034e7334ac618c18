# Overview: VAT and document totals shared by invoices and POS receipts.

"""
Totals Calculator

Two VAT conventions exist side by side and must not be unified:

- EXCLUSIVE (formal invoices): entered prices are net, VAT is added on top.
    vat   = subtotal * rate
    total = subtotal + vat
- INCLUSIVE (point-of-sale receipts): shelf prices already contain VAT,
  which is backed out for reporting.
    vat   = subtotal * rate / (1 + rate)
    total = subtotal

All amounts are integer cents and the rate is in basis points (1600 = 16%),
so every result is exact and reproducible. VAT is rounded half-up to the cent
per line; document totals are the sum of the line values, never a VAT
recomputed from the summed subtotal.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Iterable

from flask import current_app, has_app_context

DEFAULT_VAT_RATE_BPS = 1600
BPS_DENOMINATOR = 10_000


class VatMode(str, enum.Enum):
    EXCLUSIVE = "exclusive"
    INCLUSIVE = "inclusive"


@dataclass(frozen=True)
class Totals:
    subtotal_cents: int
    vat_cents: int
    total_cents: int

    def to_dict(self) -> dict:
        return {
            "subtotal_cents": self.subtotal_cents,
            "vat_cents": self.vat_cents,
            "total_cents": self.total_cents,
        }


ZERO_TOTALS = Totals(0, 0, 0)


def current_vat_rate_bps() -> int:
    if has_app_context():
        return int(current_app.config.get("VAT_RATE_BPS", DEFAULT_VAT_RATE_BPS))
    return DEFAULT_VAT_RATE_BPS


def _div_round_half_up(numerator: int, denominator: int) -> int:
    # Non-negative operands only
    return (2 * numerator + denominator) // (2 * denominator)


def vat_for_subtotal(subtotal_cents: int, mode: VatMode, rate_bps: int | None = None) -> int:
    if subtotal_cents < 0:
        raise ValueError("subtotal must be >= 0")
    rate = current_vat_rate_bps() if rate_bps is None else rate_bps
    if rate < 0:
        raise ValueError("VAT rate must be >= 0")
    if mode == VatMode.EXCLUSIVE:
        return _div_round_half_up(subtotal_cents * rate, BPS_DENOMINATOR)
    if mode == VatMode.INCLUSIVE:
        return _div_round_half_up(subtotal_cents * rate, BPS_DENOMINATOR + rate)
    raise ValueError(f"Unknown VAT mode: {mode}")


def line_totals(
    quantity: int,
    unit_price_cents: int,
    mode: VatMode,
    rate_bps: int | None = None,
) -> Totals:
    if quantity <= 0:
        raise ValueError("quantity must be > 0")
    if unit_price_cents < 0:
        raise ValueError("unit price must be >= 0")

    subtotal = quantity * unit_price_cents
    vat = vat_for_subtotal(subtotal, mode, rate_bps)
    if mode == VatMode.EXCLUSIVE:
        return Totals(subtotal, vat, subtotal + vat)
    return Totals(subtotal, vat, subtotal)


def document_totals(lines: Iterable[Totals]) -> Totals:
    subtotal = vat = total = 0
    for line in lines:
        subtotal += line.subtotal_cents
        vat += line.vat_cents
        total += line.total_cents
    return Totals(subtotal, vat, total)
