"""
VAT and totals tests.

Verifies:
- Exclusive (invoice) and inclusive (receipt) VAT on a single line
- Half-up rounding of the VAT cent
- Document totals are the sum of line values, not recomputed from the aggregate
- Invalid line inputs are rejected
"""

import pytest

from duka.services.tax_service import (
    Totals,
    VatMode,
    document_totals,
    line_totals,
    vat_for_subtotal,
)


class TestLineTotals:
    def test_exclusive_adds_vat_on_top(self):
        line = line_totals(2, 5000, VatMode.EXCLUSIVE, 1600)
        assert line == Totals(subtotal_cents=10000, vat_cents=1600, total_cents=11600)

    def test_inclusive_backs_vat_out_of_the_price(self):
        line = line_totals(1, 11600, VatMode.INCLUSIVE, 1600)
        assert line == Totals(subtotal_cents=11600, vat_cents=1600, total_cents=11600)

    def test_inclusive_total_equals_subtotal(self):
        line = line_totals(3, 6500, VatMode.INCLUSIVE, 1600)
        assert line.total_cents == line.subtotal_cents == 19500
        # 19500 * 1600 / 11600 = 2689.65... -> 2690
        assert line.vat_cents == 2690

    def test_half_cent_rounds_up(self):
        # 10 * 500 / 10000 = 0.5
        assert vat_for_subtotal(10, VatMode.EXCLUSIVE, 500) == 1
        # 9 * 500 / 10000 = 0.45
        assert vat_for_subtotal(9, VatMode.EXCLUSIVE, 500) == 0

    def test_default_rate_comes_from_config(self, app):
        with app.app_context():
            line = line_totals(1, 10000, VatMode.EXCLUSIVE)
        assert line.vat_cents == 1600

    def test_zero_price_is_allowed(self):
        assert line_totals(4, 0, VatMode.EXCLUSIVE, 1600) == Totals(0, 0, 0)

    @pytest.mark.parametrize("quantity,price", [(0, 100), (-1, 100), (1, -1)])
    def test_invalid_lines_rejected(self, quantity, price):
        with pytest.raises(ValueError):
            line_totals(quantity, price, VatMode.EXCLUSIVE, 1600)


class TestDocumentTotals:
    def test_sum_of_lines(self):
        lines = [
            line_totals(1, 10000, VatMode.EXCLUSIVE, 1600),
            line_totals(2, 2550, VatMode.EXCLUSIVE, 1600),
        ]
        totals = document_totals(lines)
        assert totals.subtotal_cents == 15100
        assert totals.vat_cents == sum(l.vat_cents for l in lines)
        assert totals.total_cents == totals.subtotal_cents + totals.vat_cents

    def test_not_recomputed_from_aggregate(self):
        # Each 3-cent line carries 0.48 -> 0 VAT; the 9-cent aggregate would give 1
        lines = [line_totals(1, 3, VatMode.EXCLUSIVE, 1600) for _ in range(3)]
        totals = document_totals(lines)
        assert totals.subtotal_cents == 9
        assert totals.vat_cents == 0
        assert vat_for_subtotal(9, VatMode.EXCLUSIVE, 1600) == 1

    def test_empty_document(self):
        assert document_totals([]) == Totals(0, 0, 0)
