"""
Reporting tests: dashboard figures and CSV exports.
"""

import csv
import io

import pytest

from duka.services.reporting_service import (
    PRODUCT_SALES_CSV_COLUMNS,
    ReportError,
    SALES_CSV_COLUMNS,
    dashboard_summary,
    product_sales_csv,
    product_sales_summary,
    sales_csv,
)
from duka.services.sales_service import checkout


@pytest.fixture
def sold(db_session, make_product, cashier_user, admin_user):
    soap = make_product("Dove Soap Bar", selling_price_cents=11600, buying_price_cents=8000, stock=10)
    lotion = make_product("Nivea Lotion", selling_price_cents=23200, buying_price_cents=15000, stock=3,
                          reorder_level=5)
    checkout([(soap.id, 2), (lotion.id, 1)], payment_method="cash", amount_paid_cents=50000, cashier=cashier_user)
    checkout([(soap.id, 1)], payment_method="mpesa", amount_paid_cents=None, cashier=admin_user)
    return soap, lotion


class TestDashboard:
    def test_totals(self, sold):
        summary = dashboard_summary()
        assert summary["sales_count"] == 2
        assert summary["revenue_cents"] == 3 * 11600 + 23200
        assert summary["vat_cents"] == 3 * 1600 + 3200
        assert summary["profit_cents"] == 3 * (11600 - 8000) + (23200 - 15000)
        assert summary["total_products"] == 2
        assert summary["low_stock_count"] == 1
        assert summary["low_stock"][0]["name"] == "Nivea Lotion"

    def test_cashier_scope(self, sold, cashier_user):
        summary = dashboard_summary(cashier_id=cashier_user.id)
        assert summary["sales_count"] == 1
        assert summary["revenue_cents"] == 2 * 11600 + 23200

    def test_bad_range(self, db_session):
        with pytest.raises(ReportError):
            dashboard_summary(start="2026-10-17T00:00:00Z", end="2026-10-01T00:00:00Z")
        with pytest.raises(ReportError):
            dashboard_summary(start="yesterday")


class TestExports:
    def test_sales_csv_one_row_per_item(self, sold):
        rows = list(csv.reader(io.StringIO(sales_csv())))
        assert rows[0] == SALES_CSV_COLUMNS
        assert len(rows) == 4
        first = dict(zip(rows[0], rows[1]))
        assert first["Product"] == "Dove Soap Bar"
        assert first["Quantity"] == "2"
        assert first["Subtotal"] == "232.00"
        assert first["VAT"] == "32.00"
        assert first["Net"] == "200.00"
        assert first["Cashier"] == "Test Cashier"

    def test_product_summary_ranked_by_revenue(self, sold):
        summary = product_sales_summary()
        assert [r["product"] for r in summary] == ["Dove Soap Bar", "Nivea Lotion"]
        soap = summary[0]
        assert soap["rank"] == 1
        assert soap["quantity_sold"] == 3
        assert soap["times_sold"] == 2
        assert soap["revenue_cents"] == 34800
        assert soap["net_revenue_cents"] == 34800 - 4800
        assert soap["avg_price_cents"] == 11600

    def test_product_sales_csv(self, sold):
        rows = list(csv.reader(io.StringIO(product_sales_csv())))
        assert rows[0] == PRODUCT_SALES_CSV_COLUMNS
        assert rows[1][:3] == ["1", "Dove Soap Bar", "3"]
