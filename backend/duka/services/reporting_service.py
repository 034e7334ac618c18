# Overview: Service-layer operations for reporting; dashboard figures and CSV exports.

from __future__ import annotations

import csv
import io
from datetime import datetime

from sqlalchemy import func

from duka.extensions import db
from duka.models import Product, Sale, SaleItem
from duka.money_utils import format_cents
from duka.time_utils import parse_iso_datetime, to_utc_z
from .products_service import low_stock_products


SALES_CSV_COLUMNS = [
    "Receipt Number",
    "Date",
    "Product",
    "Quantity",
    "Price",
    "Subtotal",
    "Payment Method",
    "Cashier",
    "Total",
    "VAT",
    "Net",
]

PRODUCT_SALES_CSV_COLUMNS = [
    "Rank",
    "Product",
    "Quantity Sold",
    "Times Sold",
    "Revenue (Gross)",
    "VAT",
    "Net Revenue",
    "Profit",
    "Avg Price",
]

CSV_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ReportError(Exception):
    """Raised when report generation fails."""
    pass


def _parse_range(start: str | None, end: str | None) -> tuple[datetime | None, datetime | None]:
    try:
        start_dt = parse_iso_datetime(start) if start else None
        end_dt = parse_iso_datetime(end) if end else None
    except ValueError:
        raise ReportError("start / end must be ISO-8601 datetimes")
    if start_dt and end_dt and end_dt < start_dt:
        raise ReportError("end must be after start")
    return start_dt, end_dt


def _sale_filters(query, start_dt: datetime | None, end_dt: datetime | None, cashier_id: int | None = None):
    if start_dt:
        query = query.filter(Sale.created_at >= start_dt)
    if end_dt:
        query = query.filter(Sale.created_at <= end_dt)
    if cashier_id is not None:
        query = query.filter(Sale.cashier_id == cashier_id)
    return query


def dashboard_summary(*, start: str | None = None, end: str | None = None, cashier_id: int | None = None) -> dict:
    """
    Headline figures: sales count, revenue, VAT, profit, low stock.

    Profit is (unit price - unit cost) * quantity from the cost snapshot
    taken at checkout; lines without a cost snapshot count at zero cost.
    """
    start_dt, end_dt = _parse_range(start, end)

    totals = _sale_filters(
        db.session.query(
            func.count(Sale.id),
            func.coalesce(func.sum(Sale.total_cents), 0),
            func.coalesce(func.sum(Sale.vat_cents), 0),
        ),
        start_dt,
        end_dt,
        cashier_id,
    ).one()

    profit = _sale_filters(
        db.session.query(
            func.coalesce(
                func.sum(
                    (SaleItem.unit_price_cents - func.coalesce(SaleItem.unit_cost_cents, 0)) * SaleItem.quantity
                ),
                0,
            )
        ).join(Sale, Sale.id == SaleItem.sale_id),
        start_dt,
        end_dt,
        cashier_id,
    ).scalar()

    low_stock = low_stock_products()
    return {
        "start": to_utc_z(start_dt) if start_dt else None,
        "end": to_utc_z(end_dt) if end_dt else None,
        "sales_count": int(totals[0] or 0),
        "revenue_cents": int(totals[1] or 0),
        "vat_cents": int(totals[2] or 0),
        "profit_cents": int(profit or 0),
        "total_products": db.session.query(func.count(Product.id)).scalar() or 0,
        "low_stock_count": len(low_stock),
        "low_stock": [p.to_dict() for p in low_stock],
    }


def _write_csv(header: list[str], rows: list[list]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(header)
    writer.writerows(rows)
    return output.getvalue()


def sales_csv(*, start: str | None = None, end: str | None = None) -> str:
    """One row per sale item. VAT / Net are the line's inclusive VAT and Subtotal - VAT."""
    start_dt, end_dt = _parse_range(start, end)
    query = _sale_filters(
        db.session.query(SaleItem, Sale).join(Sale, Sale.id == SaleItem.sale_id),
        start_dt,
        end_dt,
    ).order_by(Sale.created_at.asc(), Sale.id.asc(), SaleItem.id.asc())

    rows = []
    for item, sale in query.all():
        rows.append(
            [
                sale.receipt_number,
                sale.created_at.strftime(CSV_DATE_FORMAT) if sale.created_at else "",
                item.product_name,
                item.quantity,
                format_cents(item.unit_price_cents),
                format_cents(item.subtotal_cents),
                sale.payment_method,
                sale.cashier_name or "",
                format_cents(sale.total_cents),
                format_cents(item.vat_cents),
                format_cents(item.subtotal_cents - item.vat_cents),
            ]
        )
    return _write_csv(SALES_CSV_COLUMNS, rows)


def product_sales_summary(*, start: str | None = None, end: str | None = None) -> list[dict]:
    """Per-product totals ranked by gross revenue, highest first."""
    start_dt, end_dt = _parse_range(start, end)
    revenue = func.coalesce(func.sum(SaleItem.subtotal_cents), 0)
    query = _sale_filters(
        db.session.query(
            SaleItem.product_name.label("product"),
            func.coalesce(func.sum(SaleItem.quantity), 0).label("quantity"),
            func.count(SaleItem.id).label("times_sold"),
            revenue.label("revenue_cents"),
            func.coalesce(func.sum(SaleItem.vat_cents), 0).label("vat_cents"),
            func.coalesce(
                func.sum(
                    (SaleItem.unit_price_cents - func.coalesce(SaleItem.unit_cost_cents, 0)) * SaleItem.quantity
                ),
                0,
            ).label("profit_cents"),
        ).join(Sale, Sale.id == SaleItem.sale_id),
        start_dt,
        end_dt,
    )
    rows = query.group_by(SaleItem.product_name).order_by(revenue.desc(), SaleItem.product_name.asc()).all()

    summary = []
    for rank, row in enumerate(rows, start=1):
        quantity = int(row.quantity or 0)
        revenue_cents = int(row.revenue_cents or 0)
        vat_cents = int(row.vat_cents or 0)
        summary.append(
            {
                "rank": rank,
                "product": row.product,
                "quantity_sold": quantity,
                "times_sold": int(row.times_sold or 0),
                "revenue_cents": revenue_cents,
                "vat_cents": vat_cents,
                "net_revenue_cents": revenue_cents - vat_cents,
                "profit_cents": int(row.profit_cents or 0),
                "avg_price_cents": round(revenue_cents / quantity) if quantity else 0,
            }
        )
    return summary


def product_sales_csv(*, start: str | None = None, end: str | None = None) -> str:
    rows = [
        [
            r["rank"],
            r["product"],
            r["quantity_sold"],
            r["times_sold"],
            format_cents(r["revenue_cents"]),
            format_cents(r["vat_cents"]),
            format_cents(r["net_revenue_cents"]),
            format_cents(r["profit_cents"]),
            format_cents(r["avg_price_cents"]),
        ]
        for r in product_sales_summary(start=start, end=end)
    ]
    return _write_csv(PRODUCT_SALES_CSV_COLUMNS, rows)
