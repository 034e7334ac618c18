# Overview: Service-layer operations for POS checkout and sale lookups.

from __future__ import annotations

from collections import OrderedDict
from datetime import date
from decimal import Decimal
from typing import Any, Iterable

from flask import current_app

from ..extensions import db
from ..models import Product, Sale, SaleItem, User
from duka.time_utils import today as utc_today
from .concurrency import lock_by_ids
from .document_service import SCOPE_RECEIPT, next_daily_number
from .tax_service import VatMode, document_totals, line_totals


SALE_PAYMENT_METHODS = ("cash", "mpesa", "card")
RECEIPT_PREFIX = "RCP"
RECEIPT_PAD = 6

DEFAULT_LIST_LIMIT = 50


class SaleError(Exception):
    """Raised when a checkout is rejected. Nothing has been written."""
    pass


def _merge_cart(cart: Iterable[Any]) -> "OrderedDict[int, int]":
    """
    Accepts [{"product_id": 1, "quantity": 2}, ...] or [(1, 2), ...].
    Lines for the same product are merged, first-seen order kept.
    """
    merged: "OrderedDict[int, int]" = OrderedDict()
    for line in cart or []:
        if isinstance(line, dict):
            product_id, quantity = line.get("product_id"), line.get("quantity")
        else:
            product_id, quantity = line
        if isinstance(product_id, bool) or not isinstance(product_id, int):
            raise SaleError("product_id must be an integer")
        if isinstance(quantity, bool) or not isinstance(quantity, int):
            raise SaleError("quantity must be a whole number")
        if quantity <= 0:
            raise SaleError("quantity must be > 0")
        merged[product_id] = merged.get(product_id, 0) + quantity
    return merged


def checkout(
    cart: Iterable[Any],
    *,
    payment_method: str,
    amount_paid_cents: int | None,
    cashier: User,
    today: date | None = None,
) -> Sale:
    """
    Ring up a sale.

    Shelf prices are VAT-inclusive: the receipt total equals the sum of
    line subtotals and VAT is the portion contained in it. Stock is
    decremented under a row lock; the receipt number comes from the daily
    sequence (RCP-YYYYMMDD-NNNNNN).
    """
    merged = _merge_cart(cart)
    if not merged:
        raise SaleError("Cart is empty")
    if payment_method not in SALE_PAYMENT_METHODS:
        raise SaleError(f"payment_method must be one of: {', '.join(SALE_PAYMENT_METHODS)}")

    # Rows are locked in id order
    products = lock_by_ids(Product, merged)

    lines = []
    items = []
    for product_id, quantity in merged.items():
        product = products.get(product_id)
        if not product:
            db.session.rollback()
            raise SaleError(f"Product {product_id} not found")
        if Decimal(product.stock or 0) < quantity:
            db.session.rollback()
            raise SaleError(f"Insufficient stock for {product.name} (available: {product.stock})")
        line = line_totals(quantity, product.selling_price_cents, VatMode.INCLUSIVE)
        lines.append(line)
        items.append(
            SaleItem(
                product_id=product.id,
                product_name=product.name,
                quantity=quantity,
                unit_price_cents=product.selling_price_cents,
                subtotal_cents=line.subtotal_cents,
                vat_cents=line.vat_cents,
                unit_cost_cents=product.buying_price_cents,
            )
        )

    totals = document_totals(lines)
    if amount_paid_cents is None and payment_method != "cash":
        amount_paid_cents = totals.total_cents
    if isinstance(amount_paid_cents, bool) or not isinstance(amount_paid_cents, int):
        db.session.rollback()
        raise SaleError("amount_paid_cents must be an integer")
    if amount_paid_cents < totals.total_cents:
        db.session.rollback()
        raise SaleError("Amount paid is less than the total")

    for product_id, quantity in merged.items():
        product = products[product_id]
        product.stock = Decimal(product.stock) - quantity

    sale = Sale(
        receipt_number=next_daily_number(
            scope=SCOPE_RECEIPT, prefix=RECEIPT_PREFIX, on=today or utc_today(), pad=RECEIPT_PAD
        ),
        payment_method=payment_method,
        subtotal_cents=totals.subtotal_cents,
        vat_cents=totals.vat_cents,
        total_cents=totals.total_cents,
        amount_paid_cents=amount_paid_cents,
        change_cents=amount_paid_cents - totals.total_cents,
        cashier_id=cashier.id if cashier else None,
        cashier_name=cashier.full_name if cashier else None,
    )
    sale.items = items
    db.session.add(sale)
    db.session.commit()

    current_app.logger.info("Sale %s: %s cents by %s", sale.receipt_number, sale.total_cents, sale.cashier_name)
    return sale


def list_sales(*, viewer: User, cashier_id: int | None = None, limit: int = DEFAULT_LIST_LIMIT) -> list[Sale]:
    """Most recent first. Cashiers only ever see their own sales."""
    if not viewer.is_admin:
        cashier_id = viewer.id
    limit = max(1, min(int(limit or DEFAULT_LIST_LIMIT), 500))
    query = db.session.query(Sale)
    if cashier_id is not None:
        query = query.filter(Sale.cashier_id == cashier_id)
    return query.order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()


def get_sale(sale_id: int, *, viewer: User) -> Sale | None:
    sale = db.session.get(Sale, sale_id)
    if not sale:
        return None
    if not viewer.is_admin and sale.cashier_id != viewer.id:
        return None
    return sale
