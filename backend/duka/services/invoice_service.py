# Overview: Service-layer operations for invoices; totals, lifecycle transitions and payments.

"""
Invoice Lifecycle

STATE MACHINE:
    draft --finalize--> sent --(due date passes, balance > 0)--> overdue
    sent / overdue --(balance reaches 0)--> paid
    draft / sent / overdue --cancel (admin)--> cancelled

paid and cancelled are terminal: no payments, edits or transitions.

MONEY:
- All amounts are integer cents.
- Invoice prices are VAT-exclusive: VAT is computed per line and added on top.
- Document totals are the sum of the line values, so the printed lines
  always add up to the printed total.
- balance_due = total - amount_paid, and never goes negative because
  overpayment is rejected.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from flask import current_app, render_template
from sqlalchemy import func, or_

from ..extensions import db
from ..models import Invoice, InvoiceItem, InvoicePayment, Product, User
from ..models.invoices import (
    STATUS_CANCELLED,
    STATUS_DRAFT,
    STATUS_OVERDUE,
    STATUS_PAID,
    STATUS_SENT,
    INVOICE_STATUSES,
)
from ..money_utils import format_money, to_cents
from ..validation import ValidationError, require_date
from duka.time_utils import today as utc_today, utcnow
from .concurrency import lock_for_update
from .document_service import SCOPE_INVOICE, next_daily_number
from .tax_service import Totals, VatMode, current_vat_rate_bps, document_totals, line_totals


PAYMENT_METHOD_CASH = "cash"
PAYMENT_METHOD_MPESA = "mpesa"
PAYMENT_METHOD_CARD = "card"
PAYMENT_METHOD_BANK_TRANSFER = "bank_transfer"

PAYMENT_METHODS = (
    PAYMENT_METHOD_CASH,
    PAYMENT_METHOD_MPESA,
    PAYMENT_METHOD_CARD,
    PAYMENT_METHOD_BANK_TRANSFER,
)

INVOICE_PREFIX = "INV"

# Statuses whose status depends on the calendar / balance
OPEN_STATUSES = (STATUS_SENT, STATUS_OVERDUE)
EDITABLE_STATUSES = (STATUS_DRAFT, STATUS_SENT, STATUS_OVERDUE)


class InvoiceError(Exception):
    """Raised when invoice operations fail."""
    pass


class InvoiceNotFoundError(InvoiceError):
    pass


class InvoicePermissionError(InvoiceError):
    pass


class InvoiceValidationError(ValidationError):
    """Bad input or a disallowed transition. Nothing has been written."""
    pass


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _get_invoice(invoice_id: int, *, for_update: bool = False) -> Invoice:
    query = db.session.query(Invoice).filter_by(id=invoice_id)
    if for_update:
        query = lock_for_update(query)
    invoice = query.first()
    if not invoice:
        raise InvoiceNotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def _text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _price_cents(item: dict, position: int) -> int:
    if item.get("unit_price_cents") is not None:
        value = item["unit_price_cents"]
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvoiceValidationError(f"Item {position}: unit_price_cents must be an integer")
        return value
    if item.get("unit_price") is not None:
        try:
            return to_cents(item["unit_price"])
        except ValueError:
            raise InvoiceValidationError(f"Item {position}: unit_price must be a number")
    raise InvoiceValidationError(f"Item {position}: unit price is required")


def _quantity(item: dict, position: int) -> int:
    value = item.get("quantity")
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvoiceValidationError(f"Item {position}: quantity must be a whole number")
    return value


def build_items(items: list[dict] | None, rate_bps: int | None = None) -> tuple[list[InvoiceItem], Totals]:
    """Validate line payloads and compute per-line and document totals (VAT-exclusive)."""
    if not items:
        raise InvoiceValidationError("At least one item is required")

    rate = current_vat_rate_bps() if rate_bps is None else rate_bps
    built: list[InvoiceItem] = []
    lines: list[Totals] = []
    for position, item in enumerate(items, start=1):
        if not isinstance(item, dict):
            raise InvoiceValidationError(f"Item {position}: must be an object")
        description = _text(item.get("description"))
        product_id = item.get("product_id")
        if not description and product_id:
            product = db.session.get(Product, product_id)
            description = product.name if product else None
        if not description:
            raise InvoiceValidationError(f"Item {position}: description is required")

        quantity = _quantity(item, position)
        price = _price_cents(item, position)
        if quantity <= 0:
            raise InvoiceValidationError(f"Item {position}: quantity must be > 0")
        if price < 0:
            raise InvoiceValidationError(f"Item {position}: unit price must be >= 0")

        line = line_totals(quantity, price, VatMode.EXCLUSIVE, rate)
        lines.append(line)
        built.append(
            InvoiceItem(
                product_id=product_id,
                position=position,
                description=description,
                quantity=quantity,
                unit_price_cents=price,
                subtotal_cents=line.subtotal_cents,
                vat_cents=line.vat_cents,
                total_cents=line.total_cents,
            )
        )
    return built, document_totals(lines)


def _apply_totals(invoice: Invoice, totals: Totals) -> None:
    invoice.subtotal_cents = totals.subtotal_cents
    invoice.vat_cents = totals.vat_cents
    invoice.total_cents = totals.total_cents
    invoice.balance_due_cents = totals.total_cents - (invoice.amount_paid_cents or 0)


def _resolve_dates(issue_date: Any, due_date: Any) -> tuple[date, date]:
    issue = require_date(issue_date, "issue_date") if issue_date not in (None, "") else utc_today()
    if due_date in (None, ""):
        due = issue + timedelta(days=current_app.config.get("INVOICE_DEFAULT_TERMS_DAYS", 30))
    else:
        due = require_date(due_date, "due_date")
    if due < issue:
        raise InvoiceValidationError("due_date must be on or after issue_date")
    return issue, due


def _apply_customer(invoice: Invoice, data: dict) -> None:
    name = _text(data.get("customer_name"))
    if not name:
        raise InvoiceValidationError("Customer name is required")
    invoice.customer_name = name
    invoice.customer_phone = _text(data.get("customer_phone"))
    invoice.customer_email = _text(data.get("customer_email"))
    invoice.customer_address = _text(data.get("customer_address"))


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def create_invoice(data: dict, *, created_by_user_id: int | None = None) -> Invoice:
    """
    Create a draft invoice. Drafts carry no invoice number.

    data: customer_name (required), customer_phone, customer_email,
    customer_address, issue_date, due_date, payment_terms, notes, items.
    """
    invoice = Invoice(status=STATUS_DRAFT, created_by_user_id=created_by_user_id, amount_paid_cents=0)
    _apply_customer(invoice, data)
    invoice.issue_date, invoice.due_date = _resolve_dates(data.get("issue_date"), data.get("due_date"))
    terms_days = (invoice.due_date - invoice.issue_date).days
    invoice.payment_terms = _text(data.get("payment_terms")) or f"Net {terms_days}"
    invoice.notes = _text(data.get("notes"))

    items, totals = build_items(data.get("items"))
    invoice.items = items
    _apply_totals(invoice, totals)

    db.session.add(invoice)
    db.session.commit()
    return invoice


def update_invoice(invoice_id: int, data: dict, *, today: date | None = None) -> Invoice:
    """
    Replace an invoice's customer details, dates and all of its lines.

    Allowed for drafts, and for sent / overdue invoices that have not
    received any payment (the number is kept and the invoice re-issued).
    A paid-into draft may not be edited below the amount already paid.
    """
    invoice = _get_invoice(invoice_id, for_update=True)
    if invoice.status not in EDITABLE_STATUSES:
        raise InvoiceValidationError(f"Cannot edit a {invoice.status} invoice")
    if invoice.status != STATUS_DRAFT and invoice.payments:
        raise InvoiceValidationError("Cannot edit an invoice that has payments")

    merged = {**invoice.to_dict(include_items=False, include_payments=False), **data}
    issue, due = _resolve_dates(merged.get("issue_date"), merged.get("due_date"))
    items, totals = build_items(data.get("items") if "items" in data else [i.to_dict() for i in invoice.items])
    if totals.total_cents < (invoice.amount_paid_cents or 0):
        raise InvoiceValidationError(
            f"New total {format_money(totals.total_cents)} is below the "
            f"{format_money(invoice.amount_paid_cents)} already paid"
        )
    _apply_customer(invoice, merged)

    invoice.issue_date, invoice.due_date = issue, due
    if "payment_terms" in data:
        invoice.payment_terms = _text(data.get("payment_terms")) or f"Net {(due - issue).days}"
    if "notes" in data:
        invoice.notes = _text(data.get("notes"))

    invoice.items = items
    _apply_totals(invoice, totals)

    # A re-issued invoice is judged against its (possibly new) due date
    if invoice.status == STATUS_OVERDUE:
        invoice.status = STATUS_SENT
    refresh_status(invoice, today)
    invoice.updated_at = utcnow()
    db.session.commit()
    return invoice


def finalize_invoice(invoice_id: int, *, today: date | None = None) -> Invoice:
    """draft -> sent. Assigns INV-YYYYMMDD-NNNN and applies the overdue rule immediately."""
    today = today or utc_today()
    invoice = _get_invoice(invoice_id, for_update=True)
    if invoice.status != STATUS_DRAFT:
        raise InvoiceValidationError(f"Only draft invoices can be finalized (invoice is {invoice.status})")
    if not invoice.items:
        raise InvoiceValidationError("Cannot finalize an invoice without items")

    invoice.invoice_number = next_daily_number(scope=SCOPE_INVOICE, prefix=INVOICE_PREFIX, on=today)
    invoice.status = STATUS_SENT
    invoice.finalized_at = utcnow()
    invoice.updated_at = invoice.finalized_at
    refresh_status(invoice, today)
    db.session.commit()

    current_app.logger.info("Finalized invoice %s (%s)", invoice.invoice_number, invoice.status)
    return invoice


def refresh_status(invoice: Invoice, today: date | None = None) -> bool:
    """
    Bring a sent / overdue invoice's status in line with its balance and due date.

    Returns True when the status changed. Idempotent: a second call with the
    same date changes nothing and leaves updated_at alone. Does not commit.
    """
    if invoice.status not in OPEN_STATUSES:
        return False
    today = today or utc_today()

    new_status = invoice.status
    if invoice.balance_due_cents <= 0:
        new_status = STATUS_PAID
    elif invoice.status == STATUS_SENT and today > invoice.due_date:
        new_status = STATUS_OVERDUE

    if new_status == invoice.status:
        return False
    invoice.status = new_status
    invoice.updated_at = utcnow()
    return True


def refresh_statuses(today: date | None = None) -> int:
    """Refresh every open invoice; commits only when something changed."""
    changed = 0
    for invoice in db.session.query(Invoice).filter(Invoice.status.in_(OPEN_STATUSES)).all():
        if refresh_status(invoice, today):
            changed += 1
    if changed:
        db.session.commit()
    return changed


def record_payment(
    invoice_id: int,
    *,
    amount_cents: int,
    payment_method: str,
    payment_date: Any = None,
    reference_number: str | None = None,
    notes: str | None = None,
    recorded_by_user_id: int | None = None,
) -> InvoicePayment:
    """
    Append a payment. Preconditions are all checked before anything is written:
    non-terminal invoice, known method, 0 < amount <= balance_due.
    """
    invoice = _get_invoice(invoice_id, for_update=True)
    if invoice.is_terminal:
        raise InvoiceValidationError(f"Cannot record a payment on a {invoice.status} invoice")
    if payment_method not in PAYMENT_METHODS:
        raise InvoiceValidationError(f"payment_method must be one of: {', '.join(PAYMENT_METHODS)}")
    if isinstance(amount_cents, bool) or not isinstance(amount_cents, int):
        raise InvoiceValidationError("amount_cents must be an integer")
    if amount_cents <= 0:
        raise InvoiceValidationError("Payment amount must be greater than zero")
    if amount_cents > invoice.balance_due_cents:
        raise InvoiceValidationError(
            f"Payment amount cannot exceed balance due ({format_money(invoice.balance_due_cents)})"
        )
    paid_on = require_date(payment_date, "payment_date") if payment_date not in (None, "") else utc_today()

    payment = InvoicePayment(
        invoice_id=invoice.id,
        amount_cents=amount_cents,
        payment_method=payment_method,
        payment_date=paid_on,
        reference_number=_text(reference_number),
        notes=_text(notes),
        recorded_by_user_id=recorded_by_user_id,
    )
    db.session.add(payment)

    invoice.amount_paid_cents += amount_cents
    invoice.balance_due_cents = invoice.total_cents - invoice.amount_paid_cents
    if invoice.balance_due_cents == 0:
        invoice.status = STATUS_PAID
    invoice.updated_at = utcnow()
    db.session.commit()

    current_app.logger.info(
        "Recorded %s payment of %s on invoice %s", payment_method, amount_cents, invoice.invoice_number or invoice.id
    )
    return payment


def cancel_invoice(invoice_id: int, *, actor: User) -> Invoice:
    if actor is None or not actor.is_admin:
        raise InvoicePermissionError("Only admins can cancel invoices")
    invoice = _get_invoice(invoice_id, for_update=True)
    if invoice.is_terminal:
        raise InvoiceValidationError(f"Cannot cancel a {invoice.status} invoice")

    invoice.status = STATUS_CANCELLED
    invoice.cancelled_at = utcnow()
    invoice.updated_at = invoice.cancelled_at
    db.session.commit()
    current_app.logger.info("Cancelled invoice %s", invoice.invoice_number or invoice.id)
    return invoice


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

def get_invoice(invoice_id: int, *, today: date | None = None) -> Invoice:
    invoice = _get_invoice(invoice_id)
    if refresh_status(invoice, today):
        db.session.commit()
    return invoice


def list_invoices(
    *,
    status: str | None = None,
    search: str | None = None,
    today: date | None = None,
) -> list[Invoice]:
    if status and status not in INVOICE_STATUSES:
        raise InvoiceValidationError(f"status must be one of: {', '.join(INVOICE_STATUSES)}")
    refresh_statuses(today)

    query = db.session.query(Invoice)
    if status:
        query = query.filter(Invoice.status == status)
    if search and search.strip():
        like = f"%{search.strip().lower()}%"
        query = query.filter(
            or_(
                func.lower(Invoice.customer_name).like(like),
                func.lower(func.coalesce(Invoice.invoice_number, "")).like(like),
            )
        )
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


def invoice_stats(today: date | None = None) -> dict:
    today = today or utc_today()
    refresh_statuses(today)

    outstanding = (
        db.session.query(func.coalesce(func.sum(Invoice.balance_due_cents), 0))
        .filter(Invoice.status.in_((STATUS_DRAFT, STATUS_SENT, STATUS_OVERDUE)))
        .scalar()
    )
    overdue_count = db.session.query(func.count(Invoice.id)).filter(Invoice.status == STATUS_OVERDUE).scalar()

    month_start = today.replace(day=1)
    paid_this_month = (
        db.session.query(func.coalesce(func.sum(InvoicePayment.amount_cents), 0))
        .filter(InvoicePayment.payment_date >= month_start, InvoicePayment.payment_date <= today)
        .scalar()
    )
    return {
        "total_outstanding_cents": int(outstanding or 0),
        "overdue_count": int(overdue_count or 0),
        "paid_this_month_cents": int(paid_this_month or 0),
    }


def render_invoice_html(invoice: Invoice) -> str:
    """Printable HTML for one invoice (display / print only)."""
    config = current_app.config
    return render_template(
        "invoice_print.html",
        invoice=invoice,
        items=list(invoice.items),
        money=lambda cents: format_money(cents, config.get("CURRENCY", "KES")),
        vat_percent=f"{current_vat_rate_bps() / 100:g}",
        business={
            "name": config.get("BUSINESS_NAME"),
            "address": config.get("BUSINESS_ADDRESS"),
            "phone": config.get("BUSINESS_PHONE"),
            "email": config.get("BUSINESS_EMAIL"),
            "mpesa_paybill": config.get("MPESA_PAYBILL"),
            "bank_name": config.get("BANK_NAME"),
            "bank_account": config.get("BANK_ACCOUNT"),
        },
    )
