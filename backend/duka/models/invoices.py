from __future__ import annotations

from ..extensions import db
from duka.time_utils import to_iso_date, to_utc_z, utcnow

STATUS_DRAFT = "draft"
STATUS_SENT = "sent"
STATUS_PAID = "paid"
STATUS_OVERDUE = "overdue"
STATUS_CANCELLED = "cancelled"

INVOICE_STATUSES = (STATUS_DRAFT, STATUS_SENT, STATUS_PAID, STATUS_OVERDUE, STATUS_CANCELLED)
TERMINAL_STATUSES = (STATUS_PAID, STATUS_CANCELLED)


class Invoice(db.Model):
    """
    Formal customer invoice.

    LIFECYCLE:
    1. draft: editable, no invoice number yet
    2. sent: finalized, numbered INV-YYYYMMDD-NNNN
    3. overdue: sent, past due date, balance outstanding
    4. paid: balance reached exactly zero (terminal)
    5. cancelled: admin action (terminal)

    Prices on invoices are VAT-exclusive: VAT is added on top.
    balance_due_cents is always total_cents - amount_paid_cents.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.UniqueConstraint("invoice_number", name="uq_invoices_invoice_number"),
        db.Index("ix_invoices_status_due", "status", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Assigned at finalization; drafts have none
    invoice_number = db.Column(db.String(32), nullable=True)

    customer_name = db.Column(db.String(255), nullable=False)
    customer_phone = db.Column(db.String(64), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_address = db.Column(db.Text, nullable=True)

    issue_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    payment_terms = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    status = db.Column(db.String(16), nullable=False, default=STATUS_DRAFT, index=True)

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    vat_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    balance_due_cents = db.Column(db.Integer, nullable=False, default=0)

    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    # updated_at is only bumped by the service when something actually changes
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    finalized_at = db.Column(db.DateTime(timezone=True), nullable=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    items = db.relationship(
        "InvoiceItem",
        backref="invoice",
        lazy=True,
        order_by="InvoiceItem.position",
        cascade="all, delete-orphan",
    )
    payments = db.relationship(
        "InvoicePayment",
        backref="invoice",
        lazy=True,
        order_by="InvoicePayment.payment_date",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self, include_items: bool = True, include_payments: bool = True) -> dict:
        data = {
            "id": self.id,
            "invoice_number": self.invoice_number,
            "customer_name": self.customer_name,
            "customer_phone": self.customer_phone,
            "customer_email": self.customer_email,
            "customer_address": self.customer_address,
            "issue_date": to_iso_date(self.issue_date),
            "due_date": to_iso_date(self.due_date),
            "payment_terms": self.payment_terms,
            "notes": self.notes,
            "status": self.status,
            "subtotal_cents": self.subtotal_cents,
            "vat_cents": self.vat_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "balance_due_cents": self.balance_due_cents,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "finalized_at": to_utc_z(self.finalized_at) if self.finalized_at else None,
            "cancelled_at": to_utc_z(self.cancelled_at) if self.cancelled_at else None,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_payments:
            data["payments"] = [payment.to_dict() for payment in self.payments]
        return data


class InvoiceItem(db.Model):
    """Invoice line. Replaced wholesale when an editable invoice is re-saved."""
    __tablename__ = "invoice_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_invoice_items_quantity_pos"),
        db.CheckConstraint("unit_price_cents >= 0", name="ck_invoice_items_price_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    position = db.Column(db.Integer, nullable=False, default=0)

    description = db.Column(db.String(255), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    vat_cents = db.Column(db.Integer, nullable=False)
    total_cents = db.Column(db.Integer, nullable=False)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "product_id": self.product_id,
            "position": self.position,
            "description": self.description,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "vat_cents": self.vat_cents,
            "total_cents": self.total_cents,
        }


class InvoicePayment(db.Model):
    """
    Payment received against an invoice. Append-only: never edited or deleted.
    """
    __tablename__ = "invoice_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_invoice_payments_amount_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(16), nullable=False)  # cash, mpesa, card, bank_transfer
    payment_date = db.Column(db.Date, nullable=False)
    reference_number = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    recorded_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "amount_cents": self.amount_cents,
            "payment_method": self.payment_method,
            "payment_date": to_iso_date(self.payment_date),
            "reference_number": self.reference_number,
            "notes": self.notes,
            "recorded_by_user_id": self.recorded_by_user_id,
            "created_at": to_utc_z(self.created_at),
        }
