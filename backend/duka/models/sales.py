from __future__ import annotations

from ..extensions import db
from duka.time_utils import to_utc_z


class Sale(db.Model):
    """
    Point-of-sale receipt. Append-only: once written it is never edited.

    Prices rung up at the till are VAT-inclusive, so total_cents equals
    subtotal_cents and vat_cents is the portion backed out of it.
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("receipt_number", name="uq_sales_receipt_number"),
        db.Index("ix_sales_cashier_created", "cashier_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    receipt_number = db.Column(db.String(64), nullable=False)

    payment_method = db.Column(db.String(16), nullable=False)  # cash, mpesa, card

    subtotal_cents = db.Column(db.Integer, nullable=False, default=0)
    vat_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False, default=0)
    amount_paid_cents = db.Column(db.Integer, nullable=False, default=0)
    change_cents = db.Column(db.Integer, nullable=False, default=0)

    cashier_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True, index=True)
    cashier_name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    cashier = db.relationship("User")

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "receipt_number": self.receipt_number,
            "payment_method": self.payment_method,
            "subtotal_cents": self.subtotal_cents,
            "vat_cents": self.vat_cents,
            "total_cents": self.total_cents,
            "amount_paid_cents": self.amount_paid_cents,
            "change_cents": self.change_cents,
            "cashier_id": self.cashier_id,
            "cashier_name": self.cashier_name,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """Individual line on a receipt."""
    __tablename__ = "sale_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)

    # Snapshot so the receipt survives product renames
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)
    vat_cents = db.Column(db.Integer, nullable=False, default=0)

    # Cost snapshot for profit reporting
    unit_cost_cents = db.Column(db.Integer, nullable=True)

    sale = db.relationship(
        "Sale",
        backref=db.backref("items", lazy=True, order_by="SaleItem.id"),
    )
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "subtotal_cents": self.subtotal_cents,
            "vat_cents": self.vat_cents,
            "unit_cost_cents": self.unit_cost_cents,
        }
