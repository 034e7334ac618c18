from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from duka.time_utils import to_utc_z


def quantity_to_json(value):
    """Stock is stored as NUMERIC; whole quantities serialize as ints."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    return value


class Category(db.Model):
    """
    Product category label.

    Names are unique case-insensitively: name_key holds the lower-cased,
    trimmed name and carries the unique constraint, while name keeps the
    spelling the category was first created with.
    """
    __tablename__ = "categories"
    __table_args__ = (
        db.UniqueConstraint("name_key", name="uq_categories_name_key"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    name_key = db.Column(db.String(120), nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @staticmethod
    def key_for(name: str) -> str:
        return (name or "").strip().lower()

    def __repr__(self) -> str:
        return f"<Category id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Product master data.

    Prices are authoritative in cents. stock / reorder_level are NUMERIC so
    the decimal-tolerant import mode can hold fractional quantities (loose
    goods sold by weight); the integer mode simply never writes fractions.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("barcode", name="uq_products_barcode"),
        db.CheckConstraint("buying_price_cents >= 0", name="ck_products_buying_price_nonneg"),
        db.CheckConstraint("selling_price_cents >= 0", name="ck_products_selling_price_nonneg"),
        db.CheckConstraint("stock >= 0", name="ck_products_stock_nonneg"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    brand = db.Column(db.String(120), nullable=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)
    unit_size = db.Column(db.String(64), nullable=True)
    barcode = db.Column(db.String(64), nullable=True)

    buying_price_cents = db.Column(db.Integer, nullable=False, default=0)
    selling_price_cents = db.Column(db.Integer, nullable=False, default=0)

    stock = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    reorder_level = db.Column(db.Numeric(12, 3), nullable=False, default=10)

    supplier = db.Column(db.String(255), nullable=True)
    imported_from_batch_id = db.Column(db.Integer, db.ForeignKey("import_batches.id"), nullable=True, index=True)
    created_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))

    @property
    def is_low_stock(self) -> bool:
        return Decimal(self.stock or 0) <= Decimal(self.reorder_level or 0)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "brand": self.brand,
            "category_id": self.category_id,
            "category": self.category.name if self.category else None,
            "unit_size": self.unit_size,
            "barcode": self.barcode,
            "buying_price_cents": self.buying_price_cents,
            "selling_price_cents": self.selling_price_cents,
            "stock": quantity_to_json(self.stock),
            "reorder_level": quantity_to_json(self.reorder_level),
            "is_low_stock": self.is_low_stock,
            "supplier": self.supplier,
            "imported_from_batch_id": self.imported_from_batch_id,
            "created_by_user_id": self.created_by_user_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
