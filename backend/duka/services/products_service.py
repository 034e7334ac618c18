# backend/duka/services/products_service.py
"""
Products Service

Catalog CRUD plus the stock and low-stock queries used by the POS screen
and dashboard. Category is supplied by name and resolved case-insensitively.
"""
from __future__ import annotations

from decimal import Decimal

from sqlalchemy import or_

from ..extensions import db
from ..models import InvoiceItem, Product, SaleItem
from ..validation import ConflictError, ValidationError
from .category_service import find_category

PRODUCT_MUTABLE_FIELDS = {
    "name",
    "brand",
    "unit_size",
    "barcode",
    "buying_price_cents",
    "selling_price_cents",
    "stock",
    "reorder_level",
    "supplier",
}


def apply_product_patch(p: Product, patch: dict) -> None:
    for k, v in patch.items():
        if k not in PRODUCT_MUTABLE_FIELDS:
            continue
        setattr(p, k, v)


def _resolve_category_id(category_name: str | None) -> int:
    category = find_category(category_name or "")
    if not category:
        raise ValidationError(f"Unknown category: {category_name!r}")
    return category.id


def _ensure_barcode_free(barcode: str | None, exclude_id: int | None = None) -> None:
    if not barcode:
        return
    query = db.session.query(Product).filter(Product.barcode == barcode)
    if exclude_id is not None:
        query = query.filter(Product.id != exclude_id)
    if query.first():
        raise ConflictError("Barcode already exists.")


def list_products(
    *,
    search: str | None = None,
    category_id: int | None = None,
    low_stock: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    """
    Product listing with optional search (name, brand, barcode), category
    filter, low-stock filter and pagination.
    """
    query = db.session.query(Product)
    if search:
        like = f"%{search.strip()}%"
        query = query.filter(
            or_(Product.name.ilike(like), Product.brand.ilike(like), Product.barcode.ilike(like))
        )
    if category_id is not None:
        query = query.filter(Product.category_id == category_id)
    if low_stock:
        query = query.filter(Product.stock <= Product.reorder_level)

    query = query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = query.all()
        return {"items": [p.to_dict() for p in products], "count": len(products)}

    per_page = min(per_page or 20, 100)
    page = max(page, 1)
    total = query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    products = query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


def low_stock_products() -> list[Product]:
    return (
        db.session.query(Product)
        .filter(Product.stock <= Product.reorder_level)
        .order_by(Product.stock.asc(), Product.name.asc())
        .all()
    )


def create_product(*, patch: dict, category: str, created_by_user_id: int | None = None) -> Product:
    """
    Create product using a validated patch dict.

    Raises ValidationError for an unknown category and ConflictError for a
    duplicate barcode.
    """
    if not patch.get("name"):
        raise ValidationError("name is required")
    category_id = _resolve_category_id(category)
    _ensure_barcode_free(patch.get("barcode"))

    p = Product(category_id=category_id, created_by_user_id=created_by_user_id)
    p.stock = Decimal(0)
    p.reorder_level = Decimal(10)
    apply_product_patch(p, patch)
    db.session.add(p)
    db.session.commit()
    return p


def update_product(*, product_id: int, patch: dict, category: str | None = None) -> Product | None:
    p = db.session.get(Product, product_id)
    if not p:
        return None
    if "barcode" in patch:
        _ensure_barcode_free(patch.get("barcode"), exclude_id=p.id)
    if category is not None:
        p.category_id = _resolve_category_id(category)
    apply_product_patch(p, patch)
    db.session.commit()
    return p


def delete_product(*, product_id: int) -> bool:
    """
    Delete a product that no receipt or invoice references.

    Historical documents keep a name snapshot, but deleting a referenced
    product would orphan their product_id, so it is refused.
    """
    p = db.session.get(Product, product_id)
    if not p:
        return False
    referenced = (
        db.session.query(SaleItem.id).filter_by(product_id=p.id).first()
        or db.session.query(InvoiceItem.id).filter_by(product_id=p.id).first()
    )
    if referenced:
        raise ConflictError("Product is referenced by sales or invoices and cannot be deleted")
    db.session.delete(p)
    db.session.commit()
    return True
