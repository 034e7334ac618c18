# Overview: Service-layer operations for product categories.

from __future__ import annotations

from ..extensions import db
from ..models import Category, Product
from ..validation import ConflictError, ValidationError


DEFAULT_CATEGORIES = (
    "Soaps",
    "Lotions",
    "Oils",
    "Deodorants",
    "Hair Products",
    "Petroleum Jelly",
    "Toothpaste",
    "Detergents",
    "Household Hygiene",
    "Other",
)


def list_categories() -> list[Category]:
    return db.session.query(Category).order_by(Category.name.asc()).all()


def find_category(name: str) -> Category | None:
    key = Category.key_for(name)
    if not key:
        return None
    return db.session.query(Category).filter_by(name_key=key).first()


def get_or_create_category(name: str) -> tuple[Category, bool]:
    """
    Return (category, created). Does not commit: the caller owns the
    transaction so that a failed product insert also discards the category.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required")
    existing = find_category(name)
    if existing:
        return existing, False
    category = Category(name=name, name_key=Category.key_for(name))
    db.session.add(category)
    db.session.flush()
    return category, True


def create_category(name: str) -> Category:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required")
    if len(name) > 120:
        raise ValidationError("Category name exceeds max length 120")
    if find_category(name):
        raise ConflictError(f"Category '{name}' already exists")
    category, _ = get_or_create_category(name)
    db.session.commit()
    return category


def delete_category(category_id: int) -> bool:
    """Delete an unused category. Raises ConflictError while any product uses it."""
    category = db.session.get(Category, category_id)
    if not category:
        return False
    in_use = db.session.query(Product.id).filter_by(category_id=category.id).count()
    if in_use:
        raise ConflictError(f"Category '{category.name}' is used by {in_use} product(s) and cannot be deleted")
    db.session.delete(category)
    db.session.commit()
    return True
