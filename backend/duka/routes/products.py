# Overview: Flask API routes for products operations; parses input and returns JSON responses.

# backend/duka/routes/products.py
"""
Product management routes.

SECURITY: All routes require authentication.
- Reads are open to every signed-in user (the POS needs them)
- Writes are admin only
"""
from flask import Blueprint, request, g
from ..services.products_service import (
    PRODUCT_MUTABLE_FIELDS,
    create_product,
    delete_product,
    list_products as list_products_service,
    update_product,
)
from ..models import Product
from ..models.auth import ROLE_ADMIN
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_product,
    ValidationError,
    ConflictError,
)
from ..decorators import require_auth, require_role

PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields=frozenset(PRODUCT_MUTABLE_FIELDS),
    required_on_create=frozenset({"name", "buying_price_cents", "selling_price_cents"}),
)

products_bp = Blueprint("products", __name__, url_prefix="/api/products")


def _split_category(payload: dict) -> tuple[dict, str | None]:
    payload = dict(payload)
    category = payload.pop("category", None)
    return payload, category


@products_bp.get("")
@require_auth
def list_products():
    """
    Query params:
    - search: matches name, brand or barcode
    - category_id: int
    - low_stock: "1" / "true" to return only products at or below reorder level
    - page / per_page: optional pagination (per_page max 100)
    """
    low_stock = (request.args.get("low_stock") or "").strip().lower() in {"1", "true", "yes"}
    return list_products_service(
        search=request.args.get("search"),
        category_id=request.args.get("category_id", type=int),
        low_stock=low_stock,
        page=request.args.get("page", type=int),
        per_page=request.args.get("per_page", type=int),
    )


@products_bp.get("/<int:product_id>")
@require_auth
def get_product(product_id: int):
    from ..extensions import db

    product = db.session.get(Product, product_id)
    if not product:
        return {"error": "Product not found"}, 404
    return product.to_dict()


@products_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_product_route():
    payload, category = _split_category(request.get_json(silent=True) or {})
    if not category:
        return {"error": "category is required"}, 400

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        created = create_product(patch=patch, category=category, created_by_user_id=g.current_user.id)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ValidationError as e:
        return {"error": str(e)}, 400

    return created.to_dict(), 201


@products_bp.put("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_product_route(product_id: int):
    payload, category = _split_category(request.get_json(silent=True) or {})

    try:
        patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
        enforce_rules_product(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    try:
        updated = update_product(product_id=product_id, patch=patch, category=category)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ValidationError as e:
        return {"error": str(e)}, 400

    if not updated:
        return {"error": "Product not found"}, 404
    return updated.to_dict()


@products_bp.delete("/<int:product_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_product_route(product_id: int):
    """Refused with 409 while any receipt or invoice references the product."""
    try:
        deleted = delete_product(product_id=product_id)
    except ConflictError as e:
        return {"error": str(e)}, 409
    if not deleted:
        return {"error": "Product not found"}, 404
    return {"message": "Product deleted"}
