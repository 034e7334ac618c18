# Overview: Flask API routes for product categories.

from flask import Blueprint, request, jsonify

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN
from ..services import category_service
from ..validation import ConflictError, ValidationError


categories_bp = Blueprint("categories", __name__, url_prefix="/api/categories")


@categories_bp.get("")
@require_auth
def list_categories_route():
    categories = category_service.list_categories()
    return jsonify({"items": [c.to_dict() for c in categories], "count": len(categories)})


@categories_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_category_route():
    data = request.get_json(silent=True) or {}
    try:
        category = category_service.create_category(data.get("name"))
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    return jsonify({"category": category.to_dict()}), 201


@categories_bp.delete("/<int:category_id>")
@require_auth
@require_role(ROLE_ADMIN)
def delete_category_route(category_id: int):
    try:
        deleted = category_service.delete_category(category_id)
    except ConflictError as e:
        return jsonify({"error": str(e)}), 409
    if not deleted:
        return jsonify({"error": "Category not found"}), 404
    return jsonify({"message": "Category deleted"})
