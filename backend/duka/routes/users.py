# Overview: Flask API routes for staff accounts (admin only).

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN, ROLE_CASHIER
from ..services import auth_service
from ..services.auth_service import AuthError, PasswordValidationError


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def list_users_route():
    users = auth_service.list_users()
    return jsonify({"items": [u.to_dict() for u in users], "count": len(users)})


@users_bp.post("")
@require_auth
@require_role(ROLE_ADMIN)
def create_user_route():
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.create_user(
            email=data.get("email"),
            password=data.get("password"),
            full_name=data.get("full_name"),
            role=data.get("role") or ROLE_CASHIER,
        )
        return jsonify({"user": user.to_dict()}), 201
    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400
    except AuthError as e:
        status = 409 if "already exists" in str(e) else 400
        return jsonify({"error": str(e)}), status
    except Exception:
        current_app.logger.exception("Failed to create user")
        return jsonify({"error": "Internal server error"}), 500


@users_bp.patch("/<int:user_id>")
@require_auth
@require_role(ROLE_ADMIN)
def update_user_route(user_id: int):
    data = request.get_json(silent=True) or {}
    is_active = data.get("is_active")
    if is_active is not None and not isinstance(is_active, bool):
        return jsonify({"error": "is_active must be a boolean"}), 400

    try:
        user = auth_service.update_user(
            user_id=user_id,
            actor=g.current_user,
            role=data.get("role"),
            is_active=is_active,
            full_name=data.get("full_name"),
            password=data.get("password"),
        )
        return jsonify({"user": user.to_dict()})
    except PasswordValidationError as e:
        return jsonify({"error": str(e)}), 400
    except AuthError as e:
        status = 404 if str(e) == "User not found" else 400
        return jsonify({"error": str(e)}), status
    except Exception:
        current_app.logger.exception("Failed to update user")
        return jsonify({"error": "Internal server error"}), 500
