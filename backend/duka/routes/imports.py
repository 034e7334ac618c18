# Overview: Flask API routes for imports; parses input and returns JSON responses.

"""
Import Routes

Product uploads are CSV, JSON, or Excel (.xlsx). Validation runs first and
row errors come back keyed by spreadsheet row (header = row 1); the commit
phase then inserts every valid row independently.
"""

from flask import Blueprint, Response, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN
from ..services import import_service
from ..services.import_service import CatalogImportError


imports_bp = Blueprint("imports", __name__, url_prefix="/api/imports")


def _uploaded_file():
    if "file" not in request.files:
        return None
    return request.files["file"]


@imports_bp.get("/products/template")
@require_auth
def template_route():
    return Response(
        import_service.template_csv(),
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=product_import_template.csv"},
    )


@imports_bp.post("/products/validate")
@require_auth
def validate_products_route():
    """Dry run: parse + validate only, nothing is written."""
    file = _uploaded_file()
    if file is None:
        return jsonify({"error": "file is required"}), 400

    try:
        rows = import_service.parse_upload(file.filename or "", file.stream)
        report = import_service.validate_products(rows)
        return jsonify(report.to_dict())
    except CatalogImportError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to validate product upload")
        return jsonify({"error": "Failed to parse upload"}), 400


@imports_bp.post("/products")
@require_auth
@require_role(ROLE_ADMIN)
def import_products_route():
    file = _uploaded_file()
    if file is None:
        return jsonify({"error": "file is required"}), 400

    try:
        result = import_service.import_products_file(
            file.filename or "",
            file.stream,
            created_by_user_id=g.current_user.id,
        )
    except CatalogImportError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to import products")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result), 201 if result["ok"] else 200


@imports_bp.post("/sales")
@require_auth
@require_role(ROLE_ADMIN)
def import_sales_route():
    file = _uploaded_file()
    if file is None:
        return jsonify({"error": "file is required"}), 400

    try:
        result = import_service.import_sales_csv(
            file.stream,
            actor=g.current_user,
            source_file_name=file.filename,
        )
    except CatalogImportError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to import sales")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result), 201
