# Overview: Flask API routes for JSON backup export and restore (admin only).

from flask import Blueprint, request, jsonify, current_app

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN
from ..services import backup_service
from ..services.backup_service import BackupError


backup_bp = Blueprint("backup", __name__, url_prefix="/api/backup")


@backup_bp.get("")
@require_auth
@require_role(ROLE_ADMIN)
def export_backup_route():
    response = jsonify(backup_service.export_backup())
    response.headers["Content-Disposition"] = "attachment; filename=duka_backup.json"
    return response


@backup_bp.post("/restore")
@require_auth
@require_role(ROLE_ADMIN)
def restore_backup_route():
    """?mode=replace (default) | merge. Body is the backup document."""
    mode = request.args.get("mode", backup_service.MODE_REPLACE)
    document = request.get_json(silent=True)
    if document is None:
        return jsonify({"error": "Request body must be a JSON backup document"}), 400

    try:
        result = backup_service.restore_backup(document, mode=mode)
    except BackupError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to restore backup")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(result)
