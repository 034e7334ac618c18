# Overview: Flask API routes for reports; dashboard JSON and CSV downloads.

from flask import Blueprint, Response, request, jsonify, g

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN
from ..services import reporting_service
from ..services.reporting_service import ReportError


reports_bp = Blueprint("reports", __name__, url_prefix="/api/reports")


def _csv_response(body: str, filename: str) -> Response:
    return Response(
        body,
        mimetype="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@reports_bp.get("/dashboard")
@require_auth
def dashboard_route():
    """Admins see the whole shop; cashiers see their own sales figures."""
    cashier_id = None if g.current_user.is_admin else g.current_user.id
    try:
        summary = reporting_service.dashboard_summary(
            start=request.args.get("start"),
            end=request.args.get("end"),
            cashier_id=cashier_id,
        )
    except ReportError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify(summary)


@reports_bp.get("/sales.csv")
@require_auth
@require_role(ROLE_ADMIN)
def sales_csv_route():
    try:
        body = reporting_service.sales_csv(start=request.args.get("start"), end=request.args.get("end"))
    except ReportError as e:
        return jsonify({"error": str(e)}), 400
    return _csv_response(body, "sales_report.csv")


@reports_bp.get("/product-sales.csv")
@require_auth
@require_role(ROLE_ADMIN)
def product_sales_csv_route():
    try:
        body = reporting_service.product_sales_csv(start=request.args.get("start"), end=request.args.get("end"))
    except ReportError as e:
        return jsonify({"error": str(e)}), 400
    return _csv_response(body, "product_sales_summary.csv")
