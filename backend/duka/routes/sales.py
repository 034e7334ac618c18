# Overview: Flask API routes for POS sales; parses input and returns JSON responses.

from flask import Blueprint, request, jsonify, g, current_app

from ..decorators import require_auth
from ..services import sales_service
from ..services.sales_service import SaleError


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/checkout")
@require_auth
def checkout_route():
    """
    Body:
    {
        "items": [{"product_id": 1, "quantity": 2}, ...],
        "payment_method": "cash" | "mpesa" | "card",
        "amount_paid_cents": 50000      (required for cash)
    }
    """
    data = request.get_json(silent=True) or {}
    items = data.get("items")
    if not isinstance(items, list):
        return jsonify({"error": "items must be a list"}), 400

    try:
        sale = sales_service.checkout(
            items,
            payment_method=data.get("payment_method"),
            amount_paid_cents=data.get("amount_paid_cents"),
            cashier=g.current_user,
        )
        return jsonify({"sale": sale.to_dict(include_items=True)}), 201
    except SaleError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to complete checkout")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
@require_auth
def list_sales_route():
    sales = sales_service.list_sales(
        viewer=g.current_user,
        cashier_id=request.args.get("cashier_id", type=int),
        limit=request.args.get("limit", default=sales_service.DEFAULT_LIST_LIMIT, type=int),
    )
    return jsonify({"items": [s.to_dict() for s in sales], "count": len(sales)})


@sales_bp.get("/<int:sale_id>")
@require_auth
def get_sale_route(sale_id: int):
    sale = sales_service.get_sale(sale_id, viewer=g.current_user)
    if not sale:
        return jsonify({"error": "Sale not found"}), 404
    return jsonify({"sale": sale.to_dict(include_items=True)})
