# Overview: Flask API routes for invoices; parses input and returns JSON responses.

"""
Invoice Routes

Drafts are created and edited freely; finalize assigns the number and
sends the invoice. Payments are append-only. Cancel is admin only.
"""

from flask import Blueprint, Response, request, jsonify, g, current_app

from ..decorators import require_auth, require_role
from ..models.auth import ROLE_ADMIN
from ..services import invoice_service
from ..services.invoice_service import (
    InvoiceNotFoundError,
    InvoicePermissionError,
)
from ..validation import ValidationError


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.get("")
@require_auth
def list_invoices_route():
    try:
        invoices = invoice_service.list_invoices(
            status=request.args.get("status") or None,
            search=request.args.get("search") or None,
        )
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    return jsonify({
        "items": [i.to_dict(include_items=False, include_payments=False) for i in invoices],
        "count": len(invoices),
    })


@invoices_bp.get("/stats")
@require_auth
def invoice_stats_route():
    return jsonify(invoice_service.invoice_stats())


@invoices_bp.post("")
@require_auth
def create_invoice_route():
    data = request.get_json(silent=True) or {}
    try:
        invoice = invoice_service.create_invoice(data, created_by_user_id=g.current_user.id)
        return jsonify({"invoice": invoice.to_dict()}), 201
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.get("/<int:invoice_id>")
@require_auth
def get_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return jsonify({"invoice": invoice.to_dict()})


@invoices_bp.put("/<int:invoice_id>")
@require_auth
def update_invoice_route(invoice_id: int):
    data = request.get_json(silent=True) or {}
    try:
        invoice = invoice_service.update_invoice(invoice_id, data)
        return jsonify({"invoice": invoice.to_dict()})
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to update invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/finalize")
@require_auth
def finalize_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.finalize_invoice(invoice_id)
        return jsonify({"invoice": invoice.to_dict()})
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to finalize invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/payments")
@require_auth
def record_payment_route(invoice_id: int):
    """
    Body:
    {
        "amount_cents": 10000,
        "payment_method": "cash" | "mpesa" | "card" | "bank_transfer",
        "payment_date": "2026-10-17",   (optional, defaults to today)
        "reference_number": "QJK1...",  (optional)
        "notes": "..."                  (optional)
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        payment = invoice_service.record_payment(
            invoice_id,
            amount_cents=data.get("amount_cents"),
            payment_method=data.get("payment_method"),
            payment_date=data.get("payment_date"),
            reference_number=data.get("reference_number"),
            notes=data.get("notes"),
            recorded_by_user_id=g.current_user.id,
        )
        invoice = invoice_service.get_invoice(invoice_id)
        return jsonify({"payment": payment.to_dict(), "invoice": invoice.to_dict()}), 201
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to record invoice payment")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/cancel")
@require_auth
@require_role(ROLE_ADMIN)
def cancel_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.cancel_invoice(invoice_id, actor=g.current_user)
        return jsonify({"invoice": invoice.to_dict()})
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    except InvoicePermissionError as e:
        return jsonify({"error": str(e)}), 403
    except ValidationError as e:
        return jsonify({"error": str(e)}), 400


@invoices_bp.get("/<int:invoice_id>/print")
@require_auth
def print_invoice_route(invoice_id: int):
    try:
        invoice = invoice_service.get_invoice(invoice_id)
    except InvoiceNotFoundError as e:
        return jsonify({"error": str(e)}), 404
    return Response(invoice_service.render_invoice_html(invoice), mimetype="text/html")
