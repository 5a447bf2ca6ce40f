# Overview: Flask API routes for purchase invoices (stock in, cost reconciliation).

# backend/possync/routes/purchases.py

from flask import Blueprint, request, jsonify, current_app

from ..money import json_ready
from ..services import purchase_service
from ..services.ledger_client import LedgerError
from ..services.purchase_service import PurchaseError


purchases_bp = Blueprint("purchases", __name__, url_prefix="/api/purchases")


@purchases_bp.post("/")
def create_purchase_route():
    try:
        data = request.get_json() or {}
        result = purchase_service.create_purchase_invoice(
            data.get("items") or [],
            supplier_id=data.get("supplier_id"),
            branch_id=data.get("branch_id"),
            warehouse_id=data.get("warehouse_id"),
            record_id=data.get("record_id"),
            notes=data.get("notes"),
            is_return=bool(data.get("is_return", False)),
            payment_method=data.get("payment_method") or "cash",
        )
        return jsonify(json_ready(result)), 201

    except PurchaseError as e:
        return jsonify({"error": str(e), "details": e.details}), 400
    except LedgerError as e:
        return jsonify({"error": e.message, "code": e.code, "details": e.details}), 502
    except Exception:
        current_app.logger.exception("Failed to create purchase invoice")
        return jsonify({"error": "Internal server error"}), 500


@purchases_bp.delete("/<invoice_id>")
def delete_purchase_route(invoice_id: str):
    """Deactivate a purchase invoice and rebuild affected product costs."""
    try:
        result = purchase_service.delete_purchase_invoice(invoice_id)
        return jsonify(json_ready(result)), 200

    except PurchaseError as e:
        return jsonify({"error": str(e), "details": e.details}), 404
    except LedgerError as e:
        return jsonify({"error": e.message, "code": e.code}), 502
    except Exception:
        current_app.logger.exception("Failed to delete purchase invoice")
        return jsonify({"error": "Internal server error"}), 500
