# Overview: Flask API routes for recording sales and inspecting the offline queue.

# backend/possync/routes/sales.py

from flask import Blueprint, request, jsonify, current_app

from ..services import local_store
from ..services.ledger_client import LedgerError
from ..services.local_store import LocalStoreError
from ..services.sale_inputs import SaleRequest, SaleValidationError
from ..services.sales_invoice_service import create_sales_invoice, PartialSaleError


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")


@sales_bp.post("/invoices")
def create_invoice_route():
    """
    Record a sale.

    Online: invoice committed on the ledger (201).
    Offline or ledger unreachable: queued locally, is_offline=true (201).
    """
    try:
        data = request.get_json() or {}
        sale_request = SaleRequest.from_dict(data)
        result = create_sales_invoice(sale_request)
        return jsonify(result.to_dict()), 201

    except SaleValidationError as e:
        return jsonify({"error": str(e)}), 400
    except PartialSaleError as e:
        return jsonify({
            "error": str(e),
            "invoice_id": e.invoice_id,
            "invoice_number": e.invoice_number,
            "failed_steps": e.failed_steps,
            "needs_review": True,
        }), 409
    except LedgerError as e:
        return jsonify({"error": e.message, "code": e.code, "details": e.details}), 502
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except Exception:
        current_app.logger.exception("Failed to create sales invoice")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/pending")
def list_pending_route():
    """List queued sales, optionally filtered by ?status=pending|syncing|synced|failed."""
    status = request.args.get("status")
    try:
        if status:
            sales = local_store.get_pending_sales_by_status(status)
        else:
            sales = local_store.get_all_pending_sales()
    except LocalStoreError as e:
        return jsonify({"error": str(e)}), 400

    return jsonify({"sales": [s.to_dict() for s in sales], "count": len(sales)}), 200


@sales_bp.get("/pending/<local_id>")
def get_pending_route(local_id: str):
    sale = local_store.get_pending_sale(local_id)
    if sale is None:
        return jsonify({"error": "Pending sale not found"}), 404
    return jsonify({"sale": sale.to_dict()}), 200


@sales_bp.get("/pending/<local_id>/log")
def pending_log_route(local_id: str):
    entries = local_store.get_sync_log_for_sale(local_id)
    return jsonify({"log": [e.to_dict() for e in entries]}), 200
