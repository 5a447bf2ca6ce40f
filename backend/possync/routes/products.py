# Overview: Flask API routes for product cost status and cached catalog lookups.

# backend/possync/routes/products.py

from flask import Blueprint, request, jsonify, current_app

from ..money import json_ready
from ..services import cost_service, local_store
from ..services.cost_service import CostTrackingError
from ..services.ledger_client import LedgerError


products_bp = Blueprint("products", __name__, url_prefix="/api/products")


@products_bp.get("/barcode/<barcode>")
def product_by_barcode_route(barcode: str):
    product = local_store.get_product_by_barcode(barcode)
    if product is None:
        return jsonify({"error": "Product not found"}), 404
    stock = local_store.get_inventory_by_product(product.id)
    return jsonify({
        "product": product.to_dict(),
        "inventory": [row.to_dict() for row in stock],
    }), 200


@products_bp.get("/<product_id>/cost-status")
def cost_status_route(product_id: str):
    """Whether the cost may be edited by hand, plus the last purchase."""
    try:
        status = cost_service.check_product_purchase_history(product_id)
        status["last_purchase"] = cost_service.get_last_purchase_info(product_id)
        return jsonify(json_ready(status)), 200
    except LedgerError as e:
        return jsonify({"error": e.message, "code": e.code}), 502


@products_bp.post("/<product_id>/cost-preview")
def cost_preview_route(product_id: str):
    data = request.get_json() or {}
    quantity = data.get("quantity")
    unit_cost = data.get("unit_cost")
    if not isinstance(quantity, int) or quantity <= 0:
        return jsonify({"error": "quantity must be a positive integer"}), 400
    if not isinstance(unit_cost, (int, float)) or unit_cost < 0:
        return jsonify({"error": "unit_cost must be a non-negative number"}), 400
    try:
        preview = cost_service.preview_cost_update(product_id, quantity, unit_cost)
        return jsonify(json_ready(preview)), 200
    except LedgerError as e:
        return jsonify({"error": e.message, "code": e.code}), 502


@products_bp.post("/<product_id>/recalculate-cost")
def recalculate_cost_route(product_id: str):
    try:
        result = cost_service.recalculate_cost_from_history(product_id)
        return jsonify(json_ready(result)), 200
    except CostTrackingError as e:
        current_app.logger.warning("Cost recalculation failed: %s", e)
        return jsonify({"error": str(e)}), 502
