# Overview: Flask API routes for draining the offline queue and refreshing cached reference data.

# backend/possync/routes/sync.py

from flask import Blueprint, request, jsonify, current_app

from ..services.ledger_client import LedgerError
from ..services.reference_data_service import refresh_reference_data
from ..services.sync_service import get_sync_manager


sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


@sync_bp.post("/")
def sync_now_route():
    """Manual trigger for the queue drain."""
    try:
        summary = get_sync_manager().sync_pending_sales()
        return jsonify(summary), 200
    except Exception:
        current_app.logger.exception("Sync failed")
        return jsonify({"error": "Internal server error"}), 500


@sync_bp.get("/status")
def sync_status_route():
    return jsonify(get_sync_manager().sync_status()), 200


@sync_bp.post("/cleanup")
def cleanup_route():
    data = request.get_json(silent=True) or {}
    hours = data.get("older_than_hours")
    if hours is not None and (not isinstance(hours, (int, float)) or hours < 0):
        return jsonify({"error": "older_than_hours must be a non-negative number"}), 400

    include_flagged = data.get("include_flagged") is True
    removed = get_sync_manager().cleanup_synced_sales(older_than_hours=hours, include_flagged=include_flagged)
    return jsonify({"removed": removed}), 200


@sync_bp.post("/refresh")
def refresh_route():
    """Re-download products, stock and other reference data from the ledger."""
    try:
        return jsonify(refresh_reference_data()), 200
    except LedgerError as e:
        return jsonify({"error": e.message, "code": e.code}), 502
    except Exception:
        current_app.logger.exception("Reference data refresh failed")
        return jsonify({"error": "Internal server error"}), 500
