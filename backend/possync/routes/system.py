# backend/possync/routes/system.py
"""
System health endpoints.

Reports the local store, the offline queue and ledger reachability so the till
UI can show whether sales are going online or into the queue.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db, get_connectivity
from ..models import PendingSale
from ..models.pending import SYNC_SYNCED
from ..services import local_store
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_local_store_health() -> dict:
    start_time = time.time()
    try:
        products = local_store.count(local_store.STORE_PRODUCTS)
        unsynced = db.session.query(PendingSale).filter(PendingSale.sync_status != SYNC_SYNCED).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "cached_products": products,
                "unsynced_sales": unsynced,
                "schema_version": local_store.get_meta(local_store.META_DB_VERSION),
            },
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Local store health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Local store error",
        }


def check_ledger_health() -> dict:
    """Unreachable ledger is degraded, not unhealthy: the terminal keeps selling offline."""
    start_time = time.time()
    online = get_connectivity().is_online()
    elapsed_ms = (time.time() - start_time) * 1000
    return {
        "status": "healthy" if online else "degraded",
        "latency_ms": round(elapsed_ms, 2),
        "details": {"online": online},
    }


@system_bp.get("/ping")
def ping():
    return {"ok": True, "server_time": to_utc_z(utcnow())}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: local store usable (ledger may be degraded)
    - 503: local store unusable
    """
    start_time = time.time()

    store_health = check_local_store_health()
    ledger_health = check_ledger_health()

    if store_health["status"] == "unhealthy":
        overall_status, http_status = "unhealthy", 503
    elif ledger_health["status"] != "healthy":
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    total_elapsed_ms = (time.time() - start_time) * 1000
    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "local_store": store_health,
            "ledger": ledger_health,
        },
    }, http_status
