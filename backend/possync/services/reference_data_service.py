# Overview: Pulls reference data from the ledger into the local store for offline selling.

from __future__ import annotations

from flask import current_app

from ..extensions import db, get_ledger
from ..models import PendingSale
from ..models.pending import SYNC_SYNCED
from . import local_store
from .local_store import (
    STORE_PRODUCTS,
    STORE_INVENTORY,
    STORE_BRANCHES,
    STORE_CATEGORIES,
    STORE_CUSTOMERS,
    STORE_RECORDS,
    STORE_PAYMENT_METHODS,
)

# local collection -> (ledger table, filters)
REFERENCE_TABLES = {
    STORE_PRODUCTS: ("products", {"is_active": True}),
    STORE_BRANCHES: ("branches", None),
    STORE_CATEGORIES: ("categories", None),
    STORE_CUSTOMERS: ("customers", None),
    STORE_RECORDS: ("records", None),
    STORE_PAYMENT_METHODS: ("payment_methods", {"is_active": True}),
}


def unsynced_inventory_deltas() -> dict:
    """
    Net cached-stock delta of every queued sale the ledger has not seen yet.

    {(product_id, branch_id): delta}; a sale line of +q contributes -q.
    """
    deltas = {}
    unsynced = db.session.query(PendingSale).filter(PendingSale.sync_status != SYNC_SYNCED).all()
    for sale in unsynced:
        for item in sale.items:
            key = (item.product_id, item.branch_id)
            deltas[key] = deltas.get(key, 0) - item.quantity
    return deltas


def refresh_reference_data() -> dict:
    """
    Replace the cached catalog with the ledger's current state.

    Inventory is rebuilt as ledger quantity + unsynced queued deltas, so sales
    still waiting in the queue keep their effect on the cached stock.
    Ledger errors propagate before anything local is replaced.
    """
    ledger = get_ledger()

    fetched = {
        collection: ledger.fetch_reference_table(table, filters)
        for collection, (table, filters) in REFERENCE_TABLES.items()
    }
    inventory_rows = [
        row for row in ledger.fetch_reference_table("inventory")
        if row.get("branch_id")
    ]

    stamp = local_store.business_now_iso()
    counts = {}
    for collection, rows in fetched.items():
        local_store.clear_collection(collection, commit=False)
        counts[collection] = local_store.put_all(collection, rows, commit=False)

    deltas = unsynced_inventory_deltas()
    quantities = {}
    for row in inventory_rows:
        key = (row["product_id"], row["branch_id"])
        quantities[key] = quantities.get(key, 0) + int(row.get("quantity") or 0)
    for key, delta in deltas.items():
        quantities[key] = quantities.get(key, 0) + delta

    local_store.clear_collection(STORE_INVENTORY, commit=False)
    counts[STORE_INVENTORY] = local_store.put_all(
        STORE_INVENTORY,
        (
            {"product_id": pid, "branch_id": bid, "quantity": qty, "updated_at": stamp}
            for (pid, bid), qty in quantities.items()
        ),
        commit=False,
    )
    local_store.set_last_sync_time(stamp, commit=False)
    db.session.commit()

    current_app.logger.info(
        "Reference data refreshed: %s",
        ", ".join(f"{name}={n}" for name, n in counts.items()),
    )
    return {"success": True, "counts": counts, "last_sync": stamp}
