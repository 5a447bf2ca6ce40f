# Overview: Local durable store; named collections over the terminal's SQLite database.

from __future__ import annotations

import uuid
from datetime import datetime

from flask import current_app
from sqlalchemy import inspect, text, update

from ..extensions import db
from ..models import (
    CachedProduct,
    CachedInventory,
    CachedBranch,
    CachedCategory,
    CachedCustomer,
    CachedRecord,
    CachedPaymentMethod,
    PendingSale,
    SyncLogEntry,
    MetaEntry,
)
from ..models.pending import SYNC_SYNCED, SYNC_FAILED, SYNC_STATUSES
from ..time_utils import to_business_iso
"""
Local Store Invariants (authoritative)

- Every collection supports get-all, get-by-key, get-by-index, put, put-many,
  delete-by-key, clear and count.
- Inventory is keyed by (product_id, branch_id); stock is branch-scoped.
- Pending sales are keyed by a locally generated id; temp_invoice_number is unique.
- I/O failures propagate to the caller as SQLAlchemy errors. Nothing here retries;
  retry/backoff policy belongs to the offline writer and the sync manager.
- Writes take commit=True by default. Pass commit=False to join the caller's
  local_transaction() instead (the write is flushed, not committed).
"""

STORE_PRODUCTS = "products"
STORE_INVENTORY = "inventory"
STORE_BRANCHES = "branches"
STORE_CATEGORIES = "categories"
STORE_CUSTOMERS = "customers"
STORE_RECORDS = "records"
STORE_PAYMENT_METHODS = "payment_methods"
STORE_PENDING_SALES = "pending_sales"
STORE_SYNC_LOG = "sync_log"
STORE_META = "meta"

COLLECTIONS = {
    STORE_PRODUCTS: CachedProduct,
    STORE_INVENTORY: CachedInventory,
    STORE_BRANCHES: CachedBranch,
    STORE_CATEGORIES: CachedCategory,
    STORE_CUSTOMERS: CachedCustomer,
    STORE_RECORDS: CachedRecord,
    STORE_PAYMENT_METHODS: CachedPaymentMethod,
    STORE_PENDING_SALES: PendingSale,
    STORE_SYNC_LOG: SyncLogEntry,
    STORE_META: MetaEntry,
}

META_LAST_SYNC = "last_sync"
META_DEVICE_ID = "device_id"
META_DB_VERSION = "db_version"

SCHEMA_VERSION = 2


class LocalStoreError(Exception):
    """Raised for misuse of the local store (unknown collection, bad index)."""
    pass


def business_now_iso(now: datetime | None = None) -> str:
    offset = current_app.config.get("BUSINESS_UTC_OFFSET_HOURS", 2)
    return to_business_iso(now, offset_hours=offset)


def _model_for(collection: str):
    model = COLLECTIONS.get(collection)
    if model is None:
        raise LocalStoreError(f"Unknown collection: {collection}")
    return model


def _finish(commit: bool) -> None:
    if commit:
        db.session.commit()
    else:
        db.session.flush()


def _to_model(model, item):
    if isinstance(item, model):
        return item
    if not isinstance(item, dict):
        raise LocalStoreError(f"Cannot store {type(item).__name__} in {model.__tablename__}")
    columns = {c.key for c in model.__mapper__.columns}
    return model(**{k: v for k, v in item.items() if k in columns})


# =============================================================================
# INITIALIZATION
# =============================================================================

def _upgrade_to_v2() -> None:
    # v2 stores selected shapes next to selected colours on queued lines
    columns = {c["name"] for c in inspect(db.engine).get_columns("pending_sale_items")}
    if "selected_shapes" not in columns:
        db.session.execute(text("ALTER TABLE pending_sale_items ADD COLUMN selected_shapes JSON"))


_UPGRADES = {
    2: _upgrade_to_v2,
}


def init_local_store() -> int:
    """
    Open the local store, creating collections and indexes on first use.

    Idempotent: existing tables are left alone. Upgrades only add structure, so
    queued sales survive a schema bump. Returns the schema version in effect.
    """
    db.create_all()

    current = get_meta(META_DB_VERSION)
    if current is None:
        set_meta(META_DB_VERSION, SCHEMA_VERSION)
        return SCHEMA_VERSION

    current = int(current)
    for version in range(current + 1, SCHEMA_VERSION + 1):
        step = _UPGRADES.get(version)
        if step is not None:
            step()
        set_meta(META_DB_VERSION, version, commit=False)
        current_app.logger.info("Local store upgraded to schema v%s", version)
    db.session.commit()
    return max(current, SCHEMA_VERSION)


# =============================================================================
# GENERIC COLLECTION OPERATIONS
# =============================================================================

def get_all(collection: str) -> list:
    model = _model_for(collection)
    return db.session.query(model).all()


def get_by_key(collection: str, key):
    """Composite keys are passed as tuples, e.g. (product_id, branch_id)."""
    model = _model_for(collection)
    return db.session.get(model, key)


def get_by_index(collection: str, index_name: str, value) -> list:
    model = _model_for(collection)
    if index_name not in getattr(model, "__store_indexes__", ()):
        raise LocalStoreError(f"{collection} has no index {index_name!r}")
    column = getattr(model, index_name)
    return db.session.query(model).filter(column == value).all()


def put(collection: str, item, *, commit: bool = True):
    """Insert or replace one item (model instance or dict)."""
    model = _model_for(collection)
    merged = db.session.merge(_to_model(model, item))
    _finish(commit)
    return merged


def put_all(collection: str, items, *, commit: bool = True) -> int:
    model = _model_for(collection)
    n = 0
    for item in items:
        db.session.merge(_to_model(model, item))
        n += 1
    _finish(commit)
    return n


def delete_by_key(collection: str, key, *, commit: bool = True) -> bool:
    obj = get_by_key(collection, key)
    if obj is None:
        return False
    db.session.delete(obj)
    _finish(commit)
    return True


def clear_collection(collection: str, *, commit: bool = True) -> int:
    model = _model_for(collection)
    if model is PendingSale:
        # ORM delete so item/payment children cascade
        rows = db.session.query(PendingSale).all()
        for row in rows:
            db.session.delete(row)
        deleted = len(rows)
    else:
        deleted = db.session.query(model).delete()
    _finish(commit)
    return deleted


def count(collection: str) -> int:
    model = _model_for(collection)
    return db.session.query(model).count()


# =============================================================================
# META
# =============================================================================

def get_meta(key: str):
    entry = db.session.get(MetaEntry, key)
    return entry.value if entry is not None else None


def set_meta(key: str, value, *, commit: bool = True) -> None:
    db.session.merge(MetaEntry(key=key, value=value))
    _finish(commit)


def _generate_device_id() -> str:
    return f"device_{uuid.uuid4().hex[:16]}"


def get_device_id(*, commit: bool = True) -> str:
    """Stable per-installation id: generated once, then reused forever."""
    existing = get_meta(META_DEVICE_ID)
    if existing:
        return existing
    device_id = _generate_device_id()
    set_meta(META_DEVICE_ID, device_id, commit=commit)
    return device_id


def get_last_sync_time() -> str | None:
    return get_meta(META_LAST_SYNC)


def set_last_sync_time(value: str | None = None, *, commit: bool = True) -> str:
    value = value or business_now_iso()
    set_meta(META_LAST_SYNC, value, commit=commit)
    return value


# =============================================================================
# CATALOG
# =============================================================================

def get_product_by_barcode(barcode: str) -> CachedProduct | None:
    matches = get_by_index(STORE_PRODUCTS, "barcode", barcode)
    return matches[0] if matches else None


def get_inventory_for(product_id: str, branch_id: str) -> CachedInventory | None:
    return get_by_key(STORE_INVENTORY, (product_id, branch_id))


def get_inventory_by_product(product_id: str) -> list[CachedInventory]:
    return get_by_index(STORE_INVENTORY, "product_id", product_id)


def get_inventory_by_branch(branch_id: str) -> list[CachedInventory]:
    return get_by_index(STORE_INVENTORY, "branch_id", branch_id)


def apply_inventory_delta(
    product_id: str,
    branch_id: str,
    delta: int,
    *,
    commit: bool = True,
) -> int:
    """
    Add a signed delta to the cached (product, branch) quantity.

    Negative results are allowed; the ledger resolves them when the sale syncs.
    Returns the new cached quantity.
    """
    stamp = business_now_iso()
    result = db.session.execute(
        update(CachedInventory)
        .where(
            CachedInventory.product_id == product_id,
            CachedInventory.branch_id == branch_id,
        )
        .values(quantity=CachedInventory.quantity + delta, updated_at=stamp)
        .execution_options(synchronize_session="fetch")
    )
    if not result.rowcount:
        db.session.add(CachedInventory(
            product_id=product_id,
            branch_id=branch_id,
            quantity=delta,
            updated_at=stamp,
        ))
    _finish(commit)
    return get_inventory_for(product_id, branch_id).quantity


def update_cached_cost_price(product_id: str, cost_price, *, commit: bool = True) -> bool:
    product = get_by_key(STORE_PRODUCTS, product_id)
    if product is None:
        return False
    product.cost_price = cost_price
    product.updated_at = business_now_iso()
    _finish(commit)
    return True


# =============================================================================
# PENDING SALES
# =============================================================================

def get_all_pending_sales() -> list[PendingSale]:
    return db.session.query(PendingSale).order_by(
        PendingSale.created_at.asc(),
        PendingSale.temp_invoice_number.asc(),
    ).all()


def get_pending_sale(local_id: str) -> PendingSale | None:
    return get_by_key(STORE_PENDING_SALES, local_id)


def get_pending_sales_by_status(status: str) -> list[PendingSale]:
    if status not in SYNC_STATUSES:
        raise LocalStoreError(f"Unknown sync status: {status}")
    return db.session.query(PendingSale).filter_by(sync_status=status).order_by(
        PendingSale.created_at.asc(),
        PendingSale.temp_invoice_number.asc(),
    ).all()


def count_pending_sales(status: str | None = None) -> int:
    q = db.session.query(PendingSale)
    if status is not None:
        q = q.filter_by(sync_status=status)
    return q.count()


def update_pending_sale_status(
    local_id: str,
    status: str,
    *,
    invoice_number: str | None = None,
    error: str | None = None,
    commit: bool = True,
) -> PendingSale | None:
    """
    Move a queued sale through its lifecycle.

    - failed: records the error and bumps retry_count
    - synced: stamps synced_at and keeps the ledger's invoice number; an error
      here means the invoice exists but a later step needs manual review
    """
    if status not in SYNC_STATUSES:
        raise LocalStoreError(f"Unknown sync status: {status}")

    sale = get_pending_sale(local_id)
    if sale is None:
        return None

    sale.sync_status = status
    if invoice_number:
        sale.invoice_number = invoice_number
    if status == SYNC_SYNCED:
        sale.synced_at = business_now_iso()
        sale.sync_error = error
    elif status == SYNC_FAILED:
        sale.sync_error = error
        sale.retry_count = (sale.retry_count or 0) + 1
    _finish(commit)
    return sale


def delete_pending_sale(local_id: str, *, commit: bool = True) -> bool:
    return delete_by_key(STORE_PENDING_SALES, local_id, commit=commit)


# =============================================================================
# SYNC LOG
# =============================================================================

def add_sync_log(
    local_id: str,
    action: str,
    *,
    details: str | None = None,
    error: str | None = None,
    commit: bool = True,
) -> SyncLogEntry:
    entry = SyncLogEntry(
        id=f"log_{uuid.uuid4().hex}",
        local_id=local_id,
        action=action,
        timestamp=business_now_iso(),
        details=details,
        error=error,
    )
    db.session.add(entry)
    _finish(commit)
    return entry


def get_sync_log_for_sale(local_id: str) -> list[SyncLogEntry]:
    return db.session.query(SyncLogEntry).filter_by(local_id=local_id).order_by(
        SyncLogEntry.timestamp.asc()
    ).all()


# =============================================================================
# HOUSEKEEPING
# =============================================================================

def has_offline_data() -> bool:
    return count(STORE_PRODUCTS) > 0


def clear_all_offline_data(*, force: bool = False) -> None:
    """
    Wipe every collection.

    Refuses while unsynced sales exist unless force=True; those sales would be lost.
    """
    unsynced = db.session.query(PendingSale).filter(PendingSale.sync_status != SYNC_SYNCED).count()
    if unsynced and not force:
        raise LocalStoreError(f"{unsynced} sale(s) are not synced yet; refusing to clear local data")

    device_id = get_meta(META_DEVICE_ID)
    for name in COLLECTIONS:
        clear_collection(name, commit=False)
    # the installation keeps its identity and schema marker
    set_meta(META_DB_VERSION, SCHEMA_VERSION, commit=False)
    if device_id:
        set_meta(META_DEVICE_ID, device_id, commit=False)
    db.session.commit()
