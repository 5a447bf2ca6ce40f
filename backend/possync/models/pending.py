from __future__ import annotations

from ..extensions import db

SYNC_PENDING = "pending"
SYNC_SYNCING = "syncing"
SYNC_SYNCED = "synced"
SYNC_FAILED = "failed"

SYNC_STATUSES = (SYNC_PENDING, SYNC_SYNCING, SYNC_SYNCED, SYNC_FAILED)

INVOICE_TYPE_SALE = "Sale Invoice"
INVOICE_TYPE_RETURN = "Sale Return"

LOG_CREATE = "create"
LOG_SYNC_SUCCESS = "sync_success"
LOG_SYNC_FAILED = "sync_failed"
LOG_RETRY = "retry"


class PendingSale(db.Model):
    """
    A sale recorded on this terminal that the ledger has not confirmed yet.

    LIFECYCLE:
    - pending: written by the offline writer
    - syncing: picked up by the sync manager
    - synced: ledger accepted it (invoice_number holds the official number)
    - failed: ledger rejected it or was unreachable; retried while retry_count is low

    Display names are denormalized so the queue can be listed without joins.
    Rows are only removed by the explicit cleanup of synced sales.
    """
    __tablename__ = "pending_sales"
    __store_indexes__ = ("sync_status", "created_at", "temp_invoice_number")
    __table_args__ = (
        db.UniqueConstraint("temp_invoice_number", name="uq_pending_sales_temp_number"),
        db.Index("ix_pending_sales_status_created", "sync_status", "created_at"),
    )

    local_id = db.Column(db.String(64), primary_key=True)
    temp_invoice_number = db.Column(db.String(64), nullable=False)
    invoice_number = db.Column(db.String(64), nullable=True)
    invoice_type = db.Column(db.String(32), nullable=False, default=INVOICE_TYPE_SALE)

    total_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    tax_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    profit = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    credit_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    payment_method = db.Column(db.String(128), nullable=False, default="cash")

    branch_id = db.Column(db.String(64), nullable=False)
    branch_name = db.Column(db.String(255), nullable=True)
    customer_id = db.Column(db.String(64), nullable=False)
    customer_name = db.Column(db.String(255), nullable=True)
    record_id = db.Column(db.String(64), nullable=True)
    record_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    user_id = db.Column(db.String(64), nullable=True)
    user_name = db.Column(db.String(255), nullable=True)

    # ISO-8601 at the fixed business offset; lexical order == chronological order
    created_at = db.Column(db.String(40), nullable=False, index=True)
    synced_at = db.Column(db.String(40), nullable=True)

    sync_status = db.Column(db.String(16), nullable=False, default=SYNC_PENDING, index=True)
    sync_error = db.Column(db.Text, nullable=True)
    retry_count = db.Column(db.Integer, nullable=False, default=0)
    device_id = db.Column(db.String(64), nullable=False)

    items = db.relationship(
        "PendingSaleItem",
        backref="sale",
        cascade="all, delete-orphan",
        order_by="PendingSaleItem.line_number",
        lazy="selectin",
    )
    payments = db.relationship(
        "PendingSalePayment",
        backref="sale",
        cascade="all, delete-orphan",
        order_by="PendingSalePayment.position",
        lazy="selectin",
    )

    @property
    def is_return(self) -> bool:
        return self.invoice_type == INVOICE_TYPE_RETURN

    def to_dict(self) -> dict:
        return {
            "local_id": self.local_id,
            "temp_invoice_number": self.temp_invoice_number,
            "invoice_number": self.invoice_number,
            "invoice_type": self.invoice_type,
            "total_amount": float(self.total_amount or 0),
            "tax_amount": float(self.tax_amount or 0),
            "discount_amount": float(self.discount_amount or 0),
            "profit": float(self.profit or 0),
            "payment_method": self.payment_method,
            "branch_id": self.branch_id,
            "branch_name": self.branch_name,
            "customer_id": self.customer_id,
            "customer_name": self.customer_name,
            "record_id": self.record_id,
            "record_name": self.record_name,
            "notes": self.notes,
            "items": [item.to_dict() for item in self.items],
            "payment_split_data": [p.to_dict() for p in self.payments],
            "credit_amount": float(self.credit_amount or 0),
            "user_id": self.user_id,
            "user_name": self.user_name,
            "created_at": self.created_at,
            "synced_at": self.synced_at,
            "sync_status": self.sync_status,
            "sync_error": self.sync_error,
            "retry_count": self.retry_count,
            "device_id": self.device_id,
        }


class PendingSaleItem(db.Model):
    """Line of a pending sale. quantity is negative for returns."""
    __tablename__ = "pending_sale_items"
    __table_args__ = (
        db.UniqueConstraint("local_id", "line_number", name="uq_pending_sale_items_line"),
    )

    id = db.Column(db.Integer, primary_key=True)
    local_id = db.Column(db.String(64), db.ForeignKey("pending_sales.local_id"), nullable=False, index=True)
    line_number = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.String(64), nullable=False)
    product_name = db.Column(db.String(255), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    # Unit cost snapshot at time of sale
    cost_price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    branch_id = db.Column(db.String(64), nullable=False)
    notes = db.Column(db.Text, nullable=True)
    selected_colors = db.Column(db.JSON, nullable=True)
    selected_shapes = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": float(self.unit_price or 0),
            "cost_price": float(self.cost_price or 0),
            "discount": float(self.discount or 0),
            "branch_id": self.branch_id,
            "notes": self.notes,
            "selected_colors": self.selected_colors,
            "selected_shapes": self.selected_shapes,
        }


class PendingSalePayment(db.Model):
    """One entry of a split payment."""
    __tablename__ = "pending_sale_payments"

    id = db.Column(db.Integer, primary_key=True)
    local_id = db.Column(db.String(64), db.ForeignKey("pending_sales.local_id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    entry_id = db.Column(db.String(64), nullable=False)
    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_method_id = db.Column(db.String(64), nullable=False)
    payment_method_name = db.Column(db.String(128), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.entry_id,
            "amount": float(self.amount or 0),
            "payment_method_id": self.payment_method_id,
            "payment_method_name": self.payment_method_name,
        }


class SyncLogEntry(db.Model):
    """
    Append-only audit trail of queue activity.

    No updates or deletes; cleanup of synced sales leaves their log behind.
    """
    __tablename__ = "sync_log"
    __store_indexes__ = ("local_id", "timestamp")

    id = db.Column(db.String(64), primary_key=True)
    local_id = db.Column(db.String(64), nullable=False, index=True)
    action = db.Column(db.String(32), nullable=False)
    timestamp = db.Column(db.String(40), nullable=False, index=True)
    details = db.Column(db.Text, nullable=True)
    error = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "local_id": self.local_id,
            "action": self.action,
            "timestamp": self.timestamp,
            "details": self.details,
            "error": self.error,
        }


class MetaEntry(db.Model):
    """Process-wide key/value settings (device id, last sync, schema version)."""
    __tablename__ = "meta"
    __store_indexes__ = ()

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {"key": self.key, "value": self.value}
