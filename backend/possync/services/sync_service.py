# Overview: Sync manager; replays queued offline sales against the ledger when connectivity returns.

from __future__ import annotations

import threading
from datetime import timedelta

from flask import current_app

from ..extensions import db, get_ledger, get_connectivity
from ..models import PendingSale
from ..models.pending import (
    SYNC_PENDING,
    SYNC_SYNCING,
    SYNC_SYNCED,
    SYNC_FAILED,
    LOG_SYNC_SUCCESS,
    LOG_SYNC_FAILED,
    LOG_RETRY,
)
from ..money import to_decimal
from ..time_utils import parse_iso_datetime, utcnow
from .sale_inputs import PaymentEntry
from .sales_invoice_service import (
    InvoicePlan,
    LinePlan,
    PartialSaleError,
    commit_invoice,
    apply_post_commit,
)
from . import local_store
"""
Sync Invariants (authoritative)

- Eligible: status pending, or failed with retry_count < SYNC_MAX_RETRIES.
- Replay order: created_at, then temp_invoice_number. Ledger invoice numbers
  follow sync order, not sale order.
- Each sale: syncing -> synced (invoice number attached) | failed (retry + 1).
- A replay that commits and then fails a post-commit step is marked synced with
  the error text kept. It is never replayed again (that would duplicate it),
  is counted as needs_review rather than synced, and the drain reports failure.
- One drain at a time per process; a second caller gets an "in progress" result.
- Cleanup deletes synced sales older than SYNCED_RETENTION_HOURS, except those
  still carrying an error (kept for review unless explicitly included). The
  sync log is append-only and stays.
"""

OFFLINE_SYNC_NOTE = "offline sync: {temp}"


def plan_from_pending(sale: PendingSale) -> InvoicePlan:
    """Rebuild the invoice exactly as it was queued; totals are not recomputed."""
    note = OFFLINE_SYNC_NOTE.format(temp=sale.temp_invoice_number)
    notes = f"{sale.notes} | {note}" if sale.notes else note
    return InvoicePlan(
        client_reference=sale.local_id,
        invoice_type=sale.invoice_type,
        total_amount=to_decimal(sale.total_amount),
        tax_amount=to_decimal(sale.tax_amount),
        discount_amount=to_decimal(sale.discount_amount),
        profit=to_decimal(sale.profit),
        payment_method=sale.payment_method,
        branch_id=sale.branch_id,
        customer_id=sale.customer_id,
        record_id=sale.record_id,
        notes=notes,
        lines=[
            LinePlan(
                product_id=item.product_id,
                product_name=item.product_name,
                quantity=item.quantity,
                unit_price=to_decimal(item.unit_price),
                cost_price=to_decimal(item.cost_price),
                discount=to_decimal(item.discount),
                branch_id=item.branch_id,
                notes=item.notes,
                selected_colors=item.selected_colors,
                selected_shapes=item.selected_shapes,
            )
            for item in sale.items
        ],
        payments=[
            PaymentEntry(
                id=p.entry_id,
                amount=to_decimal(p.amount),
                payment_method_id=p.payment_method_id,
                payment_method_name=p.payment_method_name,
            )
            for p in sale.payments
        ],
        credit_amount=to_decimal(sale.credit_amount),
        user_id=sale.user_id,
        user_name=sale.user_name,
        created_at=sale.created_at,
    )


class SyncManager:
    """
    Process-wide queue drainer.

    Callbacks receive the summary dict of each finished drain. They run on the
    thread that ran the drain; exceptions they raise are logged and dropped so one
    listener cannot break the queue.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._callbacks = []
        self._callbacks_lock = threading.Lock()
        self._stop = threading.Event()
        self._worker = None

    # -------------------------------------------------------------------------
    # callbacks
    # -------------------------------------------------------------------------

    def on_sync_complete(self, callback):
        """Register a listener; returns a function that unregisters it."""
        with self._callbacks_lock:
            self._callbacks.append(callback)

        def _unsubscribe():
            with self._callbacks_lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)
        return _unsubscribe

    def _notify(self, summary: dict) -> None:
        with self._callbacks_lock:
            listeners = list(self._callbacks)
        for callback in listeners:
            try:
                callback(summary)
            except Exception:
                current_app.logger.exception("Sync completion callback failed")

    # -------------------------------------------------------------------------
    # drain
    # -------------------------------------------------------------------------

    @property
    def is_syncing(self) -> bool:
        return self._lock.locked()

    def eligible_sales(self) -> list[PendingSale]:
        max_retries = current_app.config.get("SYNC_MAX_RETRIES", 3)
        return db.session.query(PendingSale).filter(
            (PendingSale.sync_status == SYNC_PENDING)
            | ((PendingSale.sync_status == SYNC_FAILED) & (PendingSale.retry_count < max_retries))
        ).order_by(
            PendingSale.created_at.asc(),
            PendingSale.temp_invoice_number.asc(),
        ).all()

    def _sync_one(self, ledger, sale: PendingSale) -> dict:
        local_id = sale.local_id
        if sale.sync_status == SYNC_FAILED:
            local_store.add_sync_log(local_id, LOG_RETRY, details=f"Retry #{sale.retry_count + 1}")
        local_store.update_pending_sale_status(local_id, SYNC_SYNCING)

        plan = plan_from_pending(sale)
        try:
            committed, method_names = commit_invoice(ledger, plan)
        except Exception as exc:
            local_store.update_pending_sale_status(local_id, SYNC_FAILED, error=str(exc))
            local_store.add_sync_log(local_id, LOG_SYNC_FAILED, error=str(exc))
            current_app.logger.warning("Sync of %s failed: %s", sale.temp_invoice_number, exc)
            return {"local_id": local_id, "success": False, "error": str(exc)}

        invoice_number = committed["invoice_number"]
        try:
            warnings = apply_post_commit(ledger, plan, committed, method_names)
        except PartialSaleError as exc:
            # committed on the ledger: never retry, keep the error for review
            local_store.update_pending_sale_status(
                local_id, SYNC_SYNCED, invoice_number=invoice_number, error=str(exc)
            )
            local_store.add_sync_log(
                local_id, LOG_SYNC_SUCCESS,
                details=f"Synced as {invoice_number} (partial)", error=str(exc),
            )
            current_app.logger.error("Sync of %s partially completed: %s", sale.temp_invoice_number, exc)
            return {
                "local_id": local_id, "success": True, "needs_review": True,
                "invoice_number": invoice_number, "invoice_id": committed["id"], "error": str(exc),
            }

        local_store.update_pending_sale_status(local_id, SYNC_SYNCED, invoice_number=invoice_number)
        local_store.add_sync_log(
            local_id, LOG_SYNC_SUCCESS,
            details=f"Synced {sale.temp_invoice_number} as {invoice_number}",
        )
        result = {"local_id": local_id, "success": True, "invoice_number": invoice_number, "invoice_id": committed["id"]}
        if warnings:
            result["warnings"] = warnings
        return result

    def sync_pending_sales(self) -> dict:
        """Drain the queue once. Safe to call from any thread inside an app context."""
        if not get_connectivity().is_online():
            return {"success": False, "synced": 0, "failed": 0, "needs_review": 0, "results": [], "message": "Device is offline"}

        if not self._lock.acquire(blocking=False):
            return {"success": False, "synced": 0, "failed": 0, "needs_review": 0, "results": [], "message": "Sync already in progress"}

        try:
            ledger = get_ledger()
            sales = self.eligible_sales()
            results = [self._sync_one(ledger, sale) for sale in sales]
            needs_review = sum(1 for r in results if r.get("needs_review"))
            synced = sum(1 for r in results if r["success"]) - needs_review
            failed = len(results) - synced - needs_review
            if synced or needs_review:
                local_store.set_last_sync_time()
            message = f"Synced {synced} of {len(results)} pending sale(s)"
            if needs_review:
                message += f"; {needs_review} committed but need manual review"
            summary = {
                "success": failed == 0 and needs_review == 0,
                "synced": synced,
                "failed": failed,
                "needs_review": needs_review,
                "results": results,
                "message": message,
            }
            if needs_review:
                current_app.logger.error(message)
            elif results:
                current_app.logger.info(message)
        finally:
            self._lock.release()

        self._notify(summary)
        return summary

    # -------------------------------------------------------------------------
    # housekeeping
    # -------------------------------------------------------------------------

    def cleanup_synced_sales(self, *, older_than_hours: float | None = None, include_flagged: bool = False) -> int:
        """
        Delete synced sales older than the retention window. Returns the count.

        Synced sales that kept an error need manual review and stay unless
        include_flagged is set.
        """
        if older_than_hours is None:
            older_than_hours = current_app.config.get("SYNCED_RETENTION_HOURS", 24)
        cutoff = utcnow() - timedelta(hours=older_than_hours)

        removed = 0
        for sale in local_store.get_pending_sales_by_status(SYNC_SYNCED):
            if sale.sync_error and not include_flagged:
                continue
            synced_at = parse_iso_datetime(sale.synced_at or sale.created_at)
            if synced_at is not None and synced_at <= cutoff:
                local_store.delete_pending_sale(sale.local_id, commit=False)
                removed += 1
        db.session.commit()
        if removed:
            current_app.logger.info("Removed %s synced sale(s) from the local queue", removed)
        return removed

    def sync_status(self) -> dict:
        max_retries = current_app.config.get("SYNC_MAX_RETRIES", 3)
        exhausted = db.session.query(PendingSale).filter(
            PendingSale.sync_status == SYNC_FAILED,
            PendingSale.retry_count >= max_retries,
        ).count()
        return {
            "pending": local_store.count_pending_sales(SYNC_PENDING),
            "syncing": local_store.count_pending_sales(SYNC_SYNCING),
            "failed": local_store.count_pending_sales(SYNC_FAILED),
            "failed_permanently": exhausted,
            "synced": local_store.count_pending_sales(SYNC_SYNCED),
            "needs_review": db.session.query(PendingSale).filter(
                PendingSale.sync_status == SYNC_SYNCED,
                PendingSale.sync_error.isnot(None),
            ).count(),
            "is_syncing": self.is_syncing,
            "last_sync": local_store.get_last_sync_time(),
            "device_id": local_store.get_device_id(),
        }

    # -------------------------------------------------------------------------
    # background worker
    # -------------------------------------------------------------------------

    def start_background_sync(self, app, interval_seconds: float | None = None) -> threading.Thread:
        """Periodic sync + cleanup on a daemon thread. Idempotent."""
        if self._worker is not None and self._worker.is_alive():
            return self._worker
        if interval_seconds is None:
            interval_seconds = app.config.get("SYNC_INTERVAL_SECONDS", 300)
        self._stop.clear()

        def _loop():
            while not self._stop.wait(interval_seconds):
                with app.app_context():
                    try:
                        self.sync_pending_sales()
                        self.cleanup_synced_sales()
                    except Exception:
                        db.session.rollback()
                        app.logger.exception("Background sync pass failed")
                    finally:
                        db.session.remove()

        self._worker = threading.Thread(target=_loop, name="possync-sync", daemon=True)
        self._worker.start()
        return self._worker

    def stop_background_sync(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._worker is not None:
            self._worker.join(timeout)
            self._worker = None


def get_sync_manager() -> SyncManager:
    return current_app.extensions["sync_manager"]
