# Overview: Offline sale writer; queues a sale locally and moves the cached stock. Never touches the network.

from __future__ import annotations

import random
import string
import threading
import time
import uuid

from flask import current_app

from ..extensions import db
from ..models import PendingSale, PendingSaleItem, PendingSalePayment
from ..models.pending import SYNC_PENDING, LOG_CREATE
from .concurrency import local_transaction, run_with_retry
from .sale_inputs import (
    SaleRequest,
    validate_sale_request,
    compute_totals,
    build_item_notes,
)
from . import local_store
"""
Offline Sale Invariants (authoritative)

- Validation runs before the store is touched; a rejected sale leaves every
  collection unchanged.
- Queue row, cached-stock deltas and the `create` log entry commit in ONE local
  transaction. Either all three are visible or none is.
- Cached stock moves per line at that line's (product, branch): minus quantity for
  a sale, plus quantity for a return. Negative results are allowed.
- Temp invoice numbers: OFF-<epoch ms>-<4 base36>. The ms component is strictly
  increasing within the process, so two numbers never share it. A clash with a
  number already stored (e.g. after a clock step back) is retried with a fresh one.
- Tax and discount are zero offline.
"""

_BASE36 = string.digits + string.ascii_uppercase

_last_stamp_ms = 0
_stamp_lock = threading.Lock()


def _next_stamp_ms() -> int:
    global _last_stamp_ms
    with _stamp_lock:
        now_ms = int(time.time() * 1000)
        if now_ms <= _last_stamp_ms:
            now_ms = _last_stamp_ms + 1
        _last_stamp_ms = now_ms
        return now_ms


def generate_temp_invoice_number() -> str:
    suffix = "".join(random.choices(_BASE36, k=4))
    return f"OFF-{_next_stamp_ms()}-{suffix}"


def generate_local_id() -> str:
    return f"offline_{uuid.uuid4().hex}"


def _temp_number_clash(exc) -> bool:
    # SQLite names the violated column: "UNIQUE constraint failed: pending_sales.temp_invoice_number"
    return "temp_invoice_number" in str(getattr(exc, "orig", exc))


def _build_pending_sale(req: SaleRequest, local_id: str, temp_number: str, device_id: str) -> PendingSale:
    totals = compute_totals(req)
    sign = -1 if req.is_return else 1
    selections = req.selections

    sale = PendingSale(
        local_id=local_id,
        temp_invoice_number=temp_number,
        invoice_number=None,
        invoice_type=req.invoice_type,
        total_amount=totals["total_amount"],
        tax_amount=totals["tax_amount"],
        discount_amount=totals["discount_amount"],
        profit=totals["profit"],
        credit_amount=req.credit_amount,
        payment_method=req.payment_method,
        branch_id=selections.branch.id,
        branch_name=selections.branch.name,
        customer_id=selections.customer_id,
        customer_name=selections.customer.name if selections.customer else None,
        record_id=selections.record_id,
        record_name=selections.record.name if selections.record else None,
        notes=req.notes,
        user_id=req.user_id,
        user_name=req.user_name,
        created_at=local_store.business_now_iso(),
        sync_status=SYNC_PENDING,
        sync_error=None,
        retry_count=0,
        device_id=device_id,
    )

    for n, item in enumerate(req.cart_items, start=1):
        sale.items.append(PendingSaleItem(
            line_number=n,
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity * sign,
            unit_price=item.price,
            cost_price=item.cost_price,
            discount=0,
            branch_id=req.branch_for(item),
            notes=build_item_notes(item) or None,
            selected_colors=item.selected_colors or None,
            selected_shapes=item.selected_shapes or None,
        ))

    for n, payment in enumerate(req.payment_split, start=1):
        sale.payments.append(PendingSalePayment(
            position=n,
            entry_id=payment.id or uuid.uuid4().hex,
            amount=payment.amount,
            payment_method_id=payment.payment_method_id or "",
            payment_method_name=payment.payment_method_name,
        ))

    return sale


def create_offline_sale(req: SaleRequest, *, local_id: str | None = None) -> dict:
    """
    Queue a sale on this terminal.

    local_id lets the orchestrator reuse the id it already sent as
    client_reference on a failed online attempt.

    Returns {"local_id", "temp_invoice_number", "total_amount", "message"}.
    Raises SaleValidationError before any write; SQLAlchemy errors propagate.
    """
    validate_sale_request(req)

    local_id = local_id or generate_local_id()

    def _write():
        temp_number = generate_temp_invoice_number()
        with local_transaction():
            device_id = local_store.get_device_id(commit=False)
            sale = _build_pending_sale(req, local_id, temp_number, device_id)
            db.session.add(sale)

            for line in sale.items:
                local_store.apply_inventory_delta(
                    line.product_id,
                    line.branch_id,
                    # line quantity is already negative for returns
                    -line.quantity,
                    commit=False,
                )

            local_store.add_sync_log(
                local_id,
                LOG_CREATE,
                details=f"Offline invoice {temp_number} created",
                commit=False,
            )
        return sale

    sale = run_with_retry(_write, retry_integrity=_temp_number_clash)

    current_app.logger.info(
        "Queued offline sale %s (%s) total=%s", sale.temp_invoice_number, local_id, sale.total_amount
    )
    return {
        "local_id": local_id,
        "temp_invoice_number": sale.temp_invoice_number,
        "total_amount": sale.total_amount,
        "message": "Invoice saved locally; it will sync when the connection returns",
    }
