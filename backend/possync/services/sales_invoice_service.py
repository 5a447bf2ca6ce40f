# Overview: Sale orchestrator; records a sale online through the ledger or falls back to the offline queue.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from flask import current_app

from ..extensions import get_ledger, get_connectivity
from ..models.pending import INVOICE_TYPE_RETURN
from ..money import round_money, money_to_json, ZERO
from ..time_utils import parse_iso_datetime
from .concurrency import fan_out
from .ledger_client import is_transient_network_error
from .offline_sales_service import create_offline_sale, generate_local_id
from .sale_inputs import (
    SaleRequest,
    PaymentEntry,
    validate_sale_request,
    compute_totals,
    build_item_notes,
    variant_selections,
)
from . import local_store
"""
Sale Orchestration Invariants (authoritative)

Two phases:
1. Commit: payment-method lookup, invoice sequence number, then the atomic
   header+items RPC. Nothing is persisted on the ledger until that RPC returns.
2. Post-commit: inventory, variant, payment-ledger and drawer side effects, fanned
   out concurrently and awaited together.

Offline fallback:
- Device offline before any call -> offline writer, tagged is_offline.
- Network-class failure during phase 1 -> offline writer with the SAME local id
  (sent as client_reference), tagged is_offline.
- Any other phase-1 failure propagates unchanged.
- NOTHING after phase 1 returns ever reaches the offline writer. A committed
  invoice plus a queued copy is a duplicate sale.

Phase-2 failure classes:
- inventory / variant adjustments: best-effort, returned as warnings
- payment ledger / drawer: PartialSaleError (invoice exists, needs manual review)

Drawer accounting:
- one transaction row per distinct payment-method name, amounts summed per name
- only cash-equivalent names move the balance, through one atomic delta
- no record selected: rows are still written, no balance is touched
"""


class PartialSaleError(Exception):
    """
    The invoice was committed but a later step failed.

    Never retried or re-queued automatically; an operator reconciles it.
    """

    def __init__(self, message: str, *, invoice_id: str, invoice_number: str, failed_steps=None):
        super().__init__(message)
        self.invoice_id = invoice_id
        self.invoice_number = invoice_number
        self.failed_steps = list(failed_steps or [])


@dataclass
class SaleResult:
    success: bool
    invoice_id: str
    invoice_number: str
    total_amount: Decimal
    message: str
    is_offline: bool = False
    inventory_warnings: list = field(default_factory=list)

    def to_dict(self) -> dict:
        out = {
            "success": self.success,
            "invoice_id": self.invoice_id,
            "invoice_number": self.invoice_number,
            "total_amount": money_to_json(self.total_amount),
            "message": self.message,
        }
        if self.is_offline:
            out["is_offline"] = True
        if self.inventory_warnings:
            out["inventory_warnings"] = list(self.inventory_warnings)
        return out


# =============================================================================
# INVOICE PLAN (shared by the online path and queue replay)
# =============================================================================

@dataclass
class LinePlan:
    product_id: str
    product_name: str | None
    quantity: int  # signed: negative on returns
    unit_price: Decimal
    cost_price: Decimal
    discount: Decimal
    branch_id: str
    notes: str | None
    selected_colors: dict | None = None
    selected_shapes: dict | None = None

    @property
    def stock_change(self) -> int:
        """Ledger stock delta: a sale removes stock, a return puts it back."""
        return -self.quantity


@dataclass
class InvoicePlan:
    client_reference: str
    invoice_type: str
    total_amount: Decimal
    tax_amount: Decimal
    discount_amount: Decimal
    profit: Decimal
    payment_method: str
    branch_id: str
    customer_id: str
    record_id: str | None
    notes: str | None
    lines: list
    payments: list
    credit_amount: Decimal
    user_id: str | None
    user_name: str | None
    created_at: str

    @property
    def is_return(self) -> bool:
        return self.invoice_type == INVOICE_TYPE_RETURN

    @property
    def valid_payments(self) -> list[PaymentEntry]:
        return [p for p in self.payments if p.is_valid]


def plan_from_request(req: SaleRequest, client_reference: str, created_at: str) -> InvoicePlan:
    totals = compute_totals(req)
    sign = -1 if req.is_return else 1
    lines = [
        LinePlan(
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity * sign,
            unit_price=round_money(item.price),
            cost_price=round_money(item.cost_price),
            discount=ZERO,
            branch_id=req.branch_for(item),
            notes=build_item_notes(item) or None,
            selected_colors=item.selected_colors,
            selected_shapes=item.selected_shapes,
        )
        for item in req.cart_items
    ]
    return InvoicePlan(
        client_reference=client_reference,
        invoice_type=req.invoice_type,
        payment_method=req.payment_method,
        branch_id=req.selections.branch.id,
        customer_id=req.selections.customer_id,
        record_id=req.selections.record_id,
        notes=req.notes,
        lines=lines,
        payments=list(req.payment_split),
        credit_amount=req.credit_amount,
        user_id=req.user_id,
        user_name=req.user_name,
        created_at=created_at,
        **totals,
    )


# =============================================================================
# PHASE 1: COMMIT
# =============================================================================

def _resolve_method_names(ledger, plan: InvoicePlan) -> dict:
    """payment_method_id -> display name (ledger name, else the cached name, else 'cash')."""
    valid = plan.valid_payments
    if not valid:
        return {}
    names = ledger.payment_method_names(p.payment_method_id for p in valid)
    for p in valid:
        if p.payment_method_id not in names:
            names[p.payment_method_id] = p.payment_method_name or "cash"
    return names


def _payment_summary(plan: InvoicePlan, method_names: dict) -> str:
    valid = plan.valid_payments
    if not valid:
        return plan.payment_method
    ordered = []
    for p in valid:
        name = method_names.get(p.payment_method_id, "cash")
        if name not in ordered:
            ordered.append(name)
    return ", ".join(ordered)


def _time_of_day(created_at: str) -> str:
    dt = parse_iso_datetime(created_at)
    return dt.strftime("%H:%M:%S") if dt else ""


def commit_invoice(ledger, plan: InvoicePlan) -> tuple[dict, dict]:
    """
    Phase 1. Returns ({"id", "invoice_number"}, method_names).

    Raises whatever the ledger raised; the caller decides on fallback.
    """
    method_names = _resolve_method_names(ledger, plan)
    invoice_number = ledger.next_sales_invoice_number()

    sale_data = {
        "invoice_number": invoice_number,
        "client_reference": plan.client_reference,
        "total_amount": plan.total_amount,
        "tax_amount": plan.tax_amount,
        "discount_amount": plan.discount_amount,
        "profit": plan.profit,
        "payment_method": _payment_summary(plan, method_names),
        "branch_id": plan.branch_id,
        "customer_id": plan.customer_id,
        "record_id": plan.record_id or "",
        "notes": plan.notes or "",
        "time": _time_of_day(plan.created_at),
        "invoice_type": plan.invoice_type,
        "created_by": plan.user_id,
    }
    items = [
        {
            "product_id": line.product_id,
            "quantity": line.quantity,
            "unit_price": line.unit_price,
            "cost_price": line.cost_price,
            "discount": line.discount,
            "notes": line.notes or "",
            "branch_id": line.branch_id,
        }
        for line in plan.lines
    ]

    committed = ledger.create_sale_with_items(sale_data, items)
    committed.setdefault("invoice_number", invoice_number)
    return committed, method_names


# =============================================================================
# PHASE 2: POST-COMMIT SIDE EFFECTS
# (run on worker threads: plain data in, plain data out, no session, no logging)
# =============================================================================

def _adjust_variant(ledger, product_id, variant_type, name, branch_id, change):
    definition_id = ledger.find_variant_definition_id(product_id, name, variant_type)
    if definition_id is None:
        return None
    return ledger.adjust_variant_quantity(definition_id, branch_id, change)


def _payment_rows(plan: InvoicePlan, committed: dict, method_names: dict, payment_date: str) -> list:
    return [
        {
            "customer_id": plan.customer_id,
            "amount": round_money(p.amount),
            "payment_method": method_names.get(p.payment_method_id, "cash"),
            "notes": f"Payment for invoice {committed['invoice_number']}",
            "payment_date": payment_date,
            "created_by": plan.user_id,
            "safe_id": plan.record_id,
            "sale_id": committed["id"],
        }
        for p in plan.valid_payments
    ]


def drawer_movements(plan: InvoicePlan, method_names: dict, cash_methods) -> list[tuple[str, Decimal, bool]]:
    """
    [(method_name, signed_amount, is_cash)], one per distinct method.

    Without a split, the whole invoice (minus credit) is one movement under the
    invoice's payment method.
    """
    sign = -1 if plan.is_return else 1
    valid = plan.valid_payments
    if valid:
        per_method = {}
        for p in valid:
            name = method_names.get(p.payment_method_id, "cash")
            per_method[name] = per_method.get(name, ZERO) + round_money(p.amount)
        return [
            (name, round_money(amount * sign), name.lower() in cash_methods)
            for name, amount in per_method.items()
        ]

    # total is already signed for returns
    amount = round_money(plan.total_amount - plan.credit_amount * sign)
    if plan.total_amount == 0 and plan.credit_amount > 0:
        amount = round_money(ZERO)
    return [(plan.payment_method, amount, plan.payment_method.lower() in cash_methods)]


def _post_drawer(ledger, plan: InvoicePlan, committed: dict, method_names: dict, cash_methods):
    movements = drawer_movements(plan, method_names, cash_methods)
    cash_delta = round_money(sum((amt for _, amt, is_cash in movements if is_cash), ZERO))

    drawer = None
    balance = None
    if plan.record_id:
        drawer = ledger.get_or_create_drawer(plan.record_id)
        if cash_delta != 0:
            balance = ledger.adjust_drawer_balance(drawer["id"], cash_delta)
        else:
            balance = round_money(drawer.get("current_balance") or 0)

    label = "Return" if plan.is_return else "Sale"
    running = None if balance is None else round_money(balance - cash_delta)
    rows = []
    for name, amount, is_cash in movements:
        row = {
            "transaction_type": "return" if plan.is_return else "sale",
            "amount": amount,
            "sale_id": committed["id"],
            "payment_method": name,
            "notes": f"{label} - invoice {committed['invoice_number']} ({name})",
            "performed_by": plan.user_name or "system",
        }
        if drawer is not None:
            row["drawer_id"] = drawer["id"]
            row["record_id"] = plan.record_id
            if is_cash:
                running = round_money(running + amount)
                row["balance_after"] = running
            else:
                row["balance_after"] = None
        rows.append(row)

    ledger.insert_drawer_transactions(rows)
    return {"transactions": len(rows), "cash_delta": cash_delta, "balance": balance}


def apply_post_commit(ledger, plan: InvoicePlan, committed: dict, method_names: dict) -> list[str]:
    """
    Phase 2. Returns inventory warnings.

    Raises PartialSaleError when the payment ledger or drawer update failed.
    """
    cash_methods = tuple(current_app.config.get("CASH_PAYMENT_METHODS", ("cash",)))
    payment_date = local_store.business_now_iso()[:10]

    calls = []
    for line in plan.lines:
        calls.append((
            ("inventory", line),
            ledger.adjust_inventory, line.product_id, line.branch_id, line.stock_change,
        ))
        for variant_type, name, qty in variant_selections(line.selected_colors, line.selected_shapes):
            change = qty if plan.is_return else -qty
            calls.append((
                ("variant", line, f"{variant_type} {name}"),
                _adjust_variant, ledger, line.product_id, variant_type, name, line.branch_id, change,
            ))

    # returns refund through the drawer only; the payments ledger records money in
    if not plan.is_return and plan.valid_payments:
        calls.append((
            ("payments",),
            ledger.insert_customer_payments, _payment_rows(plan, committed, method_names, payment_date),
        ))
    calls.append((("drawer",), _post_drawer, ledger, plan, committed, method_names, cash_methods))

    warnings = []
    failed_steps = []
    first_error = None
    for outcome in fan_out(calls):
        kind = outcome.label[0]
        if kind == "inventory":
            line = outcome.label[1]
            label = line.product_name or line.product_id
            if not outcome.ok:
                current_app.logger.warning(
                    "Inventory update failed for %s in branch %s: %s", line.product_id, line.branch_id, outcome.error
                )
                warnings.append(f"Inventory update failed for \"{label}\"")
            elif outcome.value.get("went_negative"):
                warnings.append(f"Stock for \"{label}\" is now negative ({outcome.value.get('new_quantity')})")
        elif kind == "variant":
            line, variant = outcome.label[1], outcome.label[2]
            if not outcome.ok:
                current_app.logger.warning(
                    "Variant update failed for %s (%s): %s", line.product_id, variant, outcome.error
                )
                warnings.append(f"Variant update failed for \"{line.product_name or line.product_id}\" ({variant})")
            elif outcome.value is None:
                current_app.logger.warning("No variant definition for %s (%s)", line.product_id, variant)
        elif not outcome.ok:
            current_app.logger.error(
                "Invoice %s: %s step failed after commit: %s", committed["invoice_number"], kind, outcome.error
            )
            failed_steps.append(kind)
            first_error = first_error or outcome.error

    if failed_steps:
        raise PartialSaleError(
            f"Invoice {committed['invoice_number']} was created but "
            f"{' and '.join(failed_steps)} failed; needs manual review",
            invoice_id=committed["id"],
            invoice_number=committed["invoice_number"],
            failed_steps=failed_steps,
        ) from first_error

    return warnings


# =============================================================================
# ENTRY POINT
# =============================================================================

def _offline_result(offline: dict, suffix: str = "") -> SaleResult:
    return SaleResult(
        success=True,
        invoice_id=offline["local_id"],
        invoice_number=offline["temp_invoice_number"],
        total_amount=offline["total_amount"],
        message=offline["message"] + suffix,
        is_offline=True,
    )


def create_sales_invoice(req: SaleRequest) -> SaleResult:
    """
    Record one sale.

    Raises:
    - SaleValidationError for bad input (nothing written anywhere)
    - LedgerError for non-network ledger rejections before commit
    - PartialSaleError when the invoice committed but payment/drawer bookkeeping failed
    """
    connectivity = get_connectivity()
    if not connectivity.is_online():
        current_app.logger.info("Device offline; queueing sale locally")
        return _offline_result(create_offline_sale(req))

    validate_sale_request(req)

    ledger = get_ledger()
    local_id = generate_local_id()
    plan = plan_from_request(req, local_id, local_store.business_now_iso())

    try:
        committed, method_names = commit_invoice(ledger, plan)
    except Exception as exc:
        if not is_transient_network_error(exc):
            raise
        current_app.logger.error("Ledger unreachable while creating invoice (%s); falling back to offline queue", exc)
        return _offline_result(create_offline_sale(req, local_id=local_id), " (connection failed)")

    current_app.logger.info("Invoice %s committed (id=%s)", committed["invoice_number"], committed["id"])

    warnings = apply_post_commit(ledger, plan, committed, method_names)

    return SaleResult(
        success=True,
        invoice_id=committed["id"],
        invoice_number=committed["invoice_number"],
        total_amount=plan.total_amount,
        message="Invoice created successfully",
        inventory_warnings=warnings,
    )
