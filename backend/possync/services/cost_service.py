# Overview: Weighted-average product cost and its reconciliation against the ledger's purchase history.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from flask import current_app

from ..extensions import get_ledger
from ..money import to_decimal, round_money, ZERO
from . import local_store

PURCHASE_RETURN_TYPE = "Purchase Return"


class CostTrackingError(Exception):
    """Cost bookkeeping failed; the caller decides whether that is fatal."""

    def __init__(self, message: str, *, product_id: str | None = None):
        super().__init__(message)
        self.product_id = product_id


@dataclass
class CostResult:
    updated_cost_per_unit: Decimal
    total_cost: Decimal


# =============================================================================
# CALCULATOR
# =============================================================================

def calculate_weighted_average_cost(
    current_stock_quantity,
    current_cost_per_unit,
    new_purchase_quantity,
    new_purchase_unit_cost,
) -> CostResult:
    """
    Perpetual weighted-average cost.

        ((q0 * c0) + (q1 * c1)) / (q0 + q1), rounded to 2 dp

    With no prior basis (q0 == 0 or c0 == 0) the new unit cost is used as-is.
    Purchase returns must not be passed here: returns reverse quantity, never the
    average.
    """
    q0 = to_decimal(current_stock_quantity)
    c0 = to_decimal(current_cost_per_unit)
    q1 = to_decimal(new_purchase_quantity)
    c1 = to_decimal(new_purchase_unit_cost)

    if q0 <= 0 or c0 == 0 or q0 + q1 <= 0:
        updated = round_money(c1)
    else:
        updated = round_money(((q0 * c0) + (q1 * c1)) / (q0 + q1))

    total_qty = max(q0, ZERO) + q1
    return CostResult(
        updated_cost_per_unit=updated,
        total_cost=round_money(updated * total_qty),
    )


# =============================================================================
# RECONCILIATION
# =============================================================================

def _current_basis(ledger, product_id: str) -> tuple[dict | None, Decimal]:
    tracking = ledger.get_cost_tracking(product_id)
    if tracking is not None:
        return tracking, to_decimal(tracking.get("average_cost"))
    # first purchase ever: fall back to whatever the product says
    product = ledger.get_product(product_id)
    return None, to_decimal((product or {}).get("cost_price"))


def _stock_before_purchase(ledger, product_id: str, purchase_qty: int) -> int:
    """
    Lower-precision fallback: total stock now minus the just-added purchase.

    Racy if a sale lands between the stock write and this read; callers that can
    should pass the pre-update snapshot instead.
    """
    after = sum(ledger.get_inventory_quantities(product_id))
    return max(0, after - purchase_qty)


def _write_cost(ledger, product_id: str, cost: Decimal, now_iso: str) -> None:
    ledger.update_product(product_id, {"cost_price": cost, "updated_at": now_iso})
    local_store.update_cached_cost_price(product_id, cost)


def update_cost_after_purchase(
    product_id: str,
    purchase_quantity: int,
    purchase_unit_cost,
    pre_update_stock_quantity: int | None = None,
) -> dict:
    """
    Fold one purchase into the product's running average.

    Writes the cost-tracking record (cumulative quantity and cost, last purchase)
    and the product cost price on the ledger, then echoes the cost into the local
    product cache.

    Raises CostTrackingError if any read or write fails.
    """
    ledger = get_ledger()
    now_iso = local_store.business_now_iso()
    unit_cost = round_money(purchase_unit_cost)

    try:
        tracking, current_cost = _current_basis(ledger, product_id)
        if pre_update_stock_quantity is not None:
            stock_before = max(0, int(pre_update_stock_quantity))
        else:
            stock_before = _stock_before_purchase(ledger, product_id, purchase_quantity)

        result = calculate_weighted_average_cost(stock_before, current_cost, purchase_quantity, unit_cost)

        prior_qty = int((tracking or {}).get("total_quantity_purchased") or 0)
        prior_total = to_decimal((tracking or {}).get("total_cost"))
        record = {
            "product_id": product_id,
            "average_cost": result.updated_cost_per_unit,
            "total_quantity_purchased": prior_qty + int(purchase_quantity),
            "total_cost": round_money(prior_total + unit_cost * purchase_quantity),
            "last_purchase_price": unit_cost,
            "last_purchase_date": now_iso,
            "has_purchase_history": True,
            "updated_at": now_iso,
        }
        ledger.save_cost_tracking(record)
        _write_cost(ledger, product_id, result.updated_cost_per_unit, now_iso)
    except Exception as exc:
        raise CostTrackingError(f"Cost update failed for product {product_id}: {exc}", product_id=product_id) from exc

    current_app.logger.info(
        "Cost for %s: %s -> %s (stock before=%s, bought %s @ %s)",
        product_id, current_cost, result.updated_cost_per_unit, stock_before, purchase_quantity, unit_cost,
    )
    return {
        "product_id": product_id,
        "previous_cost": current_cost,
        "new_average_cost": result.updated_cost_per_unit,
        "total_quantity_purchased": record["total_quantity_purchased"],
        "total_cost_accumulated": record["total_cost"],
        "last_purchase_price": unit_cost,
        "last_purchase_date": now_iso,
    }


def _is_return_line(row: dict) -> bool:
    return row.get("invoice_type") == PURCHASE_RETURN_TYPE or (row.get("quantity") or 0) < 0


def recalculate_cost_from_history(product_id: str) -> dict:
    """
    Rebuild the cost-tracking record from every active purchase line.

    Used after a purchase invoice is deleted: a running average cannot "subtract"
    a past purchase, so the whole series is replayed. Returns reduce the final
    quantity but never enter the average.
    """
    ledger = get_ledger()
    now_iso = local_store.business_now_iso()

    try:
        history = ledger.get_purchase_history(product_id)

        if not history:
            ledger.update_product(product_id, {"cost_price": ZERO, "updated_at": now_iso})
            ledger.delete_cost_tracking(product_id)
            local_store.update_cached_cost_price(product_id, ZERO)
            current_app.logger.info("No purchase history for %s; cost reset to 0", product_id)
            return {
                "product_id": product_id,
                "average_cost": ZERO,
                "total_quantity_purchased": 0,
                "final_quantity": 0,
                "has_purchase_history": False,
            }

        avg = ZERO
        purchased = 0
        accumulated = ZERO
        returned = 0
        last_purchase = None
        for row in history:
            qty = abs(int(row.get("quantity") or 0))
            if _is_return_line(row):
                returned += qty
                continue
            avg = calculate_weighted_average_cost(purchased, avg, qty, row.get("unit_purchase_price")).updated_cost_per_unit
            purchased += qty
            accumulated = round_money(accumulated + round_money(row.get("unit_purchase_price")) * qty)
            last_purchase = row

        final_qty = max(0, purchased - returned)
        record = {
            "product_id": product_id,
            "average_cost": avg,
            "total_quantity_purchased": purchased,
            "total_cost": accumulated,
            "last_purchase_price": round_money((last_purchase or {}).get("unit_purchase_price")),
            "last_purchase_date": (last_purchase or {}).get("created_at"),
            "has_purchase_history": last_purchase is not None,
            "updated_at": now_iso,
        }
        ledger.save_cost_tracking(record)
        _write_cost(ledger, product_id, avg, now_iso)
    except Exception as exc:
        raise CostTrackingError(f"Cost recalculation failed for product {product_id}: {exc}", product_id=product_id) from exc

    current_app.logger.info("Cost for %s rebuilt from %s purchase lines: %s", product_id, len(history), avg)
    return {
        "product_id": product_id,
        "average_cost": avg,
        "total_quantity_purchased": purchased,
        "final_quantity": final_qty,
        "total_cost_accumulated": accumulated,
        "has_purchase_history": record["has_purchase_history"],
    }


# =============================================================================
# READ-ONLY HELPERS
# =============================================================================

def check_product_purchase_history(product_id: str) -> dict:
    """Manual cost edits are allowed only while a product has never been purchased."""
    history = get_ledger().get_purchase_history(product_id, newest_first=True)
    if not history:
        return {
            "has_purchase_history": False,
            "can_edit_cost": True,
            "last_purchase_date": None,
            "total_purchases": 0,
            "message": "Cost can be edited; no purchase invoices yet",
        }
    last = history[0]
    return {
        "has_purchase_history": True,
        "can_edit_cost": False,
        "last_purchase_date": last.get("invoice_date") or last.get("created_at"),
        "total_purchases": len(history),
        "message": f"Cost is computed from {len(history)} purchase line(s) and cannot be edited",
    }


def preview_cost_update(product_id: str, purchase_quantity: int, purchase_unit_cost) -> dict:
    ledger = get_ledger()
    tracking = ledger.get_cost_tracking(product_id)
    current_cost = to_decimal((tracking or {}).get("average_cost"))
    stock = sum(ledger.get_inventory_quantities(product_id))
    result = calculate_weighted_average_cost(stock, current_cost, purchase_quantity, purchase_unit_cost)
    return {
        "current_cost": round_money(current_cost),
        "new_cost": result.updated_cost_per_unit,
        "difference": round_money(result.updated_cost_per_unit - current_cost),
    }


def get_last_purchase_info(product_id: str) -> dict | None:
    history = get_ledger().get_purchase_history(product_id, newest_first=True)
    for row in history:
        if _is_return_line(row):
            continue
        return {
            "unit_price": round_money(row.get("unit_purchase_price")),
            "quantity": int(row.get("quantity") or 0),
            "supplier_id": row.get("supplier_id") or "",
            "invoice_date": row.get("invoice_date") or "",
            "invoice_number": row.get("invoice_number") or "",
        }
    return None
