# Overview: Purchase invoices; the callers of cost reconciliation.

from __future__ import annotations

from flask import current_app

from ..extensions import get_ledger
from ..money import to_decimal, round_money, ZERO
from .cost_service import (
    CostTrackingError,
    PURCHASE_RETURN_TYPE,
    update_cost_after_purchase,
    recalculate_cost_from_history,
)
from . import local_store

PURCHASE_INVOICE_TYPE = "Purchase Invoice"


class PurchaseError(Exception):
    """Purchase invoice validation or lookup failure."""

    def __init__(self, message: str, *, details=None):
        super().__init__(message)
        self.details = details or {}


def _validate_lines(lines) -> list[dict]:
    if not lines:
        raise PurchaseError("Cannot create a purchase invoice without products")
    cleaned = []
    for raw in lines:
        product = raw.get("product") or {}
        product_id = raw.get("product_id") or product.get("id")
        quantity = raw.get("quantity")
        price = raw.get("price", raw.get("unit_purchase_price"))
        if not product_id:
            raise PurchaseError("Invalid product in purchase", details={"line": raw})
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            raise PurchaseError(f"Invalid quantity for product {product_id}: {quantity}")
        try:
            price = to_decimal(price)
        except ValueError:
            raise PurchaseError(f"Invalid price for product {product_id}: {price}")
        if price < 0:
            raise PurchaseError(f"Invalid price for product {product_id}: {price}")
        total = raw.get("total")
        cleaned.append({
            "product_id": product_id,
            "quantity": quantity,
            "price": round_money(price),
            "total": round_money(total if total is not None else price * quantity),
            "notes": raw.get("notes"),
        })
    return cleaned


def create_purchase_invoice(
    lines,
    *,
    supplier_id: str,
    branch_id: str | None = None,
    warehouse_id: str | None = None,
    record_id: str | None = None,
    notes: str | None = None,
    is_return: bool = False,
    payment_method: str = "cash",
) -> dict:
    """
    Record a purchase (or purchase return) on the ledger.

    Per line: snapshot total stock, atomic stock delta, then the weighted-average
    update with that snapshot. Returns move quantity only; the average is left
    alone. Cost failures come back as warnings, never as errors.
    """
    if not supplier_id:
        raise PurchaseError("A supplier must be selected")
    if not branch_id and not warehouse_id:
        raise PurchaseError("A branch or warehouse must be selected")
    cleaned = _validate_lines(lines)

    ledger = get_ledger()
    sign = -1 if is_return else 1
    total = round_money(sum((line["total"] for line in cleaned), ZERO) * sign)
    now_iso = local_store.business_now_iso()

    invoice_number = ledger.next_purchase_invoice_number()
    header = {
        "invoice_number": invoice_number,
        "supplier_id": supplier_id,
        "invoice_date": now_iso[:10],
        "time": now_iso[11:19],
        "total_amount": total,
        "tax_amount": ZERO,
        "discount_amount": ZERO,
        "net_amount": total,
        "payment_status": "pending",
        "payment_method": payment_method,
        "notes": notes,
        "branch_id": branch_id,
        "warehouse_id": warehouse_id,
        "record_id": record_id,
        "invoice_type": PURCHASE_RETURN_TYPE if is_return else PURCHASE_INVOICE_TYPE,
        "is_active": True,
    }
    items = [
        {
            "product_id": line["product_id"],
            "quantity": line["quantity"],
            "unit_purchase_price": line["price"],
            "total_price": line["total"],
            "discount_amount": ZERO,
            "tax_amount": ZERO,
            "notes": line["notes"],
        }
        for line in cleaned
    ]
    committed = ledger.create_purchase_with_items(header, items)

    warnings = []
    for line in cleaned:
        product_id = line["product_id"]
        stock_before = sum(ledger.get_inventory_quantities(product_id))
        result = ledger.adjust_inventory(
            product_id,
            branch_id,
            line["quantity"] * sign,
            warehouse_id=warehouse_id,
        )
        if result.get("went_negative"):
            warnings.append(f"Stock for {product_id} is now negative ({result.get('new_quantity')})")

        if is_return:
            continue
        try:
            update_cost_after_purchase(
                product_id,
                line["quantity"],
                line["price"],
                pre_update_stock_quantity=stock_before,
            )
        except CostTrackingError as exc:
            current_app.logger.warning("Purchase %s: %s", invoice_number, exc)
            warnings.append(str(exc))

    current_app.logger.info("Purchase invoice %s created (%s lines)", committed["invoice_number"], len(cleaned))
    return {
        "success": True,
        "invoice_id": committed["id"],
        "invoice_number": committed["invoice_number"],
        "total_amount": total,
        "cost_warnings": warnings,
    }


def delete_purchase_invoice(invoice_id: str) -> dict:
    """
    Deactivate a purchase invoice, reverse its stock and rebuild the cost of
    every product it touched from the remaining history.
    """
    ledger = get_ledger()
    invoice = ledger.get_purchase_invoice(invoice_id)
    if invoice is None or not invoice.get("is_active", True):
        raise PurchaseError("Purchase invoice not found", details={"invoice_id": invoice_id})

    was_return = invoice.get("invoice_type") == PURCHASE_RETURN_TYPE
    ledger.deactivate_purchase_invoice(invoice_id)

    products = []
    for item in invoice.get("items") or []:
        qty = abs(int(item.get("quantity") or 0))
        ledger.adjust_inventory(
            item["product_id"],
            invoice.get("branch_id"),
            qty if was_return else -qty,
            warehouse_id=invoice.get("warehouse_id"),
        )
        if item["product_id"] not in products:
            products.append(item["product_id"])

    warnings = []
    recalculated = []
    for product_id in products:
        try:
            recalculated.append(recalculate_cost_from_history(product_id))
        except CostTrackingError as exc:
            current_app.logger.warning("Purchase %s delete: %s", invoice_id, exc)
            warnings.append(str(exc))

    return {
        "success": True,
        "invoice_id": invoice_id,
        "recalculated": recalculated,
        "cost_warnings": warnings,
    }
