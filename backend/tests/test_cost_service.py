# Overview: Tests for weighted-average cost calculation and reconciliation.

"""
Cost Service Tests

Covers:
1. Weighted-average calculator (no prior basis, rounding, non-positive stock)
2. Folding a purchase into the running average (snapshot vs. fallback stock)
3. Rebuilding the average from history (returns excluded, empty history reset)
4. Read-only helpers (edit lock, preview, last purchase)
"""

from decimal import Decimal

import pytest

from possync.models import CachedProduct
from possync.services.cost_service import (
    CostTrackingError,
    PURCHASE_RETURN_TYPE,
    calculate_weighted_average_cost,
    update_cost_after_purchase,
    recalculate_cost_from_history,
    check_product_purchase_history,
    preview_cost_update,
    get_last_purchase_info,
)
from possync.services.ledger_client import LedgerError


def _record_purchase(ledger, product_id, quantity, unit_price, *, invoice_type="Purchase Invoice"):
    ledger.create_purchase_with_items(
        {
            "invoice_number": ledger.next_purchase_invoice_number(),
            "supplier_id": "s1",
            "invoice_date": "2026-10-01",
            "invoice_type": invoice_type,
            "is_active": True,
        },
        [{"product_id": product_id, "quantity": quantity, "unit_purchase_price": unit_price}],
    )


class TestCalculator:
    """((q0 * c0) + (q1 * c1)) / (q0 + q1), 2 dp half-up."""

    def test_blended_average(self):
        result = calculate_weighted_average_cost(10, 4, 10, 6)

        assert result.updated_cost_per_unit == Decimal("5.00")
        assert result.total_cost == Decimal("100.00")

    @pytest.mark.parametrize("q0, c0", [(0, 4), (10, 0), (-3, 4)])
    def test_no_prior_basis_uses_new_cost(self, q0, c0):
        result = calculate_weighted_average_cost(q0, c0, 5, "7.25")

        assert result.updated_cost_per_unit == Decimal("7.25")

    def test_non_positive_total_uses_new_cost(self):
        assert calculate_weighted_average_cost(2, 4, -5, 9).updated_cost_per_unit == Decimal("9.00")

    def test_rounds_half_up(self):
        """0.025 goes to 0.03, not the banker's 0.02."""
        assert calculate_weighted_average_cost(1, "0.02", 1, "0.03").updated_cost_per_unit == Decimal("0.03")

    def test_uneven_lots(self):
        assert calculate_weighted_average_cost(100, 10, 50, 16).updated_cost_per_unit == Decimal("12.00")

    def test_empty_shelf_takes_purchase_cost(self):
        assert calculate_weighted_average_cost(0, 10, 20, "7.50").updated_cost_per_unit == Decimal("7.50")

    def test_total_ignores_negative_stock(self):
        result = calculate_weighted_average_cost(-4, 5, 10, 3)

        assert result.updated_cost_per_unit == Decimal("3.00")
        assert result.total_cost == Decimal("30.00")


class TestUpdateAfterPurchase:

    def test_tracking_written_and_product_cost_updated(self, db_session, ledger, catalog):
        ledger.cost_tracking["p1"] = {
            "product_id": "p1", "average_cost": Decimal("4.00"),
            "total_quantity_purchased": 10, "total_cost": Decimal("40.00"),
        }

        result = update_cost_after_purchase("p1", 10, 6, pre_update_stock_quantity=10)

        assert result["previous_cost"] == Decimal("4.00")
        assert result["new_average_cost"] == Decimal("5.00")
        assert result["total_quantity_purchased"] == 20
        assert result["total_cost_accumulated"] == Decimal("100.00")
        tracking = ledger.cost_tracking["p1"]
        assert tracking["average_cost"] == Decimal("5.00")
        assert tracking["last_purchase_price"] == Decimal("6.00")
        assert tracking["has_purchase_history"] is True
        assert ledger.products["p1"]["cost_price"] == Decimal("5.00")

    def test_local_cached_cost_echoed(self, db_session, ledger, catalog):
        update_cost_after_purchase("p1", 5, 8, pre_update_stock_quantity=0)

        assert db_session.get(CachedProduct, "p1").cost_price == Decimal("8.00")

    def test_first_purchase_falls_back_to_product_cost(self, db_session, ledger):
        """No tracking row yet: the product's own cost is the prior basis."""
        ledger.products["p9"] = {"id": "p9", "cost_price": 8}

        result = update_cost_after_purchase("p9", 5, 10, pre_update_stock_quantity=5)

        assert result["new_average_cost"] == Decimal("9.00")

    def test_stock_fallback_subtracts_new_purchase(self, db_session, ledger):
        """Without a snapshot, stock before = stock now minus what was just added."""
        ledger.products["p9"] = {"id": "p9", "cost_price": 2}
        ledger.inventory[("p9", "b1")] = 15
        ledger.inventory[("p9", "b2")] = 5

        result = update_cost_after_purchase("p9", 10, 5)

        # before = 20 - 10 = 10 -> (10*2 + 10*5) / 20
        assert result["new_average_cost"] == Decimal("3.50")

    def test_ledger_failure_wrapped(self, db_session, ledger):
        ledger.fail["save_cost_tracking"] = LedgerError("permission denied", status_code=403)

        with pytest.raises(CostTrackingError) as exc_info:
            update_cost_after_purchase("p1", 1, 1, pre_update_stock_quantity=0)

        assert exc_info.value.product_id == "p1"
        assert isinstance(exc_info.value.__cause__, LedgerError)


class TestRecalculateFromHistory:

    def test_replays_purchases_cumulatively(self, db_session, ledger):
        _record_purchase(ledger, "p1", 10, 4)
        _record_purchase(ledger, "p1", 10, 6)

        result = recalculate_cost_from_history("p1")

        assert result["average_cost"] == Decimal("5.00")
        assert result["total_quantity_purchased"] == 20
        assert result["final_quantity"] == 20
        assert ledger.products["p1"]["cost_price"] == Decimal("5.00")

    def test_matches_sequential_updates(self, db_session, ledger):
        """Folding purchases one at a time and replaying them agree."""
        stock = 0
        for qty, price in [(100, 10), (50, 16), (30, 9)]:
            _record_purchase(ledger, "p7", qty, price)
            update_cost_after_purchase("p7", qty, price, pre_update_stock_quantity=stock)
            stock += qty
        running = ledger.cost_tracking["p7"]["average_cost"]

        result = recalculate_cost_from_history("p7")

        # (150 * 12 + 30 * 9) / 180
        assert running == Decimal("11.50")
        assert result["average_cost"] == running

    def test_total_cost_matches_sequential_updates(self, db_session, ledger):
        """Both paths store the gross cost bought, even when the average rounds."""
        stock = 0
        for qty, price in [(3, "10.00"), (3, "10.01")]:
            _record_purchase(ledger, "p8", qty, price)
            update_cost_after_purchase("p8", qty, price, pre_update_stock_quantity=stock)
            stock += qty
        running = dict(ledger.cost_tracking["p8"])

        result = recalculate_cost_from_history("p8")

        assert running["total_cost"] == Decimal("60.03")
        assert ledger.cost_tracking["p8"]["total_cost"] == running["total_cost"]
        assert result["total_cost_accumulated"] == running["total_cost"]
        assert ledger.cost_tracking["p8"]["total_quantity_purchased"] == running["total_quantity_purchased"]

    def test_update_after_rebuild_keeps_gross_totals(self, db_session, ledger):
        _record_purchase(ledger, "p8", 10, 4)
        _record_purchase(ledger, "p8", 4, 50, invoice_type=PURCHASE_RETURN_TYPE)
        recalculate_cost_from_history("p8")

        update_cost_after_purchase("p8", 5, 6, pre_update_stock_quantity=6)

        tracking = ledger.cost_tracking["p8"]
        assert tracking["total_quantity_purchased"] == 15
        assert tracking["total_cost"] == Decimal("70.00")

    def test_returns_reduce_quantity_not_average(self, db_session, ledger):
        _record_purchase(ledger, "p1", 10, 4)
        _record_purchase(ledger, "p1", 10, 6)
        _record_purchase(ledger, "p1", 5, 100, invoice_type=PURCHASE_RETURN_TYPE)

        result = recalculate_cost_from_history("p1")

        assert result["average_cost"] == Decimal("5.00")
        assert result["final_quantity"] == 15
        # gross purchase cost; the return only lowers the final quantity
        assert ledger.cost_tracking["p1"]["total_cost"] == Decimal("100.00")
        assert ledger.cost_tracking["p1"]["last_purchase_price"] == Decimal("6.00")

    def test_negative_quantity_line_treated_as_return(self, db_session, ledger):
        _record_purchase(ledger, "p1", 10, 4)
        _record_purchase(ledger, "p1", -4, 50)

        result = recalculate_cost_from_history("p1")

        assert result["average_cost"] == Decimal("4.00")
        assert result["final_quantity"] == 6

    def test_empty_history_resets_cost(self, db_session, ledger, catalog):
        ledger.cost_tracking["p1"] = {"product_id": "p1", "average_cost": Decimal("4.00")}

        result = recalculate_cost_from_history("p1")

        assert result["average_cost"] == Decimal("0")
        assert result["has_purchase_history"] is False
        assert "p1" not in ledger.cost_tracking
        assert ledger.products["p1"]["cost_price"] == Decimal("0")
        assert db_session.get(CachedProduct, "p1").cost_price == Decimal("0")


class TestReadOnlyHelpers:

    def test_cost_editable_without_history(self, db_session, ledger):
        status = check_product_purchase_history("p1")

        assert status["has_purchase_history"] is False
        assert status["can_edit_cost"] is True
        assert status["total_purchases"] == 0

    def test_cost_locked_once_purchased(self, db_session, ledger):
        _record_purchase(ledger, "p1", 3, 2)

        status = check_product_purchase_history("p1")

        assert status["can_edit_cost"] is False
        assert status["total_purchases"] == 1
        assert status["last_purchase_date"] == "2026-10-01"

    def test_preview_does_not_write(self, db_session, ledger):
        ledger.cost_tracking["p1"] = {"product_id": "p1", "average_cost": Decimal("4.00")}
        ledger.inventory[("p1", "b1")] = 10

        preview = preview_cost_update("p1", 10, 6)

        assert preview == {
            "current_cost": Decimal("4.00"),
            "new_cost": Decimal("5.00"),
            "difference": Decimal("1.00"),
        }
        assert "save_cost_tracking" not in ledger.calls

    def test_last_purchase_skips_returns(self, db_session, ledger):
        _record_purchase(ledger, "p1", 10, 4)
        _record_purchase(ledger, "p1", 2, 4, invoice_type=PURCHASE_RETURN_TYPE)

        info = get_last_purchase_info("p1")

        assert info["unit_price"] == Decimal("4.00")
        assert info["quantity"] == 10
        assert info["invoice_number"] == "PINV-00001"

    def test_last_purchase_none_without_history(self, db_session, ledger):
        assert get_last_purchase_info("p1") is None
