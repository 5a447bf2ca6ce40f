# Overview: Tests for the reference-data refresh and its reconciliation with queued sales.

"""
Reference Data Refresh Tests

Cached stock after a refresh must equal ledger stock plus the effect of every
queued sale the ledger has not seen yet.
"""

import pytest

from possync.models.pending import SYNC_SYNCED
from possync.services import local_store
from possync.services.ledger_client import LedgerError
from possync.services.offline_sales_service import create_offline_sale
from possync.services.reference_data_service import refresh_reference_data, unsynced_inventory_deltas
from possync.services.sync_service import SyncManager


@pytest.fixture
def ledger_catalog(ledger):
    ledger.reference_tables = {
        "products": [
            {"id": "p1", "name": "Mug", "barcode": "111", "price": 10, "cost_price": 4, "supplier_note": "x"},
            {"id": "p3", "name": "Bowl", "barcode": "333", "price": 12, "cost_price": 5},
        ],
        "branches": [{"id": "b1", "name": "Main"}],
        "categories": [],
        "customers": [{"id": "c1", "name": "Ana"}],
        "records": [{"id": "r1", "name": "Front safe", "branch_id": "b1"}],
        "payment_methods": [{"id": "pm-cash", "name": "cash"}],
    }
    ledger.inventory[("p1", "b1")] = 10
    ledger.inventory[("p3", "b1")] = 4
    return ledger


def _cached_qty(product_id, branch_id):
    row = local_store.get_inventory_for(product_id, branch_id)
    return row.quantity if row is not None else None


class TestRefresh:

    def test_catalog_replaced(self, db_session, connectivity, catalog, ledger_catalog):
        """p2 exists only locally and disappears; p3 arrives."""
        result = refresh_reference_data()

        assert result["success"] is True
        assert result["counts"][local_store.STORE_PRODUCTS] == 2
        assert local_store.get_by_key(local_store.STORE_PRODUCTS, "p2") is None
        assert local_store.get_product_by_barcode("333").name == "Bowl"
        assert local_store.get_by_key(local_store.STORE_RECORDS, "r1").branch_id == "b1"
        assert local_store.get_last_sync_time() == result["last_sync"]

    def test_inventory_mirrors_ledger_without_queue(self, db_session, connectivity, ledger_catalog):
        refresh_reference_data()

        assert _cached_qty("p1", "b1") == 10
        assert _cached_qty("p3", "b1") == 4

    def test_unsynced_sales_stay_applied(self, db_session, connectivity, catalog, ledger_catalog, make_sale):
        create_offline_sale(make_sale())
        create_offline_sale(make_sale(is_return=True, items=[{"product": {"id": "p3"}, "quantity": 1, "price": 12}]))

        refresh_reference_data()

        assert _cached_qty("p1", "b1") == 8
        assert _cached_qty("p3", "b1") == 5

    def test_synced_sales_not_counted_twice(self, db_session, connectivity, catalog, ledger_catalog, make_sale):
        create_offline_sale(make_sale())
        SyncManager().sync_pending_sales()
        assert local_store.get_all_pending_sales()[0].sync_status == SYNC_SYNCED

        refresh_reference_data()

        # ledger already holds the sale
        assert _cached_qty("p1", "b1") == 8

    def test_queued_sale_for_unknown_stock_row(self, db_session, connectivity, ledger_catalog, make_sale):
        create_offline_sale(make_sale([{"product": {"id": "p1"}, "quantity": 1, "price": 10, "branch_id": "b5"}]))

        refresh_reference_data()

        assert _cached_qty("p1", "b5") == -1

    def test_ledger_error_leaves_cache_untouched(self, db_session, connectivity, catalog, ledger_catalog):
        ledger_catalog.fail["fetch_reference_table"] = LedgerError("service unavailable", status_code=503)

        with pytest.raises(LedgerError):
            refresh_reference_data()

        assert local_store.get_by_key(local_store.STORE_PRODUCTS, "p2") is not None
        assert _cached_qty("p1", "b1") == 10


class TestUnsyncedDeltas:

    def test_deltas_net_per_product_and_branch(self, db_session, catalog, make_sale):
        create_offline_sale(make_sale())
        create_offline_sale(make_sale([{"product": {"id": "p1"}, "quantity": 3, "price": 10}]))
        create_offline_sale(make_sale(is_return=True))

        assert unsynced_inventory_deltas() == {("p1", "b1"): -3}
