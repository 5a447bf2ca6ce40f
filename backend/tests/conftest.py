"""
Pytest fixtures for the possync backend tests.

Provides an in-memory local store, an in-memory ledger double with failure
injection, a switchable connectivity signal, and cart builders.
"""

import itertools
import threading
from decimal import Decimal

import pytest

from possync import create_app
from possync.extensions import db
from possync.models import CachedProduct, CachedInventory
from possync.services import local_store
from possync.services.ledger_client import LedgerError, LedgerUnavailableError
from possync.services.sale_inputs import SaleRequest


# =============================================================================
# LEDGER DOUBLE
# =============================================================================

class FakeLedger:
    """
    In-memory stand-in for the hosted ledger.

    Implements every contract the services call. Set `fail[method] = exc` to make
    that method raise (checked before any state change, so failures are atomic).
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._seq = itertools.count(1)
        self._purchase_seq = itertools.count(1)
        self._clock = itertools.count(1)
        self.fail = {}
        self.calls = []

        self.sales = []
        self.inventory = {}
        self.variant_definitions = {}
        self.variant_quantities = {}
        self.payment_methods = {}
        self.payments = []
        self.drawers = {}
        self.drawer_transactions = []
        self.products = {}
        self.cost_tracking = {}
        self.purchases = {}
        self.reference_tables = {}

    def _enter(self, name):
        self.calls.append(name)
        exc = self.fail.get(name)
        if exc is not None:
            raise exc

    def _new_id(self, prefix):
        return f"{prefix}-{next(self._ids)}"

    def _stamp(self):
        return f"2026-10-01T10:00:00.{next(self._clock):06d}+00:00"

    # --- connectivity ---
    def probe(self, timeout):
        return True

    # --- sales ---
    def next_sales_invoice_number(self):
        with self._lock:
            self._enter("next_sales_invoice_number")
            return f"INV-{next(self._seq):05d}"

    def create_sale_with_items(self, sale_data, items):
        with self._lock:
            self._enter("create_sale_with_items")
            sale = dict(sale_data, id=self._new_id("sale"), items=[dict(i) for i in items])
            self.sales.append(sale)
            return {"id": sale["id"], "invoice_number": sale["invoice_number"]}

    def adjust_inventory(self, product_id, branch_id, change, *, warehouse_id=None, allow_negative=True):
        with self._lock:
            self._enter("adjust_inventory")
            key = (product_id, branch_id or warehouse_id)
            new_qty = self.inventory.get(key, 0) + change
            if new_qty < 0 and not allow_negative:
                raise LedgerError("insufficient stock", status_code=400, code="P0001")
            self.inventory[key] = new_qty
            return {"new_quantity": new_qty, "went_negative": new_qty < 0}

    def find_variant_definition_id(self, product_id, name, variant_type):
        with self._lock:
            self._enter("find_variant_definition_id")
            return self.variant_definitions.get((product_id, name, variant_type))

    def adjust_variant_quantity(self, variant_definition_id, branch_id, change, *, allow_negative=True):
        with self._lock:
            self._enter("adjust_variant_quantity")
            key = (variant_definition_id, branch_id)
            new_qty = self.variant_quantities.get(key, 0) + change
            self.variant_quantities[key] = new_qty
            return {"new_quantity": new_qty, "went_negative": new_qty < 0}

    def payment_method_names(self, method_ids):
        with self._lock:
            self._enter("payment_method_names")
            return {m: self.payment_methods[m] for m in method_ids if m in self.payment_methods}

    def insert_customer_payments(self, rows):
        with self._lock:
            self._enter("insert_customer_payments")
            self.payments.extend(dict(r) for r in rows)
            return []

    def get_or_create_drawer(self, record_id):
        with self._lock:
            self._enter("get_or_create_drawer")
            if record_id not in self.drawers:
                self.drawers[record_id] = {
                    "id": self._new_id("drawer"), "record_id": record_id, "current_balance": Decimal("0"),
                }
            return dict(self.drawers[record_id])

    def adjust_drawer_balance(self, drawer_id, delta):
        with self._lock:
            self._enter("adjust_drawer_balance")
            for drawer in self.drawers.values():
                if drawer["id"] == drawer_id:
                    drawer["current_balance"] = drawer["current_balance"] + Decimal(str(delta))
                    return drawer["current_balance"]
            raise LedgerError("drawer not found", status_code=404, code="PGRST116")

    def insert_drawer_transactions(self, rows):
        with self._lock:
            self._enter("insert_drawer_transactions")
            self.drawer_transactions.extend(dict(r) for r in rows)
            return []

    # --- products / cost ---
    def get_product(self, product_id):
        self._enter("get_product")
        product = self.products.get(product_id)
        return dict(product) if product else None

    def update_product(self, product_id, values):
        self._enter("update_product")
        self.products.setdefault(product_id, {"id": product_id}).update(values)

    def get_inventory_quantities(self, product_id):
        self._enter("get_inventory_quantities")
        return [qty for (pid, _), qty in self.inventory.items() if pid == product_id]

    def get_cost_tracking(self, product_id):
        self._enter("get_cost_tracking")
        record = self.cost_tracking.get(product_id)
        return dict(record) if record else None

    def save_cost_tracking(self, record):
        self._enter("save_cost_tracking")
        self.cost_tracking[record["product_id"]] = dict(record)

    def delete_cost_tracking(self, product_id):
        self._enter("delete_cost_tracking")
        self.cost_tracking.pop(product_id, None)

    # --- purchases ---
    def next_purchase_invoice_number(self):
        self._enter("next_purchase_invoice_number")
        return f"PINV-{next(self._purchase_seq):05d}"

    def create_purchase_with_items(self, invoice_data, items):
        self._enter("create_purchase_with_items")
        invoice_id = self._new_id("purchase")
        invoice = dict(invoice_data, id=invoice_id)
        invoice["items"] = [
            dict(item, id=self._new_id("pitem"), purchase_invoice_id=invoice_id, created_at=self._stamp())
            for item in items
        ]
        self.purchases[invoice_id] = invoice
        return {"id": invoice_id, "invoice_number": invoice["invoice_number"]}

    def get_purchase_invoice(self, invoice_id):
        self._enter("get_purchase_invoice")
        invoice = self.purchases.get(invoice_id)
        return dict(invoice) if invoice else None

    def deactivate_purchase_invoice(self, invoice_id):
        self._enter("deactivate_purchase_invoice")
        self.purchases[invoice_id]["is_active"] = False

    def get_purchase_history(self, product_id, *, newest_first=False):
        self._enter("get_purchase_history")
        rows = []
        for invoice in self.purchases.values():
            if not invoice.get("is_active", True):
                continue
            for item in invoice["items"]:
                if item["product_id"] != product_id:
                    continue
                rows.append({
                    "id": item["id"],
                    "quantity": item["quantity"],
                    "unit_purchase_price": item["unit_purchase_price"],
                    "created_at": item["created_at"],
                    "invoice_number": invoice["invoice_number"],
                    "invoice_date": invoice.get("invoice_date"),
                    "invoice_type": invoice.get("invoice_type"),
                    "supplier_id": invoice.get("supplier_id"),
                })
        rows.sort(key=lambda r: r["created_at"], reverse=newest_first)
        return rows

    # --- reference data ---
    def fetch_reference_table(self, table, filters=None):
        self._enter("fetch_reference_table")
        if table == "inventory" and table not in self.reference_tables:
            return [
                {"product_id": pid, "branch_id": bid, "quantity": qty}
                for (pid, bid), qty in self.inventory.items()
            ]
        return [dict(r) for r in self.reference_tables.get(table, [])]


class StubConnectivity:
    """Connectivity signal the test flips by hand."""

    def __init__(self, online=True):
        self.online = online

    def is_online(self):
        return self.online


# =============================================================================
# APP / STORE
# =============================================================================

@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SYNC_MAX_RETRIES': 3,
            'SIDE_EFFECT_WORKERS': 4,
        },
        ledger=FakeLedger(),
        connectivity=StubConnectivity(),
    )

    with app.app_context():
        local_store.init_local_store()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh local store for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        local_store.set_meta(local_store.META_DB_VERSION, local_store.SCHEMA_VERSION)

        yield db.session

        db.session.rollback()


@pytest.fixture(scope='function')
def ledger(app):
    """Fresh ledger double bound to the app."""
    fake = FakeLedger()
    fake.payment_methods = {"pm-cash": "cash", "pm-card": "card", "pm-wallet": "wallet"}
    app.extensions["ledger_client"] = fake
    return fake


@pytest.fixture(scope='function')
def connectivity(app):
    stub = StubConnectivity(online=True)
    app.extensions["connectivity"] = stub
    return stub


@pytest.fixture(scope='function')
def offline(connectivity):
    connectivity.online = False
    return connectivity


# =============================================================================
# CATALOG / CART BUILDERS
# =============================================================================

@pytest.fixture(scope='function')
def catalog(db_session):
    """Two cached products stocked in branch b1 (10 and 5 units)."""
    db_session.add_all([
        CachedProduct(id="p1", name="Mug", barcode="111", cost_price=Decimal("4.00"), price=Decimal("10.00")),
        CachedProduct(id="p2", name="Plate", barcode="222", cost_price=Decimal("6.00"), price=Decimal("15.00")),
        CachedInventory(product_id="p1", branch_id="b1", quantity=10),
        CachedInventory(product_id="p2", branch_id="b1", quantity=5),
    ])
    db_session.commit()
    return {"p1": "Mug", "p2": "Plate"}


def build_sale(items=None, *, branch="b1", record=None, customer=None, is_return=False,
              payment_split=None, payment_method="cash", notes=None, credit_amount=0):
    """SaleRequest from plain dicts, shaped like the UI payload."""
    if items is None:
        items = [{"product": {"id": "p1", "name": "Mug", "cost_price": 4}, "quantity": 2, "price": 10}]
    return SaleRequest.from_dict({
        "cart_items": items,
        "selections": {
            "branch": {"id": branch, "name": "Main"} if branch else None,
            "record": record,
            "customer": customer,
        },
        "payment_method": payment_method,
        "notes": notes,
        "is_return": is_return,
        "payment_split": payment_split or [],
        "credit_amount": credit_amount,
        "user_id": "u1",
        "user_name": "Cashier One",
    })


@pytest.fixture
def make_sale():
    """Builder for SaleRequests; see build_sale."""
    return build_sale


@pytest.fixture
def network_down():
    """Exception a dead network produces at the client boundary."""
    return LedgerUnavailableError("Ledger unreachable: [Errno 111] Connection refused")
