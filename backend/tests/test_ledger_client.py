# Overview: Tests for the ledger HTTP client, its error mapping and the token cache.

"""
Ledger Client Tests

Runs the real client against httpx.MockTransport; no network involved.

Covers:
1. Auth headers and token refresh on 401
2. PostgREST filter encoding and RPC payloads
3. Error mapping (HTTP rejections vs. transport failures)
4. Network-error classification through exception chains
5. TokenCache expiry
"""

import json
from decimal import Decimal

import httpx
import pytest

from possync.services.ledger_client import (
    LedgerClient,
    LedgerError,
    LedgerUnavailableError,
    build_ledger_client,
    is_transient_network_error,
)
from possync.services.token_cache import TokenCache


BASE_URL = "http://ledger.test"


def make_client(handler, **kwargs):
    return LedgerClient(BASE_URL, "anon-key", transport=httpx.MockTransport(handler), **kwargs)


class Recorder:
    """Captures requests and answers each with the next queued response."""

    def __init__(self, *responses):
        self.requests = []
        self.responses = list(responses)

    def __call__(self, request):
        self.requests.append(request)
        status, body = self.responses.pop(0) if self.responses else (200, [])
        return httpx.Response(status, json=body)


class TestHeadersAndAuth:

    def test_every_request_carries_key_and_token(self):
        recorder = Recorder((200, []))
        make_client(recorder).select("branches")

        headers = recorder.requests[0].headers
        assert headers["apikey"] == "anon-key"
        assert headers["Authorization"] == "Bearer anon-key"
        assert headers["Accept-Profile"] == "public"

    def test_401_refreshes_token_once(self):
        tokens = iter(["token-1", "token-2"])
        cache = TokenCache(lambda: next(tokens), ttl_seconds=3600)
        recorder = Recorder((401, {"message": "JWT expired"}), (200, [{"id": "b1"}]))

        rows = make_client(recorder, token_cache=cache).select("branches")

        assert rows == [{"id": "b1"}]
        assert [r.headers["Authorization"] for r in recorder.requests] == ["Bearer token-1", "Bearer token-2"]

    def test_second_401_raises(self):
        recorder = Recorder((401, {"message": "JWT expired"}), (401, {"message": "JWT expired"}))

        with pytest.raises(LedgerError) as exc_info:
            make_client(recorder).select("branches")

        assert exc_info.value.status_code == 401
        assert len(recorder.requests) == 2

    def test_password_grant_configured_from_settings(self):
        def handler(request):
            if request.url.path == "/auth/v1/token":
                assert request.url.params["grant_type"] == "password"
                assert json.loads(request.content) == {"email": "till@shop.test", "password": "pw"}
                return httpx.Response(200, json={"access_token": "user-token"})
            return httpx.Response(200, json=[])

        client = build_ledger_client(
            {
                "LEDGER_URL": BASE_URL,
                "LEDGER_API_KEY": "anon-key",
                "LEDGER_AUTH_EMAIL": "till@shop.test",
                "LEDGER_AUTH_PASSWORD": "pw",
            },
            transport=httpx.MockTransport(handler),
        )

        assert client.token_cache.get() == "user-token"


class TestEncoding:

    def test_filters_use_postgrest_operators(self):
        recorder = Recorder((200, []))
        make_client(recorder).select(
            "products",
            {"is_active": True, "category_id": None, "id": ("in", ["a", "b"]), "name": "Mug"},
            order="name.asc",
        )

        params = recorder.requests[0].url.params
        assert params["is_active"] == "is.true"
        assert params["category_id"] == "is.null"
        assert params["id"] == "in.(a,b)"
        assert params["name"] == "eq.Mug"
        assert params["order"] == "name.asc"

    def test_payment_method_lookup_dedupes_ids(self):
        recorder = Recorder((200, [{"id": "pm-1", "name": "cash"}]))

        names = make_client(recorder).payment_method_names(["pm-1", "pm-1", None])

        assert names == {"pm-1": "cash"}
        assert recorder.requests[0].url.params["id"] == "in.(pm-1)"

    def test_payment_method_lookup_skips_empty(self):
        recorder = Recorder()

        assert make_client(recorder).payment_method_names([]) == {}
        assert recorder.requests == []

    def test_inventory_rpc_payload(self):
        recorder = Recorder((200, [{"new_quantity": -1, "went_negative": True}]))

        result = make_client(recorder).adjust_inventory("p1", "b1", -3)

        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/rest/v1/rpc/atomic_adjust_inventory"
        assert json.loads(request.content) == {
            "p_product_id": "p1",
            "p_branch_id": "b1",
            "p_warehouse_id": None,
            "p_change": -3,
            "p_allow_negative": True,
        }
        assert result == {"new_quantity": -1, "went_negative": True}

    def test_decimals_sent_as_numbers(self):
        recorder = Recorder((200, {"id": "sale-1", "invoice_number": "INV-9"}))

        result = make_client(recorder).create_sale_with_items(
            {"invoice_number": "INV-9", "total_amount": Decimal("12.50")},
            [{"product_id": "p1", "unit_price": Decimal("12.50")}],
        )

        body = json.loads(recorder.requests[0].content)
        assert body["p_sale_data"]["total_amount"] == 12.5
        assert body["p_items"][0]["unit_price"] == 12.5
        assert result == {"id": "sale-1", "invoice_number": "INV-9"}

    def test_sale_rpc_without_id_is_an_error(self):
        recorder = Recorder((200, []))

        with pytest.raises(LedgerError):
            make_client(recorder).create_sale_with_items({"invoice_number": "INV-1"}, [])

    def test_drawer_balance_parsed(self):
        recorder = Recorder((200, {"new_balance": 42.5}))

        assert make_client(recorder).adjust_drawer_balance("d1", Decimal("2.50")) == Decimal("42.5")

    def test_purchase_history_flattened(self):
        recorder = Recorder((200, [{
            "id": "i1", "quantity": 3, "unit_purchase_price": 2.5, "created_at": "2026-10-01T10:00:00+00:00",
            "purchase_invoices": {
                "invoice_number": "PINV-1", "invoice_date": "2026-10-01",
                "invoice_type": "Purchase Invoice", "supplier_id": "s1", "is_active": True,
            },
        }]))

        history = make_client(recorder).get_purchase_history("p1", newest_first=True)

        params = recorder.requests[0].url.params
        assert params["purchase_invoices.is_active"] == "is.true"
        assert params["order"] == "created_at.desc"
        assert history == [{
            "id": "i1", "quantity": 3, "unit_purchase_price": 2.5,
            "created_at": "2026-10-01T10:00:00+00:00", "invoice_number": "PINV-1",
            "invoice_date": "2026-10-01", "invoice_type": "Purchase Invoice", "supplier_id": "s1",
        }]


class TestErrorMapping:

    def test_http_rejection_becomes_ledger_error(self):
        recorder = Recorder((409, {"message": "duplicate key value", "code": "23505", "details": "client_reference"}))

        with pytest.raises(LedgerError) as exc_info:
            make_client(recorder).rpc("create_sale_with_items", {})

        err = exc_info.value
        assert err.status_code == 409
        assert err.code == "23505"
        assert err.details == "client_reference"
        assert not is_transient_network_error(err)

    def test_transport_failure_becomes_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(LedgerUnavailableError) as exc_info:
            make_client(handler).rpc("get_next_sales_invoice_number")

        assert is_transient_network_error(exc_info.value)
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    def test_timeout_is_transient(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(LedgerUnavailableError):
            make_client(handler).select("branches")

    def test_probe_reports_reachability(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        assert make_client(refuse).probe(0.5) is False
        assert make_client(lambda request: httpx.Response(404)).probe(0.5) is True


class TestNetworkClassification:

    @pytest.mark.parametrize("exc", [
        ConnectionRefusedError(),
        ConnectionResetError(),
        TimeoutError(),
        LedgerUnavailableError("down"),
    ])
    def test_network_types(self, exc):
        assert is_transient_network_error(exc)

    @pytest.mark.parametrize("exc", [
        ValueError("network timeout in text only"),
        LedgerError("fetch failed", status_code=500),
        None,
    ])
    def test_non_network_types(self, exc):
        """Message text never decides; only types do."""
        assert not is_transient_network_error(exc)

    def test_wrapped_cause_is_found(self):
        try:
            try:
                raise ConnectionResetError("peer reset")
            except ConnectionResetError as inner:
                raise RuntimeError("commit failed") from inner
        except RuntimeError as outer:
            assert is_transient_network_error(outer)

    def test_implicit_context_is_found(self):
        try:
            try:
                raise TimeoutError()
            except TimeoutError:
                raise KeyError("while handling")
        except KeyError as outer:
            assert is_transient_network_error(outer)


class TestTokenCache:

    class Clock:
        def __init__(self):
            self.now = 0.0

        def __call__(self):
            return self.now

    def test_cached_until_ttl(self):
        clock = self.Clock()
        fetched = []
        cache = TokenCache(lambda: fetched.append(1) or f"t{len(fetched)}", ttl_seconds=10, clock=clock)

        assert cache.get() == "t1"
        clock.now = 9.9
        assert cache.get() == "t1"
        clock.now = 10.0
        assert cache.get() == "t2"
        assert cache.fetched_at == 10.0

    def test_invalidate_forces_refetch(self):
        fetched = []
        cache = TokenCache(lambda: fetched.append(1) or f"t{len(fetched)}", ttl_seconds=60, clock=self.Clock())

        cache.get()
        cache.invalidate()

        assert cache.fetched_at is None
        assert cache.get() == "t2"

    def test_fetch_failure_propagates_and_caches_nothing(self):
        def broken():
            raise LedgerError("auth down")

        cache = TokenCache(broken, ttl_seconds=60)

        with pytest.raises(LedgerError):
            cache.get()
        assert cache.fetched_at is None
