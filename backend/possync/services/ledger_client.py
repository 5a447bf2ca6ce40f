# Overview: HTTP gateway to the hosted ledger database (PostgREST-style REST + RPC surface).

from __future__ import annotations

import json
import socket
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from .token_cache import TokenCache
"""
Ledger Client Contracts (authoritative)

Transport:
- RPCs:        POST /rest/v1/rpc/<function>   body = named arguments
- Tables:      GET/POST/PATCH/DELETE /rest/v1/<table>?<column>=<op>.<value>
- Every request sends `apikey` plus `Authorization: Bearer <token>`; the token
  comes from a TokenCache. A 401 invalidates the cache once and the request is
  replayed with a fresh token.

Errors:
- Transport failures (DNS, refused, reset, timeout) -> LedgerUnavailableError
- HTTP status >= 400 -> LedgerError (status_code, code, details from the body)
- is_transient_network_error() is the ONLY gate for offline fallback. It checks
  exception types, never message text.

Atomic primitives (all serialized server-side):
- get_next_sales_invoice_number / get_next_purchase_invoice_number
- create_sale_with_items / create_purchase_with_items (header + lines, all-or-nothing)
- atomic_adjust_inventory / atomic_adjust_variant_quantity (increment by delta)
- adjust_drawer_balance (increment by delta)
"""

REST_PREFIX = "/rest/v1"
AUTH_TOKEN_PATH = "/auth/v1/token"

# PostgREST "zero rows for .single()"
NOT_FOUND_CODE = "PGRST116"


class LedgerError(Exception):
    """The ledger answered and refused the request."""

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
        details: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code
        self.details = details


class LedgerUnavailableError(LedgerError):
    """The ledger could not be reached (the request may or may not have arrived)."""
    pass


NETWORK_ERROR_TYPES = (
    LedgerUnavailableError,
    httpx.TimeoutException,
    httpx.NetworkError,
    ConnectionRefusedError,
    ConnectionResetError,
    TimeoutError,
    socket.gaierror,
)


def is_transient_network_error(exc: BaseException | None) -> bool:
    """
    True when exc (or anything in its cause/context chain) is a network-class failure.

    Validation errors, constraint violations and other HTTP rejections are not.
    """
    seen = set()
    while exc is not None and id(exc) not in seen:
        seen.add(id(exc))
        if isinstance(exc, NETWORK_ERROR_TYPES):
            return True
        exc = exc.__cause__ or exc.__context__
    return False


def _json_default(value):
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _encode(payload) -> bytes:
    return json.dumps(payload, default=_json_default, ensure_ascii=False).encode("utf-8")


def _filter_value(value) -> str:
    """
    Translate a python filter into PostgREST operator syntax.

    - scalar        -> eq.<value>
    - True/False    -> is.true / is.false
    - None          -> is.null
    - ("op", value) -> <op>.<value>; lists become (a,b,c) for "in"
    """
    if isinstance(value, tuple):
        op, operand = value
        if isinstance(operand, (list, tuple, set)):
            operand = "(" + ",".join(str(v) for v in operand) + ")"
        return f"{op}.{operand}"
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return "is.true" if value else "is.false"
    return f"eq.{value}"


def static_token_fetcher(api_key: str):
    def _fetch() -> str:
        return api_key
    return _fetch


class LedgerClient:
    """
    Thin synchronous client for the ledger.

    One httpx.Client per process; safe to share across the side-effect worker
    threads (httpx.Client is thread-safe for concurrent requests).
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        schema: str = "public",
        timeout: float = 10.0,
        token_cache: Optional[TokenCache] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.schema = schema
        self.client = httpx.Client(base_url=self.base_url, timeout=timeout, transport=transport)
        self.token_cache = token_cache or TokenCache(static_token_fetcher(api_key), ttl_seconds=float("inf"))

    # =========================================================================
    # AUTH
    # =========================================================================

    def password_token_fetcher(self, email: str, password: str):
        """Fetcher for a user session token (password grant)."""
        def _fetch() -> str:
            try:
                resp = self.client.post(
                    AUTH_TOKEN_PATH,
                    params={"grant_type": "password"},
                    headers={"apikey": self.api_key, "Content-Type": "application/json"},
                    content=_encode({"email": email, "password": password}),
                )
            except httpx.TransportError as exc:
                raise LedgerUnavailableError(f"Ledger auth unreachable: {exc}") from exc
            if resp.status_code >= 400:
                raise self._error_from(resp)
            return resp.json()["access_token"]
        return _fetch

    # =========================================================================
    # TRANSPORT
    # =========================================================================

    def _headers(self, extra: Optional[Dict] = None) -> Dict:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.token_cache.get()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Accept-Profile": self.schema,
            "Content-Profile": self.schema,
        }
        if extra:
            headers.update(extra)
        return headers

    @staticmethod
    def _error_from(resp: httpx.Response) -> LedgerError:
        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        message = body.get("message") or body.get("error_description") or body.get("msg") or resp.text[:200]
        return LedgerError(
            message or f"Ledger returned HTTP {resp.status_code}",
            status_code=resp.status_code,
            code=body.get("code"),
            details=body.get("details") or body.get("hint"),
        )

    def _send(self, method: str, path: str, *, params=None, payload=None, headers=None) -> httpx.Response:
        try:
            return self.client.request(
                method,
                path,
                params=params,
                content=_encode(payload) if payload is not None else None,
                headers=self._headers(headers),
            )
        except httpx.TransportError as exc:
            raise LedgerUnavailableError(f"Ledger unreachable: {exc}") from exc

    def request(self, method: str, path: str, *, params=None, payload=None, headers=None):
        """Send one request; returns decoded JSON (None for empty bodies)."""
        resp = self._send(method, path, params=params, payload=payload, headers=headers)
        if resp.status_code == 401:
            # token expired server-side before our TTL; refresh once
            self.token_cache.invalidate()
            resp = self._send(method, path, params=params, payload=payload, headers=headers)
        if resp.status_code >= 400:
            raise self._error_from(resp)
        if not resp.content:
            return None
        return resp.json()

    def probe(self, timeout: float) -> bool:
        """True if the ledger host answered at all (any status code)."""
        try:
            self.client.head("/", timeout=timeout)
        except httpx.TransportError:
            return False
        return True

    def close(self) -> None:
        self.client.close()

    # =========================================================================
    # GENERIC REST
    # =========================================================================

    def rpc(self, function: str, args: Optional[Dict] = None):
        return self.request("POST", f"{REST_PREFIX}/rpc/{function}", payload=args or {})

    def select(
        self,
        table: str,
        filters: Optional[Dict] = None,
        *,
        columns: str = "*",
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list:
        params = {"select": columns}
        for column, value in (filters or {}).items():
            params[column] = _filter_value(value)
        if order:
            params["order"] = order
        if limit is not None:
            params["limit"] = str(limit)
        return self.request("GET", f"{REST_PREFIX}/{table}", params=params) or []

    def select_one(self, table: str, filters: Dict, *, columns: str = "*") -> Optional[dict]:
        rows = self.select(table, filters, columns=columns, limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, rows, *, returning: bool = True) -> list:
        prefer = "return=representation" if returning else "return=minimal"
        return self.request(
            "POST", f"{REST_PREFIX}/{table}", payload=rows, headers={"Prefer": prefer}
        ) or []

    def upsert(self, table: str, rows, *, on_conflict: str, ignore_duplicates: bool = False) -> list:
        resolution = "ignore-duplicates" if ignore_duplicates else "merge-duplicates"
        return self.request(
            "POST",
            f"{REST_PREFIX}/{table}",
            params={"on_conflict": on_conflict},
            payload=rows,
            headers={"Prefer": f"resolution={resolution},return=representation"},
        ) or []

    def update(self, table: str, filters: Dict, values: Dict) -> list:
        params = {column: _filter_value(value) for column, value in filters.items()}
        return self.request(
            "PATCH", f"{REST_PREFIX}/{table}", params=params, payload=values,
            headers={"Prefer": "return=representation"},
        ) or []

    def delete(self, table: str, filters: Dict) -> None:
        params = {column: _filter_value(value) for column, value in filters.items()}
        self.request("DELETE", f"{REST_PREFIX}/{table}", params=params)

    # =========================================================================
    # SALES CONTRACTS
    # =========================================================================

    def next_sales_invoice_number(self) -> str:
        return str(self.rpc("get_next_sales_invoice_number"))

    def create_sale_with_items(self, sale_data: Dict, items: list) -> Dict:
        """Header and lines in one transaction. Returns {"id", "invoice_number"}."""
        result = self.rpc("create_sale_with_items", {"p_sale_data": sale_data, "p_items": items})
        if isinstance(result, list):
            result = result[0] if result else None
        if not result or not result.get("id"):
            raise LedgerError("create_sale_with_items returned no invoice id")
        return {"id": result["id"], "invoice_number": result.get("invoice_number") or sale_data.get("invoice_number")}

    def adjust_inventory(
        self,
        product_id: str,
        branch_id: Optional[str],
        change: int,
        *,
        warehouse_id: Optional[str] = None,
        allow_negative: bool = True,
    ) -> Dict:
        """Returns {"new_quantity": int, "went_negative": bool}."""
        result = self.rpc("atomic_adjust_inventory", {
            "p_product_id": product_id,
            "p_branch_id": branch_id,
            "p_warehouse_id": warehouse_id,
            "p_change": change,
            "p_allow_negative": allow_negative,
        })
        row = (result[0] if result else {}) if isinstance(result, list) else (result or {})
        return {
            "new_quantity": row.get("new_quantity"),
            "went_negative": bool(row.get("went_negative")),
        }

    def find_variant_definition_id(self, product_id: str, name: str, variant_type: str) -> Optional[str]:
        row = self.select_one(
            "product_color_shape_definitions",
            {"product_id": product_id, "name": name, "variant_type": variant_type},
            columns="id",
        )
        return row["id"] if row else None

    def adjust_variant_quantity(
        self,
        variant_definition_id: str,
        branch_id: str,
        change: int,
        *,
        allow_negative: bool = True,
    ) -> Dict:
        result = self.rpc("atomic_adjust_variant_quantity", {
            "p_variant_definition_id": variant_definition_id,
            "p_branch_id": branch_id,
            "p_change": change,
            "p_allow_negative": allow_negative,
        })
        row = (result[0] if result else {}) if isinstance(result, list) else (result or {})
        return {
            "new_quantity": row.get("new_quantity"),
            "went_negative": bool(row.get("went_negative")),
        }

    def payment_method_names(self, method_ids) -> Dict[str, str]:
        ids = sorted({m for m in method_ids if m})
        if not ids:
            return {}
        rows = self.select("payment_methods", {"id": ("in", ids)}, columns="id,name")
        return {row["id"]: row["name"] for row in rows}

    def insert_customer_payments(self, rows: list) -> list:
        return self.insert("customer_payments", rows, returning=False)

    def get_or_create_drawer(self, record_id: str) -> Dict:
        drawer = self.select_one("cash_drawers", {"record_id": record_id})
        if drawer is not None:
            return drawer
        # concurrent terminals may race to create it; the unique record_id wins
        self.upsert(
            "cash_drawers",
            [{"record_id": record_id, "current_balance": 0}],
            on_conflict="record_id",
            ignore_duplicates=True,
        )
        drawer = self.select_one("cash_drawers", {"record_id": record_id})
        if drawer is None:
            raise LedgerError(f"Cash drawer for record {record_id} could not be created", code=NOT_FOUND_CODE)
        return drawer

    def adjust_drawer_balance(self, drawer_id: str, delta) -> Decimal:
        result = self.rpc("adjust_drawer_balance", {"p_drawer_id": drawer_id, "p_delta": delta})
        if isinstance(result, list):
            result = result[0] if result else None
        if isinstance(result, dict):
            result = result.get("new_balance")
        return Decimal(str(result if result is not None else 0))

    def insert_drawer_transactions(self, rows: list) -> list:
        return self.insert("cash_drawer_transactions", rows, returning=False)

    # =========================================================================
    # COST / PRODUCT CONTRACTS
    # =========================================================================

    def get_product(self, product_id: str) -> Optional[Dict]:
        return self.select_one("products", {"id": product_id})

    def update_product(self, product_id: str, values: Dict) -> None:
        self.update("products", {"id": product_id}, values)

    def get_inventory_quantities(self, product_id: str) -> list[int]:
        rows = self.select("inventory", {"product_id": product_id}, columns="quantity")
        return [int(row.get("quantity") or 0) for row in rows]

    def get_cost_tracking(self, product_id: str) -> Optional[Dict]:
        return self.select_one("product_cost_tracking", {"product_id": product_id})

    def save_cost_tracking(self, record: Dict) -> None:
        self.upsert("product_cost_tracking", [record], on_conflict="product_id")

    def delete_cost_tracking(self, product_id: str) -> None:
        self.delete("product_cost_tracking", {"product_id": product_id})

    # =========================================================================
    # PURCHASE CONTRACTS
    # =========================================================================

    def next_purchase_invoice_number(self) -> str:
        return str(self.rpc("get_next_purchase_invoice_number"))

    def create_purchase_with_items(self, invoice_data: Dict, items: list) -> Dict:
        result = self.rpc("create_purchase_with_items", {"p_invoice_data": invoice_data, "p_items": items})
        if isinstance(result, list):
            result = result[0] if result else None
        if not result or not result.get("id"):
            raise LedgerError("create_purchase_with_items returned no invoice id")
        return {"id": result["id"], "invoice_number": result.get("invoice_number") or invoice_data.get("invoice_number")}

    def get_purchase_invoice(self, invoice_id: str) -> Optional[Dict]:
        invoice = self.select_one("purchase_invoices", {"id": invoice_id})
        if invoice is None:
            return None
        invoice["items"] = self.select(
            "purchase_invoice_items", {"purchase_invoice_id": invoice_id}, order="created_at.asc"
        )
        return invoice

    def deactivate_purchase_invoice(self, invoice_id: str) -> None:
        self.update("purchase_invoices", {"id": invoice_id}, {"is_active": False})

    def get_purchase_history(self, product_id: str, *, newest_first: bool = False) -> list[Dict]:
        """
        Active purchase lines for a product, flattened with their invoice fields.

        Ordered by line creation time (oldest first unless newest_first).
        """
        rows = self.select(
            "purchase_invoice_items",
            {"product_id": product_id, "purchase_invoices.is_active": True},
            columns=(
                "id,quantity,unit_purchase_price,created_at,"
                "purchase_invoices!inner(invoice_number,invoice_date,invoice_type,supplier_id,is_active)"
            ),
            order="created_at.desc" if newest_first else "created_at.asc",
        )
        history = []
        for row in rows:
            invoice = row.get("purchase_invoices") or {}
            history.append({
                "id": row.get("id"),
                "quantity": row.get("quantity") or 0,
                "unit_purchase_price": row.get("unit_purchase_price") or 0,
                "created_at": row.get("created_at"),
                "invoice_number": invoice.get("invoice_number"),
                "invoice_date": invoice.get("invoice_date"),
                "invoice_type": invoice.get("invoice_type"),
                "supplier_id": invoice.get("supplier_id"),
            })
        return history

    # =========================================================================
    # REFERENCE DATA
    # =========================================================================

    def fetch_reference_table(self, table: str, filters: Optional[Dict] = None) -> list[Dict]:
        return self.select(table, filters)


def build_ledger_client(config, transport: Optional[httpx.BaseTransport] = None) -> LedgerClient:
    """Ledger client wired from a Flask config mapping."""
    client = LedgerClient(
        config["LEDGER_URL"],
        config["LEDGER_API_KEY"],
        schema=config.get("LEDGER_SCHEMA", "public"),
        timeout=config.get("LEDGER_TIMEOUT_SECONDS", 10),
        transport=transport,
    )
    email = config.get("LEDGER_AUTH_EMAIL")
    password = config.get("LEDGER_AUTH_PASSWORD")
    if email and password:
        client.token_cache = TokenCache(
            client.password_token_fetcher(email, password),
            ttl_seconds=config.get("LEDGER_TOKEN_TTL_SECONDS", 3300),
        )
    return client
