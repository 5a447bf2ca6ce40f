# Overview: Cart / selection inputs shared by the online and offline sale paths.

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from ..money import to_decimal, round_money, ZERO
from ..models.pending import INVOICE_TYPE_SALE, INVOICE_TYPE_RETURN

# Walk-in customer row seeded in the ledger
DEFAULT_CUSTOMER_ID = "00000000-0000-0000-0000-000000000001"


class SaleValidationError(ValueError):
    """Bad cart or selections. Raised before any state is touched."""
    pass


@dataclass
class PartyRef:
    """An id plus its display name (branch, customer, record)."""
    id: str | None
    name: str | None = None

    @classmethod
    def from_dict(cls, data) -> "PartyRef | None":
        if data is None:
            return None
        if isinstance(data, PartyRef):
            return data
        if isinstance(data, str):
            return cls(id=data)
        return cls(id=data.get("id"), name=data.get("name"))


@dataclass
class CartItem:
    product_id: str
    product_name: str | None
    quantity: int
    price: Decimal
    cost_price: Decimal = ZERO
    total: Decimal | None = None
    branch_id: str | None = None
    branch_name: str | None = None
    selected_colors: dict | None = None
    selected_shapes: dict | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "CartItem":
        """
        Accepts both the flat shape and the UI's nested {"product": {...}} shape.

        Raw values are kept as given (quantity is not coerced) so validation can
        reject them with a precise message.
        """
        product = data.get("product") or {}
        price = data.get("price")
        quantity = data.get("quantity")
        if isinstance(quantity, float) and quantity.is_integer():
            quantity = int(quantity)
        return cls(
            product_id=data.get("product_id") or product.get("id"),
            product_name=data.get("product_name") or product.get("name"),
            quantity=quantity,
            price=price,
            cost_price=data.get("cost_price", product.get("cost_price")) or ZERO,
            total=data.get("total"),
            branch_id=data.get("branch_id"),
            branch_name=data.get("branch_name"),
            selected_colors=data.get("selected_colors", data.get("selectedColors")),
            selected_shapes=data.get("selected_shapes", data.get("selectedShapes")),
        )

    @property
    def line_total(self) -> Decimal:
        """Line total after any cart-level discount; defaults to price * quantity."""
        if self.total is not None:
            return round_money(self.total)
        return round_money(to_decimal(self.price) * self.quantity)

    def line_profit(self) -> Decimal:
        return round_money(self.line_total - to_decimal(self.cost_price) * self.quantity)


@dataclass
class PaymentEntry:
    id: str
    amount: Decimal
    payment_method_id: str | None
    payment_method_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "PaymentEntry":
        return cls(
            id=str(data.get("id") or ""),
            amount=to_decimal(data.get("amount")),
            payment_method_id=data.get("payment_method_id") or data.get("paymentMethodId"),
            payment_method_name=data.get("payment_method_name") or data.get("paymentMethodName"),
        )

    @property
    def is_valid(self) -> bool:
        return self.amount > 0 and bool(self.payment_method_id)


@dataclass
class InvoiceSelections:
    branch: PartyRef | None
    customer: PartyRef | None = None
    record: PartyRef | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> "InvoiceSelections":
        data = data or {}
        return cls(
            branch=PartyRef.from_dict(data.get("branch")),
            customer=PartyRef.from_dict(data.get("customer")),
            record=PartyRef.from_dict(data.get("record")),
        )

    @property
    def customer_id(self) -> str:
        if self.customer is not None and self.customer.id:
            return self.customer.id
        return DEFAULT_CUSTOMER_ID

    @property
    def record_id(self) -> str | None:
        """None means "no safe selected"."""
        if self.record is not None and self.record.id:
            return self.record.id
        return None


@dataclass
class SaleRequest:
    """Everything needed to record one sale, online or offline."""
    cart_items: list[CartItem]
    selections: InvoiceSelections
    payment_method: str = "cash"
    notes: str | None = None
    is_return: bool = False
    payment_split: list[PaymentEntry] = field(default_factory=list)
    credit_amount: Decimal = ZERO
    user_id: str | None = None
    user_name: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> "SaleRequest":
        raw_items = data.get("cart_items") or data.get("cartItems") or []
        raw_split = data.get("payment_split") or data.get("paymentSplitData") or []
        if not isinstance(raw_items, list) or not isinstance(raw_split, list):
            raise SaleValidationError("cart_items and payment_split must be lists")
        return cls(
            cart_items=[CartItem.from_dict(i) for i in raw_items],
            selections=InvoiceSelections.from_dict(data.get("selections")),
            payment_method=data.get("payment_method") or "cash",
            notes=data.get("notes"),
            is_return=bool(data.get("is_return", False)),
            payment_split=[PaymentEntry.from_dict(p) for p in raw_split],
            credit_amount=to_decimal(data.get("credit_amount")),
            user_id=data.get("user_id"),
            user_name=data.get("user_name"),
        )

    @property
    def invoice_type(self) -> str:
        return INVOICE_TYPE_RETURN if self.is_return else INVOICE_TYPE_SALE

    def branch_for(self, item: CartItem) -> str:
        return item.branch_id or self.selections.branch.id

    @property
    def valid_payments(self) -> list[PaymentEntry]:
        return [p for p in self.payment_split if p.is_valid]


def _is_number(value) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _validate_variant_picks(label, variant_type: str, selected) -> None:
    if selected is None:
        return
    if not isinstance(selected, dict):
        raise SaleValidationError(f"Invalid {variant_type} selection for product {label}")
    for name, qty in selected.items():
        if isinstance(qty, float) and qty.is_integer():
            qty = int(qty)
        if not isinstance(qty, int) or isinstance(qty, bool) or qty < 0:
            raise SaleValidationError(f"Invalid {variant_type} quantity for product {label} ({name}): {qty!r}")


def validate_sale_request(req: SaleRequest) -> None:
    """
    Fail fast on anything that would produce a bad invoice.

    Raises SaleValidationError:
    - no branch selected
    - empty cart
    - item without a product id
    - quantity not a positive whole number
    - price missing or negative
    - colour/shape pick that is not a non-negative whole number
    """
    if req.selections.branch is None or not req.selections.branch.id:
        raise SaleValidationError("A branch must be selected before creating an invoice")

    if not req.cart_items:
        raise SaleValidationError("Cannot create an invoice without products")

    for item in req.cart_items:
        if not item.product_id:
            raise SaleValidationError("Invalid product in cart")
        label = item.product_name or item.product_id
        if not isinstance(item.quantity, int) or isinstance(item.quantity, bool) or item.quantity <= 0:
            raise SaleValidationError(f"Invalid quantity for product {label}: {item.quantity}")
        if not _is_number(item.price) or item.price < 0:
            raise SaleValidationError(f"Invalid price for product {label}: {item.price}")
        if item.total is not None and not _is_number(item.total):
            raise SaleValidationError(f"Invalid line total for product {label}: {item.total}")
        _validate_variant_picks(label, "color", item.selected_colors)
        _validate_variant_picks(label, "shape", item.selected_shapes)

    if req.credit_amount < 0:
        raise SaleValidationError("Credit amount cannot be negative")


def compute_totals(req: SaleRequest) -> dict:
    """
    Invoice totals, sign-flipped for returns.

    profit per line = line total - unit cost * quantity
    Tax and discount are not computed here (no tax engine on the terminal).
    """
    sign = -1 if req.is_return else 1
    total = sum((item.line_total for item in req.cart_items), ZERO)
    profit = sum((item.line_profit() for item in req.cart_items), ZERO)
    return {
        "total_amount": round_money(total * sign),
        "tax_amount": round_money(ZERO),
        "discount_amount": round_money(ZERO),
        "profit": round_money(profit * sign),
    }


def _variant_breakdown(selected: dict | None) -> str:
    if not selected:
        return ""
    return ", ".join(f"{name}: {qty}" for name, qty in selected.items() if qty and qty > 0)


def build_item_notes(item: CartItem) -> str:
    """e.g. 'Selected colors: red: 2, blue: 1 | Selected shapes: round: 3'"""
    parts = []
    colors = _variant_breakdown(item.selected_colors)
    if colors:
        parts.append(f"Selected colors: {colors}")
    shapes = _variant_breakdown(item.selected_shapes)
    if shapes:
        parts.append(f"Selected shapes: {shapes}")
    return " | ".join(parts)


def variant_selections(selected_colors: dict | None, selected_shapes: dict | None) -> list[tuple[str, str, int]]:
    """Flatten colour/shape picks into (variant_type, name, qty) for positive quantities."""
    out = []
    for variant_type, selected in (("color", selected_colors), ("shape", selected_shapes)):
        for name, qty in (selected or {}).items():
            if qty and qty > 0:
                out.append((variant_type, name, int(qty)))
    return out
