from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

CENT = Decimal("0.01")
ZERO = Decimal("0")


def to_decimal(value) -> Decimal:
    """Coerce ints, floats, strings and Decimals to Decimal (None -> 0)."""
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError("boolean is not a monetary amount")
    try:
        # str() first so 0.1 stays 0.1 instead of its binary expansion
        return Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"invalid monetary amount: {value!r}")


def round_money(value) -> Decimal:
    """Round to currency precision (2 dp, half-up)."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def money_to_json(value):
    """JSON-safe representation for amounts sent over the wire."""
    if value is None:
        return None
    return float(round_money(value))


def json_ready(value):
    """Recursively replace Decimals with floats so payloads serialize as numbers."""
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, dict):
        return {k: json_ready(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [json_ready(v) for v in value]
    return value
