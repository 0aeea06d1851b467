"""
Decimal helpers for monetary values.

Supabase returns numeric columns either as JSON numbers or as strings; both go
through to_decimal so no value is ever summed as a binary float. Rounding to
cents happens only in to_cents, at serialization.
"""
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

ZERO = Decimal("0")
CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    """Convert a stored or submitted amount to Decimal.

    Accepts Decimal, int, float (via its repr, not its binary value), plain
    decimal strings ('1234.56') and Brazilian-formatted strings ('1.234,56').
    Strings mixing both separators in US order are rejected.
    None and blank strings are zero. Anything else raises ValueError.
    """
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    raw = str(value).strip()
    if not raw:
        return ZERO
    if "," in raw:
        # Brazilian order only: dots group thousands before a single decimal comma.
        # '1,234.56' or '1,234,567' would otherwise shift the scale.
        if raw.count(",") > 1 or raw.rfind(".") > raw.find(","):
            raise ValueError(f"Ambiguous monetary amount: {value!r}")
        raw = raw.replace(".", "").replace(",", ".")
    try:
        result = Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"Not a monetary amount: {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"Not a monetary amount: {value!r}")
    return result


def to_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_display(value: Decimal) -> float:
    """Round to 2 places and hand back a float for JSON responses."""
    return float(to_cents(value))


def sum_field(rows: list[dict], field: str) -> Decimal:
    return sum((to_decimal(r.get(field)) for r in rows), ZERO)
