# storefront/utils/money.py

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

Money = Decimal
CENT = Decimal("0.01")


def D(x) -> Money:
    return x if isinstance(x, Decimal) else Decimal(str(x or "0"))


def round_money(x: Money) -> Money:
    return D(x).quantize(CENT, rounding=ROUND_HALF_UP)


def parse_money(value, field: str, *, allow_none=False) -> Money | None:
    """Parse a non-negative amount from a JSON payload, raising ValueError."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if allow_none:
            return None
        raise ValueError(f"{field} is required")
    if isinstance(value, bool):
        raise ValueError(f"{field} must be numeric")
    try:
        amount = D(value)
    except (InvalidOperation, ValueError):
        raise ValueError(f"{field} must be numeric")
    if not amount.is_finite():
        raise ValueError(f"{field} must be numeric")
    if amount < 0:
        raise ValueError(f"{field} must be >= 0")
    return amount
