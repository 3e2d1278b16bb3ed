# storefront/services/discount_format.py
"""
Display and price helpers for coupon discounts.

Amounts stay at full Decimal precision; only ``to_display`` / ``format_money``
round to cents, so several discounts applied in a row never compound a
rounding error.
"""
from decimal import Decimal

from ..model.types import DiscountType
from ..utils.money import D, Money, round_money

HUNDRED = Decimal("100")


def _plain_number(value) -> str:
    v = D(value)
    if v == v.to_integral_value():
        return str(int(v))
    return f"{round_money(v):f}"


def format_label(discount_type, discount_value, symbol: str = "$") -> str:
    dtype = DiscountType.parse(discount_type)
    if dtype is DiscountType.PERCENTAGE:
        return f"{_plain_number(discount_value)}% OFF"
    if dtype is DiscountType.FIXED_AMOUNT:
        return f"{symbol}{_plain_number(discount_value)} OFF"
    if dtype is DiscountType.FREE_SHIPPING:
        return "FREE SHIPPING"
    raise ValueError(f"unsupported discount type: {dtype}")


def apply_discount(base_price, discount_type, discount_value) -> Money:
    """Price after discount, never below zero."""
    dtype = DiscountType.parse(discount_type)
    base = D(base_price)
    value = D(discount_value)
    if dtype is DiscountType.PERCENTAGE:
        return max(Decimal("0"), base * (Decimal("1") - value / HUNDRED))
    if dtype is DiscountType.FIXED_AMOUNT:
        return max(Decimal("0"), base - value)
    if dtype is DiscountType.FREE_SHIPPING:
        # shipping is zeroed by checkout, the goods price is unchanged
        return base
    raise ValueError(f"unsupported discount type: {dtype}")


def discount_for(base_price, discount_type, discount_value) -> Money:
    base = max(Decimal("0"), D(base_price))
    return base - apply_discount(base, discount_type, discount_value)


def to_display(amount) -> Money:
    return round_money(max(Decimal("0"), D(amount)))


def format_money(amount, symbol: str = "$") -> str:
    return f"{symbol}{to_display(amount):,.2f}"
