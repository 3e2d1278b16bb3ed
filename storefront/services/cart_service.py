# storefront/services/cart_service.py
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..utils.money import D, Money, parse_money

MAX_LINES = 200
MAX_QTY = 10_000


@dataclass(frozen=True)
class CartLine:
    product_id: int
    unit_price: Money
    quantity: int

    @property
    def subtotal(self) -> Money:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartSnapshot:
    """
    Immutable view of the lines being priced.

    ``order_total`` is derived from the frozen lines, so the amount checked
    during validation is the amount used when the order is written.
    """
    lines: tuple[CartLine, ...]

    @property
    def order_total(self) -> Money:
        return sum((line.subtotal for line in self.lines), Decimal("0"))

    @property
    def product_ids(self) -> list[int]:
        return [line.product_id for line in self.lines]

    def subtotal_for(self, product_ids) -> Money:
        wanted = set(product_ids)
        return sum((line.subtotal for line in self.lines if line.product_id in wanted), Decimal("0"))

    def is_empty(self) -> bool:
        return not self.lines


def _parse_product_id(v) -> int:
    if isinstance(v, bool):
        raise ValueError("product_id must be an integer")
    try:
        pid = int(v)
    except (TypeError, ValueError):
        raise ValueError("product_id must be an integer")
    if pid < 1:
        raise ValueError("product_id must be an integer")
    return pid


def parse_quantity(v) -> int:
    if isinstance(v, bool):
        raise ValueError("quantity must be an integer >= 1")
    try:
        qty = int(v)
    except (TypeError, ValueError):
        raise ValueError("quantity must be an integer >= 1")
    if qty < 1 or qty > MAX_QTY:
        raise ValueError(f"quantity must be between 1 and {MAX_QTY}")
    return qty


def _merge(pairs) -> list[tuple[int, int]]:
    # repeated product ids collapse into one line, first occurrence keeps its slot
    merged: dict[int, int] = {}
    for pid, qty in pairs:
        merged[pid] = merged.get(pid, 0) + qty
    return list(merged.items())


def parse_cart_items(items) -> list[tuple[int, int]]:
    """
    Body: [{ "product_id": int, "quantity" | "qty": int }, ...]
    Returns merged (product_id, quantity) pairs.
    """
    if not isinstance(items, list) or not items:
        raise ValueError("items must be a non-empty list")
    if len(items) > MAX_LINES:
        raise ValueError(f"a cart can hold at most {MAX_LINES} lines")
    pairs = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValueError("each item must be an object")
        pid = _parse_product_id(raw.get("product_id"))
        qty = parse_quantity(raw.get("quantity", raw.get("qty", 1)))
        pairs.append((pid, qty))
    return _merge(pairs)


def build_snapshot(items) -> CartSnapshot:
    """
    Snapshot from client-supplied lines (quote only; checkout reprices).
    Body: [{ "product_id": int, "unit_price": number, "quantity": int }, ...]
    """
    if not isinstance(items, list) or not items:
        raise ValueError("items must be a non-empty list")
    if len(items) > MAX_LINES:
        raise ValueError(f"a cart can hold at most {MAX_LINES} lines")
    prices: dict[int, Money] = {}
    pairs = []
    for raw in items:
        if not isinstance(raw, dict):
            raise ValueError("each item must be an object")
        pid = _parse_product_id(raw.get("product_id"))
        price = parse_money(raw.get("unit_price", raw.get("price")), "unit_price")
        if pid in prices and prices[pid] != price:
            raise ValueError(f"conflicting unit_price for product {pid}")
        prices[pid] = price
        pairs.append((pid, parse_quantity(raw.get("quantity", raw.get("qty", 1)))))
    return CartSnapshot(tuple(CartLine(pid, prices[pid], qty) for pid, qty in _merge(pairs)))


def snapshot_from_products(pairs, products) -> CartSnapshot:
    """Price (product_id, quantity) pairs from catalogue rows keyed by id."""
    return CartSnapshot(tuple(
        CartLine(pid, D(products[pid].price), qty) for pid, qty in pairs
    ))
