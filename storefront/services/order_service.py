# storefront/services/order_service.py
from __future__ import annotations

import logging
import secrets
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..errors import ApiError, Conflict, NotFound
from ..extensions import db
from ..model import Order, OrderItem, OrderStatus, Product
from ..utils.dates import utcnow
from ..utils.money import D, round_money
from .cart_service import parse_cart_items, snapshot_from_products
from .coupon_service import check_email, validate_coupon
from .ledger import mark_first_purchase, redeem, reopen_first_purchase

logger = logging.getLogger(__name__)

COUPON_GONE_MESSAGE = "This coupon is no longer available"
STORE_DOWN_MESSAGE = "The store is temporarily unavailable, please try again"


def _gen_order_code():
    # time-ordered with a random tail so two orders in the same instant differ
    return "ORD-" + utcnow().strftime("%Y%m%d-%H%M%S") + "-" + secrets.token_hex(3).upper()


def _shipping_rate() -> Decimal:
    return D(current_app.config.get("SHIPPING_FLAT_RATE", "0"))


def _parse_customer(payload):
    customer = payload.get("customer") or {}
    if not isinstance(customer, dict):
        raise ValueError("customer must be an object")
    name = (customer.get("name") or "").strip() if isinstance(customer.get("name"), str) else ""
    if not name:
        raise ValueError("customer name is required")
    email = check_email(customer.get("email"))
    phone = customer.get("phone")
    address = payload.get("shipping_address") or {}
    if not isinstance(address, dict):
        raise ValueError("shipping_address must be an object")
    return name, email, (phone.strip() if isinstance(phone, str) else None), address


def _lock_products(pairs):
    ids = [pid for pid, _ in pairs]
    # row locks keep two checkouts from selling the same last unit
    products = (
        db.session.query(Product)
        .filter(Product.id.in_(ids))
        .with_for_update()
        .all()
    )
    pmap = {p.id: p for p in products}
    for pid, qty in pairs:
        p = pmap.get(pid)
        if p is None:
            raise NotFound(f"product {pid} not found")
        if not p.is_active:
            raise Conflict(f"product {pid} is unavailable")
        if p.subtract_stock and int(p.quantity or 0) < qty:
            raise Conflict(f"requested quantity for {p.name} is not available")
    return pmap


def place_order(payload: dict) -> Order:
    """
    Body:
      {
        "customer": { "name": str, "email": str, "phone"?: str },
        "shipping_address"?: {...},
        "items": [{ "product_id": int, "quantity": int }],
        "coupon_code"?: str
      }

    Prices come from the catalogue, never from the client. The coupon is
    checked again right before the order is written and redeemed in the same
    transaction; if another checkout took the last use, nothing is stored.
    """
    name, email, phone, address = _parse_customer(payload)
    pairs = parse_cart_items(payload.get("items"))
    code = payload.get("coupon_code")
    code = code if isinstance(code, str) and code.strip() else None

    try:
        pmap = _lock_products(pairs)
        cart = snapshot_from_products(pairs, pmap)

        result = None
        if code:
            result = validate_coupon(code, email, cart)
            if result.reason == "unavailable":
                raise ApiError(STORE_DOWN_MESSAGE, 503)
            if not result.valid:
                raise ApiError(result.message, 422)

        subtotal = cart.order_total
        discount = result.discount_amount if result else Decimal("0")
        shipping = Decimal("0") if result and result.free_shipping else _shipping_rate()
        total = max(Decimal("0"), subtotal - discount) + shipping

        order = Order(
            code=_gen_order_code(),
            status=OrderStatus.PENDING.value,
            customer_name=name,
            phone=phone,
            email=email,
            address_json=address,
            subtotal=round_money(subtotal),
            discount_amount=round_money(discount),
            shipping_total=round_money(shipping),
            total=round_money(total),
            coupon_id=result.coupon_id if result else None,
            coupon_code=code.strip().upper() if result else None,
        )
        db.session.add(order)
        db.session.flush()

        for line in cart.lines:
            p = pmap[line.product_id]
            db.session.add(OrderItem(
                order_id=order.id,
                product_id=p.id,
                name=p.name,
                unit_price=round_money(line.unit_price),
                quantity=line.quantity,
                line_total=round_money(line.subtotal),
            ))
            if p.subtract_stock:
                p.quantity = int(p.quantity or 0) - line.quantity

        if result:
            status = redeem(result.coupon_id, email, order.id, discount)
            if not status.applied:
                raise Conflict(COUPON_GONE_MESSAGE)

        mark_first_purchase(email)
        db.session.commit()
    except ApiError:
        db.session.rollback()
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("checkout failed for %s", email)
        raise ApiError(STORE_DOWN_MESSAGE, 503)

    logger.info("order %s placed by %s total=%s coupon=%s", order.code, email, order.total, order.coupon_code)
    return order


def set_order_status(order: Order, status) -> Order:
    try:
        new = OrderStatus(str(status or "").strip().lower())
    except ValueError:
        allowed = ", ".join(s.value for s in OrderStatus)
        raise ValueError(f"status must be one of {allowed}")
    if order.status == OrderStatus.CANCELLED.value and new is not OrderStatus.CANCELLED:
        raise Conflict("a cancelled order cannot be reopened")
    was_cancelled = order.status == OrderStatus.CANCELLED.value
    order.status = new.value
    if new is OrderStatus.CANCELLED and not was_cancelled and order.email:
        # a customer whose only orders were cancelled is first-time again
        reopen_first_purchase(order.email)
    return order
