# storefront/services/coupon_service.py
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from flask import current_app, has_app_context
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError

from ..errors import Conflict, NotFound
from ..extensions import db
from ..model import Coupon, CouponProduct, CouponUsage, DiscountType, InclusionType, Product
from ..utils.dates import parse_iso8601, utcnow
from ..utils.money import D, Money, parse_money
from .cart_service import CartSnapshot
from .discount_format import discount_for, format_label, format_money, to_display
from .ledger import is_first_time_customer, normalize_email

logger = logging.getLogger(__name__)

CODE_MAX_LEN = 64
_CODE_RE = re.compile(r"^[A-Z0-9_-]+$")
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ---- result ------------------------------------------------------------------

@dataclass
class ValidationResult:
    valid: bool
    message: str
    reason: str
    discount_amount: Money = Decimal("0")
    coupon_id: str | None = None
    free_shipping: bool = False
    applicable_products: list[int] = field(default_factory=list)

    @classmethod
    def reject(cls, reason, message):
        return cls(valid=False, message=message, reason=reason)

    def as_api(self):
        data = {
            "valid": self.valid,
            "discount_amount": float(to_display(self.discount_amount)),
            "message": self.message,
            "reason": self.reason,
            "free_shipping": self.free_shipping,
            "applicable_products": list(self.applicable_products),
        }
        if self.coupon_id:
            data["coupon_id"] = self.coupon_id
        return data


UNAVAILABLE_MESSAGE = "Failed to validate coupon, please try again"


# ---- normalisation -----------------------------------------------------------

def normalize_code(code) -> str:
    return code.strip().upper() if isinstance(code, str) else ""


def check_code(code) -> str:
    c = normalize_code(code)
    if not c:
        raise ValueError("Coupon code is required")
    if len(c) > CODE_MAX_LEN:
        raise ValueError(f"Coupon code must be at most {CODE_MAX_LEN} characters")
    if not _CODE_RE.match(c):
        raise ValueError("Coupon code may only contain letters, digits, '-' and '_'")
    return c


def check_email(email) -> str:
    e = normalize_email(email)
    if not e:
        raise ValueError("Customer email is required")
    if not _EMAIL_RE.match(e):
        raise ValueError("Customer email is not valid")
    return e


def _currency_symbol():
    return current_app.config.get("CURRENCY_SYMBOL", "$") if has_app_context() else "$"


# ---- validation --------------------------------------------------------------

def _find_coupon_by_code(code: str) -> Coupon | None:
    return Coupon.query.filter(Coupon.code == code).first()


def evaluate_coupon(coupon: Coupon, customer_email: str, cart: CartSnapshot, now: datetime | None = None) -> ValidationResult:
    """
    Apply the eligibility rules to an already loaded coupon. Checks run in a
    fixed order and the first failing one decides the message.
    """
    now = now or utcnow()

    if not coupon.is_active:
        return ValidationResult.reject("inactive", "This coupon is no longer active")

    if coupon.starts_at and now < coupon.starts_at:
        return ValidationResult.reject("not_started", "This coupon is not active yet")
    if coupon.expires_at and now >= coupon.expires_at:
        return ValidationResult.reject("expired", "This coupon has expired")

    if coupon.usage_limit is not None and (coupon.usage_count or 0) >= coupon.usage_limit:
        return ValidationResult.reject("exhausted", "This coupon has reached its usage limit")

    order_total = cart.order_total
    minimum = D(coupon.minimum_order_amount)
    if order_total < minimum:
        return ValidationResult.reject(
            "below_minimum",
            f"Minimum order amount of {format_money(minimum, _currency_symbol())} required for this coupon",
        )

    if coupon.first_time_only and not is_first_time_customer(customer_email):
        return ValidationResult.reject("not_first_time", "This coupon is only valid for first-time customers")

    base = order_total
    applicable: list[int] = []
    if coupon.is_product_specific:
        bound = coupon.product_ids()
        in_cart = [pid for pid in cart.product_ids if pid in bound]
        if coupon.inclusion is InclusionType.INCLUDE:
            # any bound line qualifies; only those lines are discounted
            if not in_cart:
                return ValidationResult.reject("product_mismatch", "This coupon does not apply to any product in your cart")
            applicable = in_cart
            base = cart.subtotal_for(in_cart)
        else:
            if in_cart:
                return ValidationResult.reject("product_excluded", "This coupon cannot be used with some products in your cart")
            applicable = list(cart.product_ids)

    dtype = coupon.dtype
    amount = discount_for(base, dtype, coupon.discount_value)
    free_shipping = dtype is DiscountType.FREE_SHIPPING
    return ValidationResult(
        valid=True,
        message="Free shipping applied" if free_shipping else "Coupon applied successfully",
        reason="ok",
        discount_amount=amount,
        coupon_id=str(coupon.id),
        free_shipping=free_shipping,
        applicable_products=applicable,
    )


def validate_coupon(code, customer_email, cart: CartSnapshot | None, now: datetime | None = None) -> ValidationResult:
    """
    Decide whether ``code`` applies to ``cart`` for ``customer_email``.
    Always returns a result; store failures come back as reason "unavailable".
    """
    try:
        normalized = check_code(code)
        email = check_email(customer_email)
        if cart is None or cart.is_empty():
            raise ValueError("Cart is empty")
    except ValueError as e:
        return ValidationResult.reject("invalid_input", str(e))

    try:
        coupon = _find_coupon_by_code(normalized)
        if coupon is None:
            return ValidationResult.reject("not_found", "Invalid coupon code")
        result = evaluate_coupon(coupon, email, cart, now)
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("coupon lookup failed for code %s", normalized)
        return ValidationResult.reject("unavailable", UNAVAILABLE_MESSAGE)

    logger.debug("coupon %s for %s: %s", normalized, email, result.reason)
    return result


def _live_coupons_query(now: datetime):
    return (
        Coupon.query
        .filter(Coupon.is_active.is_(True))
        .filter(or_(Coupon.starts_at.is_(None), Coupon.starts_at <= now))
        .filter(or_(Coupon.expires_at.is_(None), Coupon.expires_at > now))
    )


def get_applicable_coupons(customer_email, cart: CartSnapshot, now: datetime | None = None):
    """[(coupon, result)] for every live coupon valid for this cart, best first."""
    now = now or utcnow()
    email = check_email(customer_email)
    if cart.is_empty():
        raise ValueError("Cart is empty")

    candidates = (
        _live_coupons_query(now)
        .filter(or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit))
        .filter(Coupon.minimum_order_amount <= cart.order_total)
        .all()
    )
    found = []
    for c in candidates:
        result = evaluate_coupon(c, email, cart, now)
        if result.valid:
            found.append((c, result))
    found.sort(key=lambda pair: (pair[1].free_shipping, -pair[1].discount_amount, pair[0].code))
    return found


def list_live_coupons(*, first_time_only=None, product_specific=None, now: datetime | None = None):
    q = _live_coupons_query(now or utcnow())
    if first_time_only is not None:
        q = q.filter(Coupon.first_time_only.is_(first_time_only))
    if product_specific is not None:
        q = q.filter(Coupon.is_product_specific.is_(product_specific))
    return q.order_by(Coupon.created_at.desc(), Coupon.code.asc()).all()


def coupon_public_api(c: Coupon):
    return {
        "id": str(c.id),
        "code": c.code,
        "description": c.description,
        "discount_type": c.discount_type,
        "discount_value": float(c.discount_value or 0),
        "minimum_order_amount": float(c.minimum_order_amount or 0),
        "first_time_only": bool(c.first_time_only),
        "is_product_specific": bool(c.is_product_specific),
        "expires_at": c.expires_at.isoformat() if c.expires_at else None,
        "label": format_label(c.discount_type, c.discount_value, _currency_symbol()),
    }


# ---- admin payloads ----------------------------------------------------------

def _parse_bool(v, field_name):
    if isinstance(v, bool):
        return v
    if isinstance(v, str) and v.strip().lower() in {"true", "1", "yes", "on"}:
        return True
    if isinstance(v, str) and v.strip().lower() in {"false", "0", "no", "off"}:
        return False
    raise ValueError(f"{field_name} must be a boolean")


def _parse_usage_limit(v):
    if v is None or (isinstance(v, str) and v.strip() in {"", "null"}):
        return None
    if isinstance(v, bool):
        raise ValueError("usage_limit must be a positive integer or null")
    try:
        n = int(v)
    except (TypeError, ValueError):
        raise ValueError("usage_limit must be a positive integer or null")
    if n < 1 or n != float(v):
        raise ValueError("usage_limit must be a positive integer or null")
    return n


def _parse_datetime(data, key):
    raw = data.get(key)
    if raw in (None, ""):
        return None
    dt = parse_iso8601(raw)
    if dt is None:
        raise ValueError(f"Invalid datetime format for {key}")
    return dt


def parse_product_ids(raw) -> list[int]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ValueError("product_ids must be a list of integers")
    ids = []
    for v in raw:
        if isinstance(v, bool):
            raise ValueError("product_ids must be a list of integers")
        try:
            ids.append(int(v))
        except (TypeError, ValueError):
            raise ValueError("product_ids must be a list of integers")
    return list(dict.fromkeys(ids))


def apply_coupon_payload(data: dict, coupon: Coupon | None = None) -> Coupon:
    """
    Create (coupon=None) or update a coupon from an admin payload.
    Raises ValueError on invalid fields; nothing is committed.
    ``usage_count`` is never taken from the payload.
    """
    creating = coupon is None
    if creating:
        coupon = Coupon(usage_count=0)
        if "code" not in data:
            raise ValueError("code is required")
        if "discount_type" not in data:
            raise ValueError("discount_type is required")

    if "code" in data:
        code = check_code(data.get("code"))
        clash = Coupon.query.filter(func.upper(Coupon.code) == code)
        if not creating:
            clash = clash.filter(Coupon.id != coupon.id)
        if clash.first():
            raise Conflict("Coupon code already exists")
        coupon.code = code

    if "description" in data:
        desc = data.get("description")
        coupon.description = desc.strip() if isinstance(desc, str) and desc.strip() else None

    dtype = DiscountType.parse(data["discount_type"]) if "discount_type" in data else coupon.dtype
    coupon.discount_type = dtype.value

    if "discount_value" in data or creating:
        value = parse_money(data.get("discount_value", 0), "discount_value")
    else:
        value = D(coupon.discount_value)
    if dtype is DiscountType.PERCENTAGE and value > 100:
        raise ValueError("percentage discount_value must be between 0 and 100")
    coupon.discount_value = Decimal("0") if dtype is DiscountType.FREE_SHIPPING else value

    if "minimum_order_amount" in data or creating:
        minimum = data.get("minimum_order_amount")
        coupon.minimum_order_amount = parse_money(minimum, "minimum_order_amount", allow_none=True) or Decimal("0")

    if "usage_limit" in data:
        coupon.usage_limit = _parse_usage_limit(data.get("usage_limit"))

    for flag in ("first_time_only", "is_active", "is_product_specific"):
        if flag in data:
            setattr(coupon, flag, _parse_bool(data.get(flag), flag))
        elif creating:
            setattr(coupon, flag, flag == "is_active")

    if "product_inclusion_type" in data or creating:
        coupon.product_inclusion_type = InclusionType.parse(data.get("product_inclusion_type")).value

    if "starts_at" in data:
        coupon.starts_at = _parse_datetime(data, "starts_at")
    elif creating:
        coupon.starts_at = utcnow()
    if "expires_at" in data:
        coupon.expires_at = _parse_datetime(data, "expires_at")
    if coupon.starts_at and coupon.expires_at and coupon.expires_at <= coupon.starts_at:
        raise ValueError("expires_at must be after starts_at")

    if creating:
        db.session.add(coupon)
    return coupon


# ---- product scope -----------------------------------------------------------

def _require_products(product_ids):
    if not product_ids:
        return
    found = {pid for (pid,) in db.session.query(Product.id).filter(Product.id.in_(product_ids)).all()}
    missing = [pid for pid in product_ids if pid not in found]
    if missing:
        raise NotFound(f"unknown product ids: {', '.join(str(m) for m in missing)}")


def add_products_to_coupon(coupon: Coupon, product_ids) -> list[int]:
    ids = parse_product_ids(product_ids)
    _require_products(ids)
    current = coupon.product_ids()
    added = [pid for pid in ids if pid not in current]
    for pid in added:
        coupon.products.append(CouponProduct(product_id=pid))
    return added


def remove_products_from_coupon(coupon: Coupon, product_ids) -> list[int]:
    ids = set(parse_product_ids(product_ids))
    removed = []
    for link in list(coupon.products):
        if link.product_id in ids:
            coupon.products.remove(link)
            removed.append(link.product_id)
    return removed


def set_coupon_products(coupon: Coupon, product_ids):
    """Replace the bound set; returns (added, removed)."""
    wanted = parse_product_ids(product_ids)
    _require_products(wanted)
    current = coupon.product_ids()
    removed = remove_products_from_coupon(coupon, [pid for pid in current if pid not in set(wanted)])
    added = add_products_to_coupon(coupon, [pid for pid in wanted if pid not in current])
    return added, removed


# ---- reporting ---------------------------------------------------------------

def coupon_stats():
    total = db.session.query(func.count(Coupon.id)).scalar() or 0
    active = db.session.query(func.count(Coupon.id)).filter(Coupon.is_active.is_(True)).scalar() or 0
    redeemed = db.session.query(func.count(Coupon.id)).filter(Coupon.usage_count > 0).scalar() or 0
    product_specific = (
        db.session.query(func.count(Coupon.id)).filter(Coupon.is_product_specific.is_(True)).scalar() or 0
    )
    total_usage = db.session.query(func.coalesce(func.sum(Coupon.usage_count), 0)).scalar() or 0
    total_discount = db.session.query(func.coalesce(func.sum(CouponUsage.discount_amount), 0)).scalar() or 0
    return {
        "total_coupons": int(total),
        "active_coupons": int(active),
        "redeemed_coupons": int(redeemed),
        "product_specific_coupons": int(product_specific),
        "total_usage": int(total_usage),
        "total_discount_given": float(to_display(total_discount)),
    }
