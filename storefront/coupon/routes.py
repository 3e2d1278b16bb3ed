# storefront/coupon/routes.py
from __future__ import annotations

import logging

from flask import request
from sqlalchemy import asc, desc, or_

from ..extensions import db
from ..model import Coupon, CouponUsage, DiscountType, Order
from ..services import coupon_service as svc
from ..services.ledger import record_redemption
from ..utils.api import ok, err
from ..utils.decorators import admin_required
from ..utils.money import parse_money
from ..utils.query import paginate
from . import bp

logger = logging.getLogger(__name__)

_SORTABLE = {
    "created_at": Coupon.created_at,
    "expires_at": Coupon.expires_at,
    "discount_value": Coupon.discount_value,
    "code": Coupon.code,
}


def _get_coupon_or_404(coupon_id):
    c = db.session.get(Coupon, coupon_id)
    if not c:
        return None, err("coupon not found", 404)
    return c, None


def _filtered_query(args):
    q = Coupon.query

    search = (args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Coupon.code.ilike(like), Coupon.description.ilike(like)))

    status = (args.get("status") or "all").lower()
    if status not in {"all", "active", "inactive"}:
        raise ValueError("status must be one of all, active, inactive")
    if status != "all":
        q = q.filter(Coupon.is_active.is_(status == "active"))

    dtype = (args.get("type") or "all").lower()
    if dtype != "all":
        q = q.filter(Coupon.discount_type == DiscountType.parse(dtype).value)
    return q


@bp.post("")
@admin_required
def create_coupon():
    data = request.get_json(silent=True) or {}
    c = svc.apply_coupon_payload(data)
    if "product_ids" in data:
        db.session.flush()
        svc.add_products_to_coupon(c, data.get("product_ids"))
    db.session.commit()
    logger.info("coupon %s created (%s)", c.code, c.id)
    return ok("Coupon created", {"coupon": c.as_api(with_products=True)}, status=201)


@bp.get("")
@admin_required
def list_coupons():
    """
    Query params:
      search     -> substring of code or description
      status     -> all | active | inactive
      type       -> all | percentage | fixed_amount | free_shipping
      sort_by    -> created_at | expires_at | discount_value | code
      sort_order -> asc | desc (default desc)
      page, limit
    """
    q = _filtered_query(request.args)
    col = _SORTABLE.get(request.args.get("sort_by") or "created_at", Coupon.created_at)
    direction = asc if (request.args.get("sort_order") or "desc").lower() == "asc" else desc
    q = q.order_by(direction(col), Coupon.code.asc())

    page_data = paginate(q, request.args.get("page"), request.args.get("limit"))
    return ok("ok", {
        "items": [c.as_api() for c in page_data["items"]],
        "meta": page_data["meta"],
    })


@bp.get("/count")
@admin_required
def count_coupons():
    return ok("ok", {"count": _filtered_query(request.args).count()})


@bp.get("/stats")
@admin_required
def stats():
    return ok("ok", svc.coupon_stats())


@bp.get("/<uuid:coupon_id>")
@admin_required
def get_coupon(coupon_id):
    c, resp = _get_coupon_or_404(coupon_id)
    if resp:
        return resp
    return ok("ok", {"coupon": c.as_api(with_products=True)})


@bp.put("/<uuid:coupon_id>")
@bp.patch("/<uuid:coupon_id>")
@admin_required
def update_coupon(coupon_id):
    c, resp = _get_coupon_or_404(coupon_id)
    if resp:
        return resp
    data = request.get_json(silent=True) or {}
    svc.apply_coupon_payload(data, c)
    if "product_ids" in data:
        svc.set_coupon_products(c, data.get("product_ids"))
    db.session.commit()
    return ok("Coupon updated", {"coupon": c.as_api(with_products=True)})


@bp.delete("/<uuid:coupon_id>")
@admin_required
def delete_coupon(coupon_id):
    c, resp = _get_coupon_or_404(coupon_id)
    if resp:
        return resp
    # product bindings go with the coupon; usage history keeps its rows
    code, unbound = c.code, len(c.products)
    CouponUsage.query.filter_by(coupon_id=c.id).update({"coupon_id": None}, synchronize_session=False)
    db.session.delete(c)
    db.session.commit()
    logger.info("coupon %s deleted, %s product bindings removed", code, unbound)
    return ok("Coupon deleted", {"id": str(coupon_id), "product_bindings_removed": unbound})


# ---- product scope ---------------------------------------------------------

@bp.get("/<uuid:coupon_id>/products")
@admin_required
def get_coupon_products(coupon_id):
    c, resp = _get_coupon_or_404(coupon_id)
    if resp:
        return resp
    return ok("ok", {
        "is_product_specific": bool(c.is_product_specific),
        "product_inclusion_type": c.product_inclusion_type,
        "items": [link.as_api() for link in sorted(c.products, key=lambda l: l.product_id)],
    })


@bp.put("/<uuid:coupon_id>/products")
@admin_required
def replace_coupon_products(coupon_id):
    """
    Body: { "product_ids": [int], "is_product_specific"?: bool, "product_inclusion_type"?: "include"|"exclude" }
    """
    c, resp = _get_coupon_or_404(coupon_id)
    if resp:
        return resp
    data = request.get_json(silent=True) or {}
    scope = {k: data[k] for k in ("is_product_specific", "product_inclusion_type") if k in data}
    if scope:
        svc.apply_coupon_payload(scope, c)
    added, removed = svc.set_coupon_products(c, data.get("product_ids"))
    db.session.commit()
    return ok("Coupon products updated", {
        "added": added,
        "removed": removed,
        "coupon": c.as_api(with_products=True),
    })


@bp.post("/<uuid:coupon_id>/products")
@admin_required
def add_coupon_products(coupon_id):
    c, resp = _get_coupon_or_404(coupon_id)
    if resp:
        return resp
    data = request.get_json(silent=True) or {}
    added = svc.add_products_to_coupon(c, data.get("product_ids"))
    db.session.commit()
    return ok("Products added", {"added": added, "coupon": c.as_api(with_products=True)})


@bp.delete("/<uuid:coupon_id>/products")
@admin_required
def remove_coupon_products(coupon_id):
    c, resp = _get_coupon_or_404(coupon_id)
    if resp:
        return resp
    data = request.get_json(silent=True) or {}
    removed = svc.remove_products_from_coupon(c, data.get("product_ids"))
    db.session.commit()
    return ok("Products removed", {"removed": removed, "coupon": c.as_api(with_products=True)})


# ---- ledger ----------------------------------------------------------------

@bp.get("/<uuid:coupon_id>/usage")
@admin_required
def coupon_usage(coupon_id):
    c, resp = _get_coupon_or_404(coupon_id)
    if resp:
        return resp
    q = CouponUsage.query.filter_by(coupon_id=c.id).order_by(CouponUsage.used_at.desc())
    page_data = paginate(q, request.args.get("page"), request.args.get("limit"), default_per_page=20)
    return ok("ok", {
        "usage_count": c.usage_count,
        "usage_limit": c.usage_limit,
        "items": [u.as_api() for u in page_data["items"]],
        "meta": page_data["meta"],
    })


@bp.post("/<uuid:coupon_id>/redemptions")
@admin_required
def redeem_coupon(coupon_id):
    """
    Body: { "order_id": int, "customer_email"?: str, "discount_amount"?: number }
    Safe to retry: an order is redeemed at most once.
    """
    c, resp = _get_coupon_or_404(coupon_id)
    if resp:
        return resp
    data = request.get_json(silent=True) or {}
    order = db.session.get(Order, data.get("order_id")) if isinstance(data.get("order_id"), int) else None
    if not order:
        return err("order not found", 404)
    if order.coupon_id is not None and order.coupon_id != c.id:
        return err("Order was placed with a different coupon", 409)
    email = data.get("customer_email") or order.email
    email = svc.check_email(email)
    amount = parse_money(data.get("discount_amount", order.discount_amount), "discount_amount")

    if not record_redemption(c.id, email, order.id, amount):
        return err("Coupon could not be redeemed (usage limit reached, order already "
                   "redeemed another coupon, or store unavailable)", 409)

    db.session.refresh(c)
    return ok("Coupon redeemed", {"coupon": c.as_api(), "order_id": order.id})
