# storefront/coupon/public.py
# Public (customer facing) coupon endpoints. No auth.
from flask import jsonify, request

from ..services import coupon_service as svc
from ..services.cart_service import build_snapshot
from ..utils.api import api_error, api_ok, ok
from . import bp


def _result_response(result):
    if result.reason == "invalid_input":
        status = 422
    elif result.reason == "unavailable":
        status = 503
    else:
        status = 200
    body = api_ok(result.message, result.as_api()) if result.valid else api_error(result.message, result.as_api())
    r = jsonify(body)
    r.status_code = status
    return r


@bp.post("/validate")
def validate():
    """
    Body: { "code": str, "customer_email": str,
            "items": [{ "product_id": int, "unit_price": number, "quantity": int }] }
    A rejected coupon is still a 200; read data.valid / data.reason.
    """
    data = request.get_json(silent=True) or {}
    try:
        cart = build_snapshot(data.get("items"))
    except ValueError as e:
        return _result_response(svc.ValidationResult.reject("invalid_input", str(e)))
    result = svc.validate_coupon(data.get("code"), data.get("customer_email"), cart)
    return _result_response(result)


@bp.post("/applicable")
def applicable():
    data = request.get_json(silent=True) or {}
    cart = build_snapshot(data.get("items"))
    found = svc.get_applicable_coupons(data.get("customer_email"), cart)
    return ok("Applicable coupons", {
        "items": [
            {**svc.coupon_public_api(c), **result.as_api()}
            for c, result in found
        ],
        "order_total": float(cart.order_total),
    })


@bp.get("/available")
def available():
    coupons = svc.list_live_coupons()
    return ok("Available coupons", {"items": [svc.coupon_public_api(c) for c in coupons]})


@bp.get("/first-time")
def first_time():
    coupons = svc.list_live_coupons(first_time_only=True)
    return ok("First-time customer coupons", {"items": [svc.coupon_public_api(c) for c in coupons]})


@bp.get("/product-specific")
def product_specific():
    coupons = svc.list_live_coupons(product_specific=True)
    return ok("Product-specific coupons", {
        "items": [
            {**svc.coupon_public_api(c), "product_inclusion_type": c.product_inclusion_type,
             "product_ids": sorted(c.product_ids())}
            for c in coupons
        ],
    })
