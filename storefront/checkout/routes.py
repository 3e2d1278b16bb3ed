# storefront/checkout/routes.py
from flask import request

from ..services.order_service import place_order
from ..utils.api import ok
from . import bp


@bp.post("")
def checkout():
    payload = request.get_json(silent=True) or {}
    order = place_order(payload)
    resp = ok("order created", {"order": order.as_api()}, status=201)
    resp.headers["X-Order-Id"] = str(order.id)
    return resp
