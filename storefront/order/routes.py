# storefront/order/routes.py
from datetime import timedelta

from flask import request

from ..extensions import db
from ..model import Order
from ..services.order_service import set_order_status
from ..utils.api import ok, err
from ..utils.dates import parse_iso8601
from ..utils.decorators import admin_required
from ..utils.query import paginate
from . import bp


def _day(value, name):
    dt = parse_iso8601(value)
    if dt is None:
        raise ValueError(f"{name} must be a date (YYYY-MM-DD)")
    return dt


def _filtered_query(args):
    q = Order.query

    status = args.get("status")
    email = args.get("email")
    code = args.get("code")
    start = args.get("start")
    end = args.get("end")

    if status: q = q.filter(Order.status == status.strip().lower())
    if email:  q = q.filter(Order.email == email.strip().lower())
    if code:   q = q.filter(Order.code == code.strip())

    if start:
        q = q.filter(Order.created_at >= _day(start, "start"))
    if end:
        # end is inclusive for the whole day
        q = q.filter(Order.created_at < _day(end, "end") + timedelta(days=1))
    return q


@bp.get("")
@admin_required
def list_orders():
    """
    Query params:
      - page, per_page
      - status=pending|processing|shipped|delivered|cancelled
      - email=...
      - code=ORD-...
      - start=YYYY-MM-DD
      - end=YYYY-MM-DD (inclusive)
    """
    q = _filtered_query(request.args).order_by(Order.created_at.desc(), Order.id.desc())
    page_data = paginate(q, request.args.get("page"), request.args.get("per_page"), default_per_page=20)
    return ok("orders", {
        "items": [o.as_api() for o in page_data["items"]],
        "meta": page_data["meta"],
    })


@bp.get("/count")
@admin_required
def count_orders():
    return ok("orders counted", {"count": _filtered_query(request.args).count()})


@bp.get("/<int:order_id>")
@admin_required
def get_order(order_id: int):
    o = db.session.get(Order, order_id)
    if not o:
        return err("order not found", 404)
    return ok("order", {"order": o.as_api()})


@bp.patch("/<int:order_id>/status")
@admin_required
def update_status(order_id: int):
    o = db.session.get(Order, order_id)
    if not o:
        return err("order not found", 404)
    data = request.get_json(silent=True) or {}
    set_order_status(o, data.get("status"))
    db.session.commit()
    return ok("order status updated", {"order": o.as_api()})
