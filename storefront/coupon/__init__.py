from flask import Blueprint

bp = Blueprint("coupon", __name__, url_prefix="/api/coupons")

from . import routes, public  # noqa: E402,F401
