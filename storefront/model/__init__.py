# ------ storefront/model/__init__.py ------

from .user import User, RefreshToken
from .category import Category
from .product import Product
from .types import GUID, DiscountType, InclusionType, OrderStatus
from .coupon import Coupon, CouponProduct, CouponUsage, CustomerDiscount
from .order import Order, OrderItem

__all__ = [
    "User",
    "RefreshToken",
    "Category",
    "Product",
    "GUID",
    "DiscountType",
    "InclusionType",
    "OrderStatus",
    "Coupon",
    "CouponProduct",
    "CouponUsage",
    "CustomerDiscount",
    "Order",
    "OrderItem",
]
