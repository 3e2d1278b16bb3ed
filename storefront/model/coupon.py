# --- storefront/model/coupon.py ---
import uuid

from sqlalchemy.sql import func

from ..extensions import db
from ..utils.dates import iso, utcnow
from .types import GUID, DiscountType, InclusionType


class Coupon(db.Model):
    __tablename__ = "coupons"

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4)
    # always stored trimmed + uppercased
    code = db.Column(db.String(64), unique=True, nullable=False, index=True)
    description = db.Column(db.Text, nullable=True)

    # "percentage" | "fixed_amount" | "free_shipping"
    discount_type = db.Column(db.String(16), nullable=False, default=DiscountType.PERCENTAGE.value)
    discount_value = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    minimum_order_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    usage_limit = db.Column(db.Integer, nullable=True)      # None = unlimited
    usage_count = db.Column(db.Integer, nullable=False, default=0)

    first_time_only = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    starts_at = db.Column(db.DateTime, nullable=True, default=utcnow)
    expires_at = db.Column(db.DateTime, nullable=True)

    is_product_specific = db.Column(db.Boolean, nullable=False, default=False)
    product_inclusion_type = db.Column(db.String(16), nullable=False, default=InclusionType.INCLUDE.value)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    products = db.relationship(
        "CouponProduct",
        back_populates="coupon",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="selectin",
    )

    @property
    def dtype(self) -> DiscountType:
        return DiscountType.parse(self.discount_type)

    @property
    def inclusion(self) -> InclusionType:
        return InclusionType.parse(self.product_inclusion_type)

    def product_ids(self) -> set[int]:
        return {link.product_id for link in self.products}

    def as_api(self, with_products=False):
        data = {
            "id": str(self.id),
            "code": self.code,
            "description": self.description,
            "discount_type": self.discount_type,
            "discount_value": float(self.discount_value or 0),
            "minimum_order_amount": float(self.minimum_order_amount or 0),
            "usage_limit": self.usage_limit,
            "usage_count": self.usage_count or 0,
            "first_time_only": bool(self.first_time_only),
            "is_active": bool(self.is_active),
            "starts_at": iso(self.starts_at),
            "expires_at": iso(self.expires_at),
            "is_product_specific": bool(self.is_product_specific),
            "product_inclusion_type": self.product_inclusion_type,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
        if with_products:
            data["product_ids"] = sorted(self.product_ids())
        return data


class CouponProduct(db.Model):
    __tablename__ = "coupon_products"
    __table_args__ = (
        db.UniqueConstraint("coupon_id", "product_id", name="uq_coupon_product"),
    )

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(GUID(), db.ForeignKey("coupons.id", ondelete="CASCADE"), index=True, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey("product.id", ondelete="CASCADE"), index=True, nullable=False)
    created_at = db.Column(db.DateTime, server_default=func.now())

    coupon = db.relationship("Coupon", back_populates="products")

    def as_api(self):
        return {
            "id": self.id,
            "coupon_id": str(self.coupon_id),
            "product_id": self.product_id,
            "created_at": iso(self.created_at),
        }


class CouponUsage(db.Model):
    """One row per redeemed order; order_id is the dedupe key."""
    __tablename__ = "coupon_usage"

    id = db.Column(db.Integer, primary_key=True)
    coupon_id = db.Column(GUID(), db.ForeignKey("coupons.id", ondelete="SET NULL"), index=True, nullable=True)
    customer_email = db.Column(db.String(255), nullable=False, index=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), unique=True, nullable=False)
    discount_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    used_at = db.Column(db.DateTime, default=utcnow, index=True)

    def as_api(self):
        return {
            "id": self.id,
            "coupon_id": str(self.coupon_id) if self.coupon_id else None,
            "customer_email": self.customer_email,
            "order_id": self.order_id,
            "discount_amount": float(self.discount_amount or 0),
            "used_at": iso(self.used_at),
        }


class CustomerDiscount(db.Model):
    __tablename__ = "customer_discounts"

    id = db.Column(db.Integer, primary_key=True)
    customer_email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    first_purchase_completed = db.Column(db.Boolean, nullable=False, default=False)
    first_purchase_discount_applied = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())
