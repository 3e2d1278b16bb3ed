from ..extensions import db
from ..utils.dates import iso, utcnow
from .types import GUID, OrderStatus


class Order(db.Model):
    __tablename__ = "orders"

    id = db.Column(db.Integer, primary_key=True)
    code = db.Column(db.String(32), unique=True, index=True)  # e.g., "ORD-20251022-0001"
    status = db.Column(db.String(20), default=OrderStatus.PENDING.value, index=True)

    # Customer snapshot
    customer_name = db.Column(db.String(120))
    phone = db.Column(db.String(50))
    email = db.Column(db.String(255), index=True)  # normalized lowercase
    address_json = db.Column(db.JSON)

    # Money snapshot
    subtotal = db.Column(db.Numeric(12, 2))
    discount_amount = db.Column(db.Numeric(12, 2), default=0)
    shipping_total = db.Column(db.Numeric(12, 2), default=0)
    total = db.Column(db.Numeric(12, 2))

    # Coupon snapshot; the code survives coupon deletion
    coupon_id = db.Column(GUID(), nullable=True)
    coupon_code = db.Column(db.String(64), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, index=True)

    items = db.relationship(
        "OrderItem",
        backref="order",
        cascade="all, delete-orphan",
        lazy="selectin"
    )

    def as_api(self):
        return {
            "id": self.id,
            "code": self.code,
            "status": self.status,
            "customer": {
                "name": self.customer_name,
                "phone": self.phone,
                "email": self.email,
                "address": self.address_json,
            },
            "money": {
                "subtotal": float(self.subtotal or 0),
                "discount_amount": float(self.discount_amount or 0),
                "shipping_total": float(self.shipping_total or 0),
                "total": float(self.total or 0),
            },
            "coupon": {
                "id": str(self.coupon_id),
                "code": self.coupon_code,
            } if self.coupon_code else None,
            "items": [i.as_api() for i in self.items],
            "created_at": iso(self.created_at),
        }


class OrderItem(db.Model):
    __tablename__ = "order_items"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.Integer, db.ForeignKey("orders.id"), nullable=False, index=True)

    product_id = db.Column(db.Integer, index=True)
    name = db.Column(db.String(255))

    unit_price = db.Column(db.Numeric(12, 2))
    quantity = db.Column(db.Integer, nullable=False)
    line_total = db.Column(db.Numeric(12, 2))

    def as_api(self):
        return {
            "product_id": self.product_id,
            "name": self.name,
            "unit_price": float(self.unit_price or 0),
            "quantity": self.quantity,
            "line_total": float(self.line_total or 0),
        }
