# storefront/model/product.py
from ..extensions import db
from sqlalchemy.sql import func

from ..utils.dates import iso


class Product(db.Model):
    __tablename__ = "product"
    id = db.Column(db.Integer, primary_key=True)
    slug = db.Column(db.String(255), unique=True, index=True)
    name = db.Column(db.String(255), nullable=False, index=True)
    description = db.Column(db.Text)

    price = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    quantity = db.Column(db.Integer, default=0)
    subtract_stock = db.Column(db.Boolean, default=True)      # track stock on checkout
    is_active = db.Column(db.Boolean, default=True, index=True)

    created_at = db.Column(db.DateTime, server_default=func.now())
    updated_at = db.Column(db.DateTime, onupdate=func.now(), server_default=func.now())

    category_id = db.Column(
        db.Integer,
        db.ForeignKey("category.id"),
        nullable=True
    )

    def as_api(self):
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "price": float(self.price or 0),
            "quantity": self.quantity,
            "subtract_stock": bool(self.subtract_stock),
            "is_active": bool(self.is_active),
            "category": self.category.as_dict() if self.category else None,
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }
