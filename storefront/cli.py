# storefront/cli.py
from datetime import timedelta
from decimal import Decimal

import click
from flask.cli import with_appcontext
from werkzeug.security import generate_password_hash

from .extensions import db
from .model import Category, Coupon, Product, User
from .services.coupon_service import apply_coupon_payload
from .utils.dates import utcnow

SAMPLE_PRODUCTS = [
    {"slug": "classic-tee", "name": "Classic Tee", "price": "20.99", "quantity": 100},
    {"slug": "canvas-tote", "name": "Canvas Tote", "price": "15.99", "quantity": 150},
    {"slug": "enamel-mug", "name": "Enamel Mug", "price": "10.50", "quantity": 200},
    {"slug": "wool-beanie", "name": "Wool Beanie", "price": "12.75", "quantity": 50},
    {"slug": "sticker-pack", "name": "Sticker Pack", "price": "5.50", "quantity": 250},
    {"slug": "gift-card", "name": "Gift Card", "price": "25.00", "quantity": 0, "subtract_stock": False},
]

SAMPLE_COUPONS = [
    {"code": "SAVE20", "description": "20% off orders over $50", "discount_type": "percentage",
     "discount_value": 20, "minimum_order_amount": 50, "usage_limit": 100},
    {"code": "FIRST10", "description": "$10 off your first order", "discount_type": "fixed_amount",
     "discount_value": 10, "first_time_only": True},
    {"code": "SHIPFREE", "description": "Free shipping on orders over $30", "discount_type": "free_shipping",
     "minimum_order_amount": 30},
]


@click.command("create-admin")
@click.option("--email", required=True)
@click.option("--password", required=True)
@click.option("--name", required=True)
@with_appcontext
def create_admin(email, password, name):
    email = email.strip().lower()
    if User.query.filter_by(email=email).first():
        click.echo("Email already exists"); return
    u = User(email=email, name=name, password_hash=generate_password_hash(password), role="admin")
    db.session.add(u); db.session.commit()
    click.echo(f"Admin created: {u.id} {u.email}")


@click.command("seed-demo")
@click.option("--days", default=30, show_default=True, help="Validity window of the sample coupons.")
@with_appcontext
def seed_demo(days):
    """Insert a small catalogue and the sample coupons (idempotent)."""
    category = Category.query.filter_by(name="Merch").first()
    if category is None:
        category = Category(name="Merch")
        db.session.add(category)
        db.session.flush()

    added_products = 0
    for data in SAMPLE_PRODUCTS:
        if Product.query.filter_by(slug=data["slug"]).first():
            continue
        db.session.add(Product(
            slug=data["slug"],
            name=data["name"],
            price=Decimal(data["price"]),
            quantity=data["quantity"],
            subtract_stock=data.get("subtract_stock", True),
            is_active=True,
            category_id=category.id,
        ))
        added_products += 1

    added_coupons = 0
    expires = (utcnow() + timedelta(days=days)).isoformat()
    for data in SAMPLE_COUPONS:
        if Coupon.query.filter_by(code=data["code"]).first():
            continue
        apply_coupon_payload({**data, "expires_at": expires})
        added_coupons += 1

    db.session.commit()
    click.echo(f"Seeded {added_products} products and {added_coupons} coupons")


def register_cli(app):
    app.cli.add_command(create_admin)
    app.cli.add_command(seed_demo)
