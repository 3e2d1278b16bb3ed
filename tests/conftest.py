from contextlib import nullcontext
from decimal import Decimal

import pytest
from flask import has_app_context
from flask_jwt_extended import create_access_token
from werkzeug.security import generate_password_hash

from storefront import create_app
from storefront.config import TestConfig
from storefront.extensions import db
from storefront.model import Coupon, Order, Product, User
from storefront.services.coupon_service import add_products_to_coupon, apply_coupon_payload


@pytest.fixture
def app():
    app = create_app(TestConfig)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def ctx(app):
    """Active app context for tests that call services directly."""
    with app.app_context():
        yield app
        db.session.remove()


def _context(app):
    # reuse the test's context (and session) when there is one
    return nullcontext() if has_app_context() else app.app_context()


def _user_headers(app, email, role):
    with _context(app):
        u = User(email=email, name=email.split("@")[0], password_hash=generate_password_hash("secret123"), role=role)
        db.session.add(u)
        db.session.commit()
        token = create_access_token(identity=str(u.id))
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(app):
    return _user_headers(app, "admin@example.com", "admin")


@pytest.fixture
def user_headers(app):
    return _user_headers(app, "shopper@example.com", "user")


@pytest.fixture
def make_product(app):
    counter = {"n": 0}

    def _make(price="10.00", quantity=100, **kw):
        counter["n"] += 1
        n = counter["n"]
        with _context(app):
            p = Product(
                slug=kw.pop("slug", f"product-{n}"),
                name=kw.pop("name", f"Product {n}"),
                price=Decimal(str(price)),
                quantity=quantity,
                subtract_stock=kw.pop("subtract_stock", True),
                is_active=kw.pop("is_active", True),
                **kw,
            )
            db.session.add(p)
            db.session.commit()
            return p.id

    return _make


@pytest.fixture
def make_coupon(app):
    """make_coupon(code, product_ids=None, usage_count=0, **payload) -> coupon id"""

    def _make(code="SAVE20", product_ids=None, usage_count=0, **payload):
        data = {"code": code, "discount_type": "percentage", "discount_value": 20, **payload}
        with _context(app):
            c = apply_coupon_payload(data)
            db.session.flush()
            if product_ids:
                add_products_to_coupon(c, product_ids)
            c.usage_count = usage_count
            db.session.commit()
            return c.id

    return _make


@pytest.fixture
def make_order(app):
    counter = {"n": 0}

    def _make(email="buyer@example.com", status="pending", discount_amount="0"):
        counter["n"] += 1
        with _context(app):
            o = Order(
                code=f"ORD-TEST-{counter['n']}",
                status=status,
                customer_name="Buyer",
                email=email,
                subtotal=Decimal("100.00"),
                discount_amount=Decimal(discount_amount),
                shipping_total=Decimal("0"),
                total=Decimal("100.00"),
            )
            db.session.add(o)
            db.session.commit()
            return o.id

    return _make


@pytest.fixture
def get_coupon(app):
    def _get(coupon_id):
        with _context(app):
            return db.session.get(Coupon, coupon_id, populate_existing=True)

    return _get
