from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from storefront.services import coupon_service
from storefront.services.cart_service import build_snapshot
from storefront.services.coupon_service import get_applicable_coupons, validate_coupon
from storefront.utils.dates import utcnow

EMAIL = "new@example.com"


def cart(*lines):
    """cart((product_id, unit_price, quantity), ...)"""
    return build_snapshot([{"product_id": p, "unit_price": price, "quantity": q} for p, price, q in lines])


def test_percentage_coupon(ctx, make_coupon):
    make_coupon("SAVE20")
    result = validate_coupon("SAVE20", EMAIL, cart((1, "75.00", 2)))
    assert result.valid is True
    assert result.reason == "ok"
    assert result.discount_amount == Decimal("30.00")
    assert result.as_api()["discount_amount"] == 30.0
    assert result.message == "Coupon applied successfully"


def test_code_is_case_insensitive(ctx, make_coupon):
    make_coupon("SAVE20")
    assert validate_coupon("  save20 ", EMAIL, cart((1, "10", 1))).valid


def test_unknown_code(ctx):
    result = validate_coupon("NOPE", EMAIL, cart((1, "10", 1)))
    assert (result.valid, result.reason, result.message) == (False, "not_found", "Invalid coupon code")
    assert "coupon_id" not in result.as_api()


def test_minimum_order_boundary(ctx, make_coupon):
    make_coupon("BIG", minimum_order_amount=1000)
    below = validate_coupon("BIG", EMAIL, cart((1, "999.99", 1)))
    assert below.reason == "below_minimum"
    assert below.message == "Minimum order amount of $1,000.00 required for this coupon"
    assert validate_coupon("BIG", EMAIL, cart((1, "1000.00", 1))).valid


def test_inactive(ctx, make_coupon):
    make_coupon("OFF", is_active=False)
    result = validate_coupon("OFF", EMAIL, cart((1, "10", 1)))
    assert (result.valid, result.reason) == (False, "inactive")


def test_inactive_is_reported_before_expiry(ctx, make_coupon):
    make_coupon("OLD", is_active=False, starts_at="2020-01-01T00:00:00Z", expires_at="2020-02-01T00:00:00Z")
    assert validate_coupon("OLD", EMAIL, cart((1, "10", 1))).reason == "inactive"


def test_expired(ctx, make_coupon):
    make_coupon("OLD", starts_at="2020-01-01T00:00:00Z", expires_at="2020-02-01T00:00:00Z")
    result = validate_coupon("OLD", EMAIL, cart((1, "10", 1)))
    assert (result.reason, result.message) == ("expired", "This coupon has expired")


def test_not_started(ctx, make_coupon):
    start = (utcnow() + timedelta(days=3)).isoformat()
    make_coupon("SOON", starts_at=start)
    assert validate_coupon("SOON", EMAIL, cart((1, "10", 1))).reason == "not_started"


def test_exhausted(ctx, make_coupon):
    make_coupon("ONCE", usage_limit=1, usage_count=1)
    result = validate_coupon("ONCE", EMAIL, cart((1, "10", 1)))
    assert (result.reason, result.message) == ("exhausted", "This coupon has reached its usage limit")


def test_fixed_amount_is_capped_at_order_total(ctx, make_coupon):
    make_coupon("TENOFF", discount_type="fixed_amount", discount_value=100)
    result = validate_coupon("TENOFF", EMAIL, cart((1, "40", 1)))
    assert result.discount_amount == Decimal("40")


def test_free_shipping(ctx, make_coupon):
    make_coupon("SHIP", discount_type="free_shipping")
    result = validate_coupon("SHIP", EMAIL, cart((1, "40", 1)))
    assert result.valid and result.free_shipping
    assert result.discount_amount == Decimal("0")
    assert result.message == "Free shipping applied"


def test_first_time_only(ctx, make_coupon, make_order):
    make_coupon("FIRST10", discount_type="fixed_amount", discount_value=10, first_time_only=True)
    assert validate_coupon("FIRST10", EMAIL, cart((1, "50", 1))).valid

    make_order(email=EMAIL)
    result = validate_coupon("FIRST10", EMAIL.upper(), cart((1, "50", 1)))
    assert (result.reason, result.message) == (
        "not_first_time", "This coupon is only valid for first-time customers"
    )


def test_cancelled_orders_do_not_count_as_purchases(ctx, make_coupon, make_order):
    make_coupon("FIRST10", discount_type="fixed_amount", discount_value=10, first_time_only=True)
    make_order(email=EMAIL, status="cancelled")
    assert validate_coupon("FIRST10", EMAIL, cart((1, "50", 1))).valid


def test_include_discounts_matching_lines_only(ctx, make_coupon, make_product):
    shoes, socks = make_product(price="50"), make_product(price="30")
    make_coupon("SHOES", product_ids=[shoes], is_product_specific=True, product_inclusion_type="include")

    result = validate_coupon("SHOES", EMAIL, cart((shoes, "50", 1), (socks, "30", 1)))
    assert result.valid
    assert result.discount_amount == Decimal("10")
    assert result.applicable_products == [shoes]

    miss = validate_coupon("SHOES", EMAIL, cart((socks, "30", 1)))
    assert miss.reason == "product_mismatch"


def test_exclude_rejects_cart_with_excluded_product(ctx, make_coupon, make_product):
    sale, regular = make_product(price="50"), make_product(price="30")
    make_coupon("NOSALE", product_ids=[sale], is_product_specific=True, product_inclusion_type="exclude")

    blocked = validate_coupon("NOSALE", EMAIL, cart((sale, "50", 1), (regular, "30", 1)))
    assert blocked.reason == "product_excluded"

    ok = validate_coupon("NOSALE", EMAIL, cart((regular, "30", 2)))
    assert ok.valid
    assert ok.discount_amount == Decimal("12")


@pytest.mark.parametrize(
    "code, email, snapshot",
    [
        ("", EMAIL, cart((1, "10", 1))),
        ("BAD CODE!", EMAIL, cart((1, "10", 1))),
        ("SAVE20", "", cart((1, "10", 1))),
        ("SAVE20", "not-an-email", cart((1, "10", 1))),
        ("SAVE20", EMAIL, None),
    ],
)
def test_invalid_input_never_reaches_the_store(ctx, monkeypatch, code, email, snapshot):
    def boom(_code):
        raise AssertionError("store should not be queried")

    monkeypatch.setattr(coupon_service, "_find_coupon_by_code", boom)
    result = validate_coupon(code, email, snapshot)
    assert (result.valid, result.reason) == (False, "invalid_input")


def test_store_failure_is_reported_as_unavailable(ctx, monkeypatch):
    def down(_code):
        raise OperationalError("SELECT", {}, Exception("database is locked"))

    monkeypatch.setattr(coupon_service, "_find_coupon_by_code", down)
    result = validate_coupon("SAVE20", EMAIL, cart((1, "10", 1)))
    assert result.reason == "unavailable"
    assert result.message == "Failed to validate coupon, please try again"
    assert "locked" not in result.message


def test_applicable_coupons_best_first(ctx, make_coupon):
    make_coupon("SAVE20")
    make_coupon("FIVE", discount_type="fixed_amount", discount_value=5)
    make_coupon("SHIP", discount_type="free_shipping")
    make_coupon("BIG", minimum_order_amount=1000)
    make_coupon("OFF", is_active=False)

    found = get_applicable_coupons(EMAIL, cart((1, "75", 2)))
    assert [c.code for c, _ in found] == ["SAVE20", "FIVE", "SHIP"]
    assert found[0][1].discount_amount == Decimal("30")
