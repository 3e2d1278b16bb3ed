from sqlalchemy.exc import OperationalError

from storefront.extensions import db
from storefront.model import CouponProduct
from storefront.services import coupon_service


def _create(client, headers, **payload):
    body = {"code": "summer10", "discount_type": "percentage", "discount_value": 10, **payload}
    return client.post("/api/coupons", json=body, headers=headers)


# ---- auth ------------------------------------------------------------------

def test_admin_endpoints_need_a_token(client):
    r = client.get("/api/coupons")
    assert r.status_code == 401
    assert r.get_json()["status"] is False


def test_admin_endpoints_reject_customers(client, user_headers):
    r = client.post("/api/coupons", json={"code": "X"}, headers=user_headers)
    assert r.status_code == 403
    assert r.get_json()["message"] == "Admin access required"


# ---- crud ------------------------------------------------------------------

def test_create_coupon(client, admin_headers):
    r = _create(client, admin_headers, usage_count=99, minimum_order_amount="25.50")
    assert r.status_code == 201
    body = r.get_json()
    assert body["status"] is True
    coupon = body["data"]["coupon"]
    assert coupon["code"] == "SUMMER10"
    assert coupon["usage_count"] == 0
    assert coupon["minimum_order_amount"] == 25.5
    assert coupon["product_ids"] == []
    assert "API_TIME_HUMAN" in body["data"]


def test_duplicate_code_conflicts(client, admin_headers):
    _create(client, admin_headers)
    r = _create(client, admin_headers, code="Summer10")
    assert r.status_code == 409
    assert r.get_json()["message"] == "Coupon code already exists"


def test_invalid_payloads_are_422(client, admin_headers):
    assert _create(client, admin_headers, discount_type="bogo").status_code == 422
    assert _create(client, admin_headers, discount_value=150).status_code == 422
    assert _create(client, admin_headers, discount_value=-1).status_code == 422
    assert _create(client, admin_headers, usage_limit=0).status_code == 422
    r = _create(client, admin_headers, starts_at="2030-01-02T00:00:00Z", expires_at="2030-01-01T00:00:00Z")
    assert r.status_code == 422
    assert r.get_json()["message"] == "expires_at must be after starts_at"


def test_get_update_delete(client, admin_headers):
    cid = _create(client, admin_headers).get_json()["data"]["coupon"]["id"]

    r = client.get(f"/api/coupons/{cid}", headers=admin_headers)
    assert r.status_code == 200

    r = client.patch(f"/api/coupons/{cid}", json={"is_active": False, "usage_limit": 3}, headers=admin_headers)
    assert r.status_code == 200
    coupon = r.get_json()["data"]["coupon"]
    assert coupon["is_active"] is False
    assert coupon["usage_limit"] == 3
    assert coupon["discount_value"] == 10.0

    assert client.delete(f"/api/coupons/{cid}", headers=admin_headers).status_code == 200
    assert client.get(f"/api/coupons/{cid}", headers=admin_headers).status_code == 404


def test_unknown_coupon_is_404(client, admin_headers):
    r = client.get("/api/coupons/00000000-0000-0000-0000-000000000000", headers=admin_headers)
    assert r.status_code == 404


def test_delete_removes_product_bindings(app, client, admin_headers, make_product):
    pid = make_product()
    r = _create(client, admin_headers, is_product_specific=True, product_ids=[pid])
    cid = r.get_json()["data"]["coupon"]["id"]
    assert r.get_json()["data"]["coupon"]["product_ids"] == [pid]

    r = client.delete(f"/api/coupons/{cid}", headers=admin_headers)
    assert r.get_json()["data"]["product_bindings_removed"] == 1
    with app.app_context():
        assert db.session.query(CouponProduct).count() == 0


def test_list_filters_and_count(client, admin_headers):
    _create(client, admin_headers, code="SPRING", description="spring sale")
    _create(client, admin_headers, code="WINTER", is_active=False)
    _create(client, admin_headers, code="SHIPIT", discount_type="free_shipping")

    r = client.get("/api/coupons?status=inactive", headers=admin_headers)
    assert [c["code"] for c in r.get_json()["data"]["items"]] == ["WINTER"]

    r = client.get("/api/coupons?search=spring", headers=admin_headers)
    assert [c["code"] for c in r.get_json()["data"]["items"]] == ["SPRING"]

    r = client.get("/api/coupons?type=free_shipping", headers=admin_headers)
    assert [c["code"] for c in r.get_json()["data"]["items"]] == ["SHIPIT"]

    r = client.get("/api/coupons?sort_by=code&sort_order=asc&limit=2", headers=admin_headers)
    data = r.get_json()["data"]
    assert [c["code"] for c in data["items"]] == ["SHIPIT", "SPRING"]
    assert data["meta"]["total"] == 3

    r = client.get("/api/coupons/count?status=active", headers=admin_headers)
    assert r.get_json()["data"]["count"] == 2

    assert client.get("/api/coupons?type=bogo", headers=admin_headers).status_code == 422


# ---- product scope -----------------------------------------------------------

def test_product_scope(client, admin_headers, make_product):
    a, b, c = make_product(), make_product(), make_product()
    cid = _create(client, admin_headers).get_json()["data"]["coupon"]["id"]
    url = f"/api/coupons/{cid}/products"

    r = client.put(url, json={"product_ids": [a, b], "is_product_specific": True}, headers=admin_headers)
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert sorted(data["added"]) == [a, b]
    assert data["coupon"]["is_product_specific"] is True

    r = client.post(url, json={"product_ids": [b, c]}, headers=admin_headers)
    assert r.get_json()["data"]["added"] == [c]

    r = client.delete(url, json={"product_ids": [a]}, headers=admin_headers)
    assert r.get_json()["data"]["removed"] == [a]

    r = client.get(url, headers=admin_headers)
    assert [link["product_id"] for link in r.get_json()["data"]["items"]] == sorted([b, c])

    r = client.post(url, json={"product_ids": [9999]}, headers=admin_headers)
    assert r.status_code == 404

    r = client.put(url, json={"product_ids": [b], "product_inclusion_type": "sideways"}, headers=admin_headers)
    assert r.status_code == 422


def test_product_delete_unbinds_coupons(app, client, admin_headers, make_product, make_coupon):
    pid = make_product()
    make_coupon("SHOES", product_ids=[pid], is_product_specific=True)

    r = client.delete(f"/api/products/{pid}", headers=admin_headers)
    assert r.status_code == 200
    assert r.get_json()["data"]["coupon_bindings_removed"] == 1
    with app.app_context():
        assert db.session.query(CouponProduct).count() == 0


# ---- ledger and stats ----------------------------------------------------------

def test_manual_redemption_and_usage(client, admin_headers, make_coupon, make_order):
    cid = make_coupon("SAVE20", usage_limit=1)
    oid = make_order(discount_amount="20.00")
    url = f"/api/coupons/{cid}/redemptions"

    r = client.post(url, json={"order_id": oid}, headers=admin_headers)
    assert r.status_code == 200
    assert r.get_json()["data"]["coupon"]["usage_count"] == 1

    # same order again: idempotent
    r = client.post(url, json={"order_id": oid}, headers=admin_headers)
    assert r.status_code == 200
    assert r.get_json()["data"]["coupon"]["usage_count"] == 1

    # a different order hits the limit
    r = client.post(url, json={"order_id": make_order(email="b@example.com")}, headers=admin_headers)
    assert r.status_code == 409

    r = client.get(f"/api/coupons/{cid}/usage", headers=admin_headers)
    data = r.get_json()["data"]
    assert data["usage_count"] == 1
    assert [u["order_id"] for u in data["items"]] == [oid]
    assert data["items"][0]["discount_amount"] == 20.0

    assert client.post(url, json={"order_id": 424242}, headers=admin_headers).status_code == 404


def test_redemption_refused_when_order_used_another_coupon(client, admin_headers, make_coupon, make_order,
                                                           get_coupon):
    first, second = make_coupon("AAA"), make_coupon("BBB")
    oid = make_order()

    assert client.post(f"/api/coupons/{first}/redemptions", json={"order_id": oid},
                       headers=admin_headers).status_code == 200

    r = client.post(f"/api/coupons/{second}/redemptions", json={"order_id": oid}, headers=admin_headers)
    assert r.status_code == 409
    assert r.get_json()["status"] is False
    assert get_coupon(second).usage_count == 0
    assert get_coupon(first).usage_count == 1


def test_redemption_refused_for_order_placed_with_other_coupon(client, admin_headers, make_coupon, make_product,
                                                               get_coupon):
    pid = make_product(price="20.00")
    make_coupon("AAA")
    other = make_coupon("BBB")
    order = client.post("/api/checkout", json={
        "customer": {"name": "Dara", "email": "dara@example.com"},
        "items": [{"product_id": pid, "quantity": 1}],
        "coupon_code": "AAA",
    }).get_json()["data"]["order"]

    r = client.post(f"/api/coupons/{other}/redemptions", json={"order_id": order["id"]}, headers=admin_headers)
    assert r.status_code == 409
    assert r.get_json()["message"] == "Order was placed with a different coupon"
    assert get_coupon(other).usage_count == 0


def test_stats(client, admin_headers, make_coupon, make_order, make_product):
    cid = make_coupon("SAVE20")
    make_coupon("OFF", is_active=False, product_ids=[make_product()], is_product_specific=True)
    client.post(f"/api/coupons/{cid}/redemptions",
                json={"order_id": make_order(), "discount_amount": 12.5}, headers=admin_headers)

    r = client.get("/api/coupons/stats", headers=admin_headers)
    assert r.get_json()["data"] | {"API_TIME_HUMAN": None} == {
        "total_coupons": 2,
        "active_coupons": 1,
        "redeemed_coupons": 1,
        "product_specific_coupons": 1,
        "total_usage": 1,
        "total_discount_given": 12.5,
        "API_TIME_HUMAN": None,
    }


# ---- public endpoints ----------------------------------------------------------

def _validate(client, code, total="150.00", email="new@example.com"):
    return client.post("/api/coupons/validate", json={
        "code": code,
        "customer_email": email,
        "items": [{"product_id": 1, "unit_price": total, "quantity": 1}],
    })


def test_validate_endpoint(client, make_coupon):
    make_coupon("SAVE20")
    r = _validate(client, "save20")
    assert r.status_code == 200
    body = r.get_json()
    assert body["status"] is True
    assert body["data"]["valid"] is True
    assert body["data"]["discount_amount"] == 30.0
    assert body["data"]["reason"] == "ok"
    assert body["data"]["coupon_id"]


def test_validate_endpoint_rejection_is_200(client):
    r = _validate(client, "NOPE")
    assert r.status_code == 200
    body = r.get_json()
    assert body["status"] is False
    assert body["message"] == "Invalid coupon code"
    assert body["data"]["reason"] == "not_found"


def test_validate_endpoint_input_errors(client):
    r = client.post("/api/coupons/validate", json={"code": "SAVE20", "customer_email": "a@b.co"})
    assert r.status_code == 422
    assert r.get_json()["data"]["reason"] == "invalid_input"
    assert _validate(client, "SAVE20", email="nope").status_code == 422


def test_validate_endpoint_store_down(client, monkeypatch):
    def down(_code):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(coupon_service, "_find_coupon_by_code", down)
    r = _validate(client, "SAVE20")
    assert r.status_code == 503
    assert r.get_json()["message"] == "Failed to validate coupon, please try again"


def test_applicable_endpoint(client, make_coupon):
    make_coupon("SAVE20")
    make_coupon("BIG", minimum_order_amount=1000)
    r = client.post("/api/coupons/applicable", json={
        "customer_email": "new@example.com",
        "items": [{"product_id": 1, "unit_price": 75, "quantity": 2}],
    })
    assert r.status_code == 200
    items = r.get_json()["data"]["items"]
    assert [(c["code"], c["discount_amount"], c["label"]) for c in items] == [("SAVE20", 30.0, "20% OFF")]


def test_public_listings(client, make_coupon, make_product):
    make_coupon("SAVE20")
    make_coupon("FIRST10", discount_type="fixed_amount", discount_value=10, first_time_only=True)
    make_coupon("SHOES", product_ids=[make_product()], is_product_specific=True)
    make_coupon("OFF", is_active=False)
    make_coupon("OLD", starts_at="2020-01-01T00:00:00Z", expires_at="2020-02-01T00:00:00Z")

    codes = lambda r: sorted(c["code"] for c in r.get_json()["data"]["items"])  # noqa: E731
    assert codes(client.get("/api/coupons/available")) == ["FIRST10", "SAVE20", "SHOES"]
    assert codes(client.get("/api/coupons/first-time")) == ["FIRST10"]
    assert codes(client.get("/api/coupons/product-specific")) == ["SHOES"]

    labels = {c["code"]: c["label"] for c in client.get("/api/coupons/available").get_json()["data"]["items"]}
    assert labels["FIRST10"] == "$10 OFF"
