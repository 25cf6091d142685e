from decimal import Decimal

import pytest

from storefront.models import CouponCreate

ADDRESS = {
    "full_name": "Ada Lovelace",
    "line1": "12 St James's Square",
    "city": "London",
    "postal_code": "SW1Y 4JH",
    "country": "GB",
}


def test_validate_valid_coupon(api, welcome10):
    response = api.get("/coupons/validate", params={"code": "welcome10", "subtotal": "110"})
    assert response.status_code == 200
    body = response.json()
    assert body["valid"] is True
    assert body["discount_amount"] == 11.0
    assert body["coupon"]["code"] == "WELCOME10"
    assert body["coupon"]["discount_rate"] == 10.0
    assert body["coupon"]["is_active"] is True


def test_validate_below_minimum(api, coupon_service):
    coupon_service.create_coupon(CouponCreate(code="BIG", discount_rate=Decimal("20"), min_subtotal=Decimal("150")))
    body = api.get("/coupons/validate", params={"code": "BIG", "subtotal": "110"}).json()
    assert body["valid"] is False
    assert body["reason"] == "BelowMinimum"
    assert "Add $40.00 more" in body["message"]
    assert "discount_amount" not in body


def test_validate_expired(api, coupon_service, yesterday):
    coupon_service.create_coupon(CouponCreate(code="OLD", discount_rate=Decimal("20"), expires_at=yesterday))
    body = api.get("/coupons/validate", params={"code": "OLD", "subtotal": "500"}).json()
    assert body == {"valid": False, "message": "Coupon has expired.", "reason": "Expired"}


def test_validate_unknown_code(api):
    body = api.get("/coupons/validate", params={"code": "NOPE", "subtotal": "10"}).json()
    assert body["valid"] is False
    assert body["message"] == "Invalid coupon code."


def test_validate_requires_code(api):
    response = api.get("/coupons/validate", params={"subtotal": "10"})
    assert response.status_code == 400
    assert response.json() == {"valid": False, "message": "Coupon code is required."}


def test_validate_rejects_oversized_subtotal(api, welcome10):
    response = api.get("/coupons/validate", params={"code": "WELCOME10", "subtotal": "1e30"})
    assert response.status_code == 422


def test_validate_is_idempotent(api, welcome10):
    params = {"code": "WELCOME10", "subtotal": "110"}
    assert api.get("/coupons/validate", params=params).json() == api.get("/coupons/validate", params=params).json()


def test_public_coupon_list(api, welcome10, coupon_service, tomorrow):
    coupon_service.create_coupon(CouponCreate(code="OFF", discount_rate=Decimal("5"), is_active=False))
    coupon_service.create_coupon(CouponCreate(code="SOON", discount_rate=Decimal("15"), expires_at=tomorrow))
    codes = sorted(c["code"] for c in api.get("/coupons").json())
    assert codes == ["SOON", "WELCOME10"]


def test_quote_preview(api, welcome10):
    body = api.post("/pricing/quote", json={
        "items": [
            {"product_id": "a", "unit_price": 60, "quantity": 1},
            {"product_id": "b", "unit_price": 50, "quantity": 1},
        ],
        "coupon_code": "welcome10",
    }).json()
    assert body["coupon_applied"] is True
    assert body["coupon_code"] == "WELCOME10"
    assert body["totals"] == {
        "subtotal": 110.0,
        "discount_amount": 11.0,
        "discounted_subtotal": 99.0,
        "shipping": 15.0,
        "tax": 9.12,
        "total": 123.12,
    }
    assert body["free_shipping_gap"] == 1.01


def test_quote_with_unknown_coupon(api):
    body = api.post("/pricing/quote", json={
        "items": [{"product_id": "a", "unit_price": 60, "quantity": 1}],
        "coupon_code": "nope",
    }).json()
    assert body["coupon_applied"] is False
    assert body["coupon_reason"] == "NotFound"
    assert body["totals"]["discount_amount"] == 0.0


def test_quote_rejects_duplicate_products(api):
    response = api.post("/pricing/quote", json={
        "items": [
            {"product_id": "a", "unit_price": 1, "quantity": 1},
            {"product_id": "a", "unit_price": 1, "quantity": 2},
        ],
    })
    assert response.status_code == 422


@pytest.mark.parametrize("line", [
    {"product_id": "a", "unit_price": "1e27", "quantity": 1},
    {"product_id": "a", "unit_price": "10", "quantity": 10**30},
])
def test_quote_rejects_oversized_lines(api, line):
    response = api.post("/pricing/quote", json={"items": [line]})
    assert response.status_code == 422


def test_cart_rejects_oversized_price(api):
    response = api.post(
        "/cart/items", json={"product_id": "a", "unit_price": "1e27", "quantity": 1}, headers={"X-Cart-ID": "c"}
    )
    assert response.status_code == 422


def test_cart_flow_and_totals(api, welcome10):
    headers = {"X-Cart-ID": "cart-1", "X-User-ID": "user-1"}
    assert api.post("/cart/items", json={"product_id": "a", "unit_price": "60", "quantity": 1}, headers=headers).status_code == 200
    api.post("/cart/items", json={"product_id": "b", "unit_price": "50", "quantity": 1}, headers=headers)

    cart = api.get("/cart", headers=headers).json()
    assert cart["total_items"] == 2
    assert cart["subtotal"] == 110.0

    totals = api.get("/cart/totals", params={"coupon_code": "WELCOME10"}, headers=headers).json()
    assert totals["totals"]["total"] == 123.12

    # dropping below the coupon's reach is recomputed, not cached
    api.patch("/cart/items/a", json={"quantity": 0}, headers=headers)
    totals = api.get("/cart/totals", params={"coupon_code": "WELCOME10"}, headers=headers).json()
    assert totals["totals"]["subtotal"] == 50.0
    assert totals["totals"]["discount_amount"] == 5.0


def test_missing_cart_reads_as_empty(api):
    body = api.get("/cart", headers={"X-Cart-ID": "fresh"}).json()
    assert body["items"] == []
    assert body["subtotal"] == 0.0


def test_remove_unknown_item_is_404(api):
    response = api.delete("/cart/items/ghost", headers={"X-Cart-ID": "c"})
    assert response.status_code == 404


def test_update_unknown_item_is_404(api):
    response = api.patch("/cart/items/ghost", json={"quantity": 2}, headers={"X-Cart-ID": "c"})
    assert response.status_code == 404


def test_quantity_limit_is_400(api):
    response = api.post(
        "/cart/items", json={"product_id": "a", "unit_price": "1", "quantity": 500}, headers={"X-Cart-ID": "c"}
    )
    assert response.status_code == 400


def test_checkout_ignores_client_totals(api, welcome10):
    headers = {"X-Cart-ID": "cart-9"}
    api.post("/cart/items", json={"product_id": "a", "unit_price": "60", "quantity": 1}, headers=headers)
    api.post("/cart/items", json={"product_id": "b", "unit_price": "50", "quantity": 1}, headers=headers)

    response = api.post("/orders/create-checkout-session", headers=headers, json={
        "items": [{"product_id": "a", "unit_price": 1, "quantity": 1}],
        "delivery_address": ADDRESS,
        "coupon_code": "welcome10",
        "client_totals": {"total": 1.0},
    })
    assert response.status_code == 200
    body = response.json()
    assert body["totals"]["total"] == 123.12
    assert body["coupon_code"] == "WELCOME10"
    assert body["adjustments"] == ["items", "total"]

    # cart is consumed
    assert api.get("/cart", headers=headers).json()["items"] == []


def test_checkout_of_empty_cart_is_400(api):
    response = api.post("/orders/create-checkout-session", headers={"X-Cart-ID": "empty"},
                        json={"delivery_address": ADDRESS})
    assert response.status_code == 400


def test_checkout_rejects_oversized_client_totals(api):
    headers = {"X-Cart-ID": "cart-big"}
    api.post("/cart/items", json={"product_id": "a", "unit_price": "60", "quantity": 1}, headers=headers)
    response = api.post("/orders/create-checkout-session", headers=headers, json={
        "delivery_address": ADDRESS,
        "client_totals": {"total": "1e30"},
    })
    assert response.status_code == 422


class TestAdmin:
    def test_requires_api_key(self, api):
        assert api.get("/admin/coupons").status_code == 401
        assert api.get("/admin/coupons", headers={"x-api-key": "wrong"}).status_code == 401

    def test_crud(self, api, admin_headers):
        created = api.post("/admin/coupons", headers=admin_headers, json={
            "code": "spring20", "discount_rate": 20, "min_subtotal": 40,
        })
        assert created.status_code == 201
        coupon = created.json()
        assert coupon["code"] == "SPRING20"

        listed = api.get("/admin/coupons", headers=admin_headers).json()
        assert [c["id"] for c in listed] == [coupon["id"]]

        patched = api.patch(f"/admin/coupons/{coupon['id']}", headers=admin_headers,
                            json={"discount_rate": 25}).json()
        assert patched["discount_rate"] == 25.0
        assert patched["min_subtotal"] == 40.0

        toggled = api.post(f"/admin/coupons/{coupon['id']}/toggle-active", headers=admin_headers).json()
        assert toggled["is_active"] is False

        deleted = api.delete(f"/admin/coupons/{coupon['id']}", headers=admin_headers)
        assert deleted.status_code == 200
        assert api.get(f"/admin/coupons/{coupon['id']}", headers=admin_headers).status_code == 404

        api.delete(f"/admin/coupons/{coupon['id']}", headers=admin_headers, params={"hard": "true"})
        assert api.get("/admin/coupons", headers=admin_headers, params={"include_deleted": "true"}).json() == []

    @pytest.mark.parametrize("body", [
        {"code": "X", "discount_rate": 0},
        {"code": "X", "discount_rate": 91},
        {"code": "X", "discount_rate": 10, "min_subtotal": -1},
        {"code": "X", "discount_rate": 10, "min_subtotal": 1e30},
        {"code": "   ", "discount_rate": 10},
        {"code": "TWO WORDS", "discount_rate": 10},
    ])
    def test_field_validation(self, api, admin_headers, body):
        assert api.post("/admin/coupons", headers=admin_headers, json=body).status_code == 422

    def test_duplicate_code_is_409(self, api, admin_headers, welcome10):
        response = api.post("/admin/coupons", headers=admin_headers, json={"code": "Welcome10", "discount_rate": 5})
        assert response.status_code == 409

    def test_unknown_coupon_is_404(self, api, admin_headers):
        assert api.patch("/admin/coupons/nope", headers=admin_headers, json={"is_active": False}).status_code == 404
