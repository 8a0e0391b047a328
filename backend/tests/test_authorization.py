"""
Authorization tests for the T VANAMM portal API.

Verifies:
- Unauthenticated requests return 401
- Buyers are denied staff operations (403)
- Staff can drive the order lifecycle
- Buyers only see their own orders
- Role permission table shape
"""

import pytest

from tvanamm.permissions import DEFAULT_ROLE_PERMISSIONS, Role, has_permission, permissions_for

from conftest import auth_headers, get_auth_token, give_points


def _headers(client, user):
    return auth_headers(get_auth_token(client, user.email))


def _checkout(client, headers, address, **extra):
    body = {"shipping_address": address}
    body.update(extra)
    return client.post("/api/orders", json=body, headers=headers)


# =============================================================================
# UNAUTHENTICATED ACCESS - 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/auth/me"),
            ("GET", "/api/cart"),
            ("POST", "/api/cart/items"),
            ("GET", "/api/orders"),
            ("POST", "/api/orders"),
            ("GET", "/api/orders/1"),
            ("POST", "/api/orders/1/confirm"),
            ("POST", "/api/orders/1/payment"),
            ("GET", "/api/loyalty/me"),
            ("POST", "/api/loyalty/adjust"),
            ("GET", "/api/loyalty/gifts"),
            ("POST", "/api/loyalty/gifts"),
            ("POST", "/api/invoices/orders/1"),
            ("GET", "/api/invoices/orders/1/html"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_health_is_public(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json["checks"]["database"]["status"] == "healthy"

    def test_invalid_token(self, client, db_session):
        resp = client.get("/api/auth/me", headers=auth_headers("not-a-token"))
        assert resp.status_code == 401


class TestLogin:

    def test_login_and_me(self, client, franchise):
        resp = client.post("/api/auth/login", json={"email": "PARTNER@tvanamm.local", "password": "Password123!"})
        assert resp.status_code == 200
        assert resp.json["user"]["tvanamm_id"] == "TV-0001"

        resp = client.get("/api/auth/me", headers=auth_headers(resp.json["token"]))
        assert resp.status_code == 200
        assert "PLACE_ORDER" in resp.json["permissions"]
        assert "CONFIRM_ORDER" not in resp.json["permissions"]
        categories = {p["code"]: p["category"] for p in resp.json["permission_details"]}
        assert categories["REDEEM_LOYALTY"] == "LOYALTY"

    def test_wrong_password(self, client, franchise):
        resp = client.post("/api/auth/login", json={"email": franchise.email, "password": "nope"})
        assert resp.status_code == 401

    def test_missing_fields(self, client, db_session):
        assert client.post("/api/auth/login", json={}).status_code == 400

    def test_logout_revokes_token(self, client, franchise):
        token = get_auth_token(client, franchise.email)
        assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401


# =============================================================================
# BUYER DENIED STAFF OPERATIONS - 403
# =============================================================================


class TestBuyerDeniedStaffOperations:

    @pytest.mark.parametrize(
        "method,path,body",
        [
            ("POST", "/api/orders/1/confirm", {}),
            ("PUT", "/api/orders/1/delivery-fee", {"delivery_fee": "40.00"}),
            ("POST", "/api/orders/1/status", {"status": "confirmed"}),
            ("POST", "/api/orders/1/packing/start", {}),
            ("POST", "/api/orders/1/ship", {"transport_company": "DTDC"}),
            ("POST", "/api/orders/1/cancel", {}),
            ("POST", "/api/orders/1/payment", {"status": "completed"}),
            ("POST", "/api/loyalty/adjust", {"user_id": 1, "points": 10, "description": "x"}),
            ("GET", "/api/loyalty/gifts", None),
            ("PATCH", "/api/loyalty/gifts/1", {"is_active": False}),
            ("POST", "/api/loyalty/gifts/1/stock", {"stock_quantity": 0, "reason": "x"}),
        ],
    )
    def test_forbidden(self, client, franchise, method, path, body):
        resp = getattr(client, method.lower())(path, json=body, headers=_headers(client, franchise))
        assert resp.status_code == 403


# =============================================================================
# ORDER API
# =============================================================================


class TestOrderApi:

    def test_checkout_from_session_cart(self, client, franchise, tea, biscuits, shipping_address):
        give_points(franchise.id, 100)
        headers = _headers(client, franchise)
        client.post("/api/cart/items", json={"product_id": tea.id, "quantity": 2}, headers=headers)
        client.post("/api/cart/items", json={"product_id": biscuits.id}, headers=headers)

        resp = _checkout(client, headers, shipping_address, loyalty_points=20)
        assert resp.status_code == 201
        order = resp.json["order"]
        assert order["status"] == "pending"
        assert order["final_amount"] == "268.50"
        assert len(order["items"]) == 2

        # Cart is emptied and a second checkout is blocked by the unpaid order
        assert client.get("/api/cart", headers=headers).json["cart"]["count"] == 0
        assert client.get("/api/orders/can-place", headers=headers).json["can_place"] is False
        resp = _checkout(client, headers, shipping_address, items=[{"product_id": tea.id}])
        assert resp.status_code == 409

    def test_empty_cart_checkout(self, client, franchise, shipping_address):
        resp = _checkout(client, _headers(client, franchise), shipping_address)
        assert resp.status_code == 400
        assert resp.json["error"] == "Cart is empty"

    def test_over_cap_checkout(self, client, franchise, tea, shipping_address):
        give_points(franchise.id, 1000)
        resp = _checkout(client, _headers(client, franchise), shipping_address,
                         items=[{"product_id": tea.id, "quantity": 1}], loyalty_points=36)
        assert resp.status_code == 400
        assert resp.json["details"]["max_redeemable"] == 35

    def test_staff_lifecycle(self, client, franchise, admin, tea, shipping_address):
        buyer = _headers(client, franchise)
        staff = _headers(client, admin)

        order_id = _checkout(client, buyer, shipping_address,
                             items=[{"product_id": tea.id, "quantity": 1}]).json["order"]["id"]

        resp = client.post(f"/api/orders/{order_id}/confirm", json={"delivery_fee": "40.00"}, headers=staff)
        assert resp.status_code == 200
        assert resp.json["order"]["final_amount"] == "158.00"

        resp = client.post(f"/api/orders/{order_id}/packing/start", headers=staff)
        assert resp.status_code == 409
        assert resp.json["current_state"] == {"status": "confirmed", "payment_status": "pending"}

        resp = client.post(f"/api/orders/{order_id}/payment",
                           json={"status": "completed", "payment_id": "pay_42"}, headers=staff)
        assert resp.status_code == 200
        assert resp.json["order"]["status"] == "payment_completed"

        resp = client.post(f"/api/orders/{order_id}/packing/start", headers=staff)
        assert resp.status_code == 200
        [item] = resp.json["order"]["packing_items"]

        resp = client.patch(f"/api/orders/{order_id}/packing/items/{item['id']}",
                            json={"is_packed": True}, headers=staff)
        assert resp.status_code == 200
        assert resp.json["packing_item"]["is_packed"] is True

        assert client.post(f"/api/orders/{order_id}/packing/complete", headers=staff).status_code == 200
        resp = client.post(f"/api/orders/{order_id}/ship", json={"transport_company": "DTDC"}, headers=staff)
        assert resp.status_code == 200

        resp = client.post(f"/api/orders/{order_id}/deliver", headers=buyer)
        assert resp.status_code == 200
        assert resp.json["order"]["status"] == "delivered"

        resp = client.get(f"/api/orders/{order_id}/events", headers=buyer)
        assert [e["to_status"] for e in resp.json["events"]][-1] == "delivered"

    def test_expected_status_conflict(self, client, franchise, admin, tea, shipping_address):
        order_id = _checkout(client, _headers(client, franchise), shipping_address,
                             items=[{"product_id": tea.id}]).json["order"]["id"]
        resp = client.post(f"/api/orders/{order_id}/status",
                           json={"status": "cancelled", "expected_status": "confirmed"},
                           headers=_headers(client, admin))
        assert resp.status_code == 409
        assert resp.json["current_state"]["status"] == "pending"

    def test_generic_status_rejects_bad_targets(self, client, franchise, admin, tea, shipping_address):
        order_id = _checkout(client, _headers(client, franchise), shipping_address,
                             items=[{"product_id": tea.id}]).json["order"]["id"]
        staff = _headers(client, admin)
        url = f"/api/orders/{order_id}/status"

        resp = client.post(url, json={"status": ["confirmed"]}, headers=staff)
        assert resp.status_code == 400
        assert resp.json["error"] == "status must be a string"

        resp = client.post(url, json={"status": "shipped"}, headers=staff)
        assert resp.status_code == 400
        assert f"/api/orders/{order_id}/ship" in resp.json["error"]

        resp = client.post(url, json={"status": "bogus"}, headers=staff)
        assert resp.status_code == 400
        assert "current_state" not in resp.json

        resp = client.post(url, json={"status": "confirmed", "notes": 7}, headers=staff)
        assert resp.status_code == 400

        resp = client.get(f"/api/orders/{order_id}", headers=staff)
        assert resp.json["order"]["status"] == "pending"

    def test_non_string_cancel_reason_and_payment_status(self, client, franchise, admin, tea, shipping_address):
        order_id = _checkout(client, _headers(client, franchise), shipping_address,
                             items=[{"product_id": tea.id}]).json["order"]["id"]
        staff = _headers(client, admin)

        resp = client.post(f"/api/orders/{order_id}/cancel", json={"reason": {"why": "late"}}, headers=staff)
        assert resp.status_code == 400
        assert resp.json["error"] == "reason must be a string"

        resp = client.post(f"/api/orders/{order_id}/payment", json={"status": ["completed"]}, headers=staff)
        assert resp.status_code == 400

        resp = client.post(f"/api/orders/{order_id}/ship", json={"transport_company": ["DTDC"]}, headers=staff)
        assert resp.status_code == 400

    def test_buyers_see_only_own_orders(self, client, franchise, customer, admin, tea, shipping_address):
        order_id = _checkout(client, _headers(client, franchise), shipping_address,
                             items=[{"product_id": tea.id}]).json["order"]["id"]

        other = _headers(client, customer)
        assert client.get(f"/api/orders/{order_id}", headers=other).status_code == 404
        assert client.get("/api/orders", headers=other).json["count"] == 0

        staff = _headers(client, admin)
        assert client.get(f"/api/orders/{order_id}", headers=staff).status_code == 200
        assert client.get("/api/orders", headers=staff).json["count"] == 1


# =============================================================================
# ROLE TABLE
# =============================================================================


class TestRolePermissions:

    def test_every_role_mapped(self):
        assert set(DEFAULT_ROLE_PERMISSIONS) == set(Role)

    def test_owner_has_everything_admin_cannot_adjust_points(self):
        assert has_permission("owner", "ADJUST_LOYALTY")
        assert not has_permission("admin", "ADJUST_LOYALTY")
        assert has_permission("admin", "CONFIRM_ORDER")
        assert has_permission("admin", "MANAGE_LOYALTY_GIFTS")

    @pytest.mark.parametrize("role", ["franchise", "customer"])
    def test_buyers(self, role):
        perms = permissions_for(role)
        assert "PLACE_ORDER" in perms
        assert "REDEEM_LOYALTY" in perms
        assert "VIEW_ALL_ORDERS" not in perms
        assert "MANAGE_FULFILLMENT" not in perms
        assert "MANAGE_LOYALTY_GIFTS" not in perms

    def test_unknown_role(self):
        with pytest.raises(ValueError):
            permissions_for("cashier")
