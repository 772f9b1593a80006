"""
Authorization tests for the car parts API.

Verifies:
- Unauthenticated requests return 401
- General users are denied admin operations (403)
- Admins are denied superadmin operations (403)
- Cost price is hidden from everyone but superadmins
"""

import pytest


# =============================================================================
# UNAUTHENTICATED ACCESS (401)
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without a token."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/parts"),
            ("GET", "/api/parts/available"),
            ("GET", "/api/parts/1"),
            ("POST", "/api/parts"),
            ("PATCH", "/api/parts/1"),
            ("PATCH", "/api/parts/1/sell"),
            ("POST", "/api/sales"),
            ("GET", "/api/bills"),
            ("GET", "/api/bills/1"),
            ("PUT", "/api/bills/1"),
            ("POST", "/api/bills/1/refund"),
            ("GET", "/api/bills/1/refunds"),
            ("GET", "/api/reservations"),
            ("POST", "/api/reservations"),
            ("POST", "/api/reservations/1/complete"),
            ("POST", "/api/reservations/1/cancel"),
            ("GET", "/api/users"),
            ("GET", "/api/audit-logs"),
            ("GET", "/api/stock-movements"),
            ("GET", "/api/auth/me"),
            ("POST", "/api/auth/logout"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_garbage_token(self, client, db_session):
        resp = client.get("/api/parts", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401


# =============================================================================
# GENERAL USER DENIED ADMIN OPERATIONS (403)
# =============================================================================


class TestGeneralDenied:
    """General role cannot perform admin operations."""

    def test_cannot_edit_part(self, client, general_headers, make_part):
        part = make_part()
        resp = client.patch(f"/api/parts/{part.id}", json={"name": "X"}, headers=general_headers)
        assert resp.status_code == 403
        assert resp.get_json()["required_role"] == "admin"

    def test_cannot_edit_bill(self, client, general_headers):
        resp = client.put("/api/bills/1", json={"customer_name": "X"}, headers=general_headers)
        assert resp.status_code == 403

    def test_cannot_refund(self, client, general_headers):
        resp = client.post(
            "/api/bills/1/refund",
            json={"refund_type": "full", "refund_reason": "x"},
            headers=general_headers,
        )
        assert resp.status_code == 403

    def test_cannot_list_users(self, client, general_headers):
        resp = client.get("/api/users", headers=general_headers)
        assert resp.status_code == 403

    def test_cannot_view_stock_movements(self, client, general_headers):
        resp = client.get("/api/stock-movements", headers=general_headers)
        assert resp.status_code == 403

    def test_cannot_set_cost_price(self, client, general_headers):
        resp = client.post(
            "/api/parts",
            json={"name": "Clutch", "manufacturer": "Valeo", "cost_price_cents": 100},
            headers=general_headers,
        )
        assert resp.status_code == 403
        assert resp.get_json()["code"] == "permission_denied"


# =============================================================================
# ADMIN DENIED SUPERADMIN OPERATIONS (403)
# =============================================================================


class TestAdminDenied:

    def test_cannot_read_audit_log(self, client, admin_headers):
        resp = client.get("/api/audit-logs", headers=admin_headers)
        assert resp.status_code == 403

    def test_cannot_set_cost_price(self, client, admin_headers, make_part):
        part = make_part()
        resp = client.patch(
            f"/api/parts/{part.id}", json={"cost_price_cents": 1}, headers=admin_headers
        )
        assert resp.status_code == 403

    def test_can_list_users_and_movements(self, client, admin_headers):
        assert client.get("/api/users", headers=admin_headers).status_code == 200
        assert client.get("/api/stock-movements", headers=admin_headers).status_code == 200


# =============================================================================
# COST PRICE VISIBILITY
# =============================================================================


class TestCostPriceVisibility:

    def test_hidden_from_general_and_admin(self, client, general_headers, admin_headers, make_part):
        part = make_part(cost_price_cents=700)
        for headers in (general_headers, admin_headers):
            body = client.get(f"/api/parts/{part.id}", headers=headers).get_json()
            assert "cost_price_cents" not in body["part"]
            listing = client.get("/api/parts", headers=headers).get_json()
            assert all("cost_price_cents" not in p for p in listing["parts"])

    def test_visible_to_superadmin(self, client, superadmin_headers, make_part):
        part = make_part(cost_price_cents=700)
        body = client.get(f"/api/parts/{part.id}", headers=superadmin_headers).get_json()
        assert body["part"]["cost_price_cents"] == 700


# =============================================================================
# PUBLIC ENDPOINTS (NO AUTH REQUIRED)
# =============================================================================


class TestPublicEndpoints:
    """Banner and health endpoints are public."""

    def test_banner(self, client, db_session):
        resp = client.get("/")
        assert resp.status_code == 200
        assert resp.get_json()["service"] == "carparts"

    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["timestamp"].endswith("Z")
