"""
POS API tests.

Verifies:
- Unauthenticated and non-staff requests return 401
- Quote, checkout, history and void flows over HTTP
- Rejections map to 400/409 with a reason code
"""

import pytest

from gympos.extensions import db
from gympos.models import InventoryItem, Profile, Transaction
from gympos.services.cart_service import Cart


def stock_of(item_id):
    db.session.expire_all()
    return db.session.get(InventoryItem, item_id).stock


def goods_payload(item, quantity=1, **extra):
    cart = Cart()
    cart.add_catalog_item(item)
    if quantity > 1:
        cart.adjust_quantity(item.id, "INVENTORY", quantity - 1)
    payload = cart.to_payload()
    payload.update(extra)
    return payload


# =============================================================================
# AUTH - 401 / 403
# =============================================================================


class TestAuth:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("POST", "/api/pos/quote"),
            ("POST", "/api/pos/checkout"),
            ("GET", "/api/pos/transactions"),
            ("GET", "/api/pos/transactions/1"),
            ("POST", "/api/pos/transactions/1/void"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_unknown_token(self, client, db_session):
        resp = client.get("/api/pos/transactions", headers={"Authorization": "Bearer not-a-token"})
        assert resp.status_code == 401

    def test_member_token_rejected(self, client, member_headers):
        resp = client.get("/api/pos/transactions", headers=member_headers)
        assert resp.status_code == 401

    def test_permission_denied(self, client, db_session, cashier, cashier_headers, monkeypatch):
        from gympos import permissions
        monkeypatch.setitem(permissions.DEFAULT_ROLE_PERMISSIONS, "cashier", ["CHECKOUT_SALE"])

        resp = client.get("/api/pos/transactions", headers=cashier_headers)
        assert resp.status_code == 403
        assert resp.get_json()["required_permission"] == "VIEW_TRANSACTIONS"

    def test_health_is_public(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["checks"]["database"]["status"] == "healthy"


# =============================================================================
# QUOTE / CHECKOUT
# =============================================================================


class TestCheckoutRoutes:

    def test_quote(self, client, item, cashier_headers):
        resp = client.post("/api/pos/quote", json=goods_payload(item, quantity=2, discount_percent=10),
                           headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["totals"]["total_cents"] == 1944
        assert stock_of(item.id) == 10

    def test_quote_bad_payload(self, client, db_session, cashier_headers):
        resp = client.post("/api/pos/quote", json={"lines": "nope"}, headers=cashier_headers)
        assert resp.status_code == 400

    def test_checkout(self, client, item, cashier, cashier_headers):
        payload = goods_payload(item, quantity=2, discount_percent=10, payment_method="Card")
        payload["total_cents"] = 1

        resp = client.post("/api/pos/checkout", json=payload, headers=cashier_headers)

        assert resp.status_code == 201
        tx = resp.get_json()["transaction"]
        assert tx["total_cents"] == 1944
        assert tx["payment_method"] == "Card"
        assert tx["sale_type"] == "GOODS_SALE"
        assert tx["created_by_profile_id"] == cashier.id
        assert [line["quantity"] for line in tx["lines"]] == [2]
        assert stock_of(item.id) == 8

    def test_checkout_membership(self, client, plan, giveaway_item, member, cashier_headers):
        cart = Cart()
        cart.add_membership_line(plan, giveaway_item)
        cart.select_customer(member.member_code)

        resp = client.post("/api/pos/checkout", json=cart.to_payload(), headers=cashier_headers)

        assert resp.status_code == 201
        tx = resp.get_json()["transaction"]
        assert tx["sale_type"] == "MEMBERSHIP_SALE"
        assert tx["member_ref"] == "M001"
        assert tx["tax_cents"] == 0
        db.session.expire_all()
        assert db.session.get(Profile, member.id).status == "Active"
        assert stock_of(giveaway_item.id) == 9

    def test_missing_payment_method_uses_configured_default(self, app, client, item, cashier_headers, monkeypatch):
        monkeypatch.setitem(app.config, "DEFAULT_PAYMENT_METHOD", "Card")
        payload = goods_payload(item)
        del payload["payment_method"]

        resp = client.post("/api/pos/checkout", json=payload, headers=cashier_headers)

        assert resp.status_code == 201
        assert resp.get_json()["transaction"]["payment_method"] == "Card"

    def test_cashier_override_rejected(self, client, shirt, cashier_headers):
        payload = goods_payload(shirt)
        payload["lines"][0]["unit_price_paid_cents"] = 1500

        resp = client.post("/api/pos/checkout", json=payload, headers=cashier_headers)

        assert resp.status_code == 400
        assert resp.get_json()["reason"] == "PRICE_OVERRIDE_FORBIDDEN"
        assert stock_of(shirt.id) == 5
        assert db.session.query(Transaction).count() == 0

    def test_manager_override_accepted(self, client, shirt, manager_headers):
        payload = goods_payload(shirt)
        payload["lines"][0]["unit_price_paid_cents"] = 1500

        resp = client.post("/api/pos/checkout", json=payload, headers=manager_headers)

        assert resp.status_code == 201
        assert resp.get_json()["transaction"]["subtotal_cents"] == 1500

    def test_insufficient_stock_is_conflict(self, client, db_session, item, cashier_headers):
        payload = goods_payload(item, quantity=3)
        item.stock = 2
        db_session.commit()

        resp = client.post("/api/pos/checkout", json=payload, headers=cashier_headers)

        assert resp.status_code == 409
        body = resp.get_json()
        assert body["reason"] == "INSUFFICIENT_STOCK"
        assert body["details"]["items"][0]["stock"] == 2

    def test_empty_cart(self, client, db_session, cashier_headers):
        resp = client.post("/api/pos/checkout", json={"lines": []}, headers=cashier_headers)
        assert resp.status_code == 400
        assert resp.get_json()["reason"] == "EMPTY_CART"

    def test_malformed_body(self, client, db_session, cashier_headers):
        resp = client.post("/api/pos/checkout", data="not json", headers=cashier_headers)
        assert resp.status_code == 400


# =============================================================================
# HISTORY / VOID
# =============================================================================


class TestTransactionRoutes:

    def _sell(self, client, item, headers, quantity=1):
        resp = client.post("/api/pos/checkout", json=goods_payload(item, quantity=quantity), headers=headers)
        assert resp.status_code == 201
        return resp.get_json()["transaction"]["id"]

    def test_list_and_get(self, client, item, cashier_headers):
        first = self._sell(client, item, cashier_headers)
        second = self._sell(client, item, cashier_headers, quantity=2)

        resp = client.get("/api/pos/transactions?limit=10", headers=cashier_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["count"] == 2
        assert [tx["id"] for tx in body["transactions"]] == [second, first]
        assert "lines" not in body["transactions"][0]

        resp = client.get(f"/api/pos/transactions/{first}", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.get_json()["transaction"]["lines"][0]["name"] == "Protein Bar"

    def test_get_missing(self, client, db_session, cashier_headers):
        resp = client.get("/api/pos/transactions/999999", headers=cashier_headers)
        assert resp.status_code == 404

    @pytest.mark.parametrize("query", ["limit=0", "limit=-5", "since=yesterday"])
    def test_bad_list_filters(self, client, db_session, cashier_headers, query):
        resp = client.get(f"/api/pos/transactions?{query}", headers=cashier_headers)
        assert resp.status_code == 400

    def test_void(self, client, item, cashier_headers):
        tx_id = self._sell(client, item, cashier_headers, quantity=3)
        assert stock_of(item.id) == 7

        resp = client.post(f"/api/pos/transactions/{tx_id}/void", headers=cashier_headers)
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["success"] is True
        assert body["requires_manual_membership_reversal"] is False
        assert stock_of(item.id) == 10

        resp = client.post(f"/api/pos/transactions/{tx_id}/void", headers=cashier_headers)
        assert resp.status_code == 404
        assert resp.get_json()["reason"] == "NOT_FOUND"
        assert stock_of(item.id) == 10
