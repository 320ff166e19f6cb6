"""
API tests for the admin surface: bootstrap, role grants, order dashboard,
export and manual reconciliation.
"""
from io import BytesIO

import pytest
from openpyxl import load_workbook

from config import settings
from domain.errors import PaymentGatewayError
from tests.conftest import gateway_status


class TestBootstrap:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_first_user_becomes_admin(self, client, user, auth_headers):
        response = await client.post("/admin/bootstrap", headers=auth_headers(user))
        assert response.status_code == 200
        assert response.json()["data"]["role"] == "admin"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_only_once(self, client, admin_user, user, auth_headers):
        response = await client.post("/admin/bootstrap", headers=auth_headers(user))
        assert response.status_code == 403
        assert response.json()["error"]["code"] == "permissiondenied"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_requires_sign_in(self, client):
        response = await client.post("/admin/bootstrap")
        assert response.status_code == 401


class TestGrantRole:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_no_admin_yet(self, client, user, auth_headers):
        response = await client.post(
            "/admin/grant-role", json={"userId": user.id, "role": "admin"}, headers=auth_headers(user),
        )
        assert response.status_code == 403
        assert response.json()["error"]["message"].startswith("No admin exists yet")

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_admin_grants(self, client, admin_user, user, auth_headers):
        response = await client.post(
            "/admin/grant-role", json={"userId": user.id, "role": "admin"}, headers=auth_headers(admin_user),
        )
        assert response.status_code == 200
        assert response.json()["data"]["role"] == "admin"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_regular_user_cannot_grant(self, client, admin_user, user, auth_headers):
        response = await client.post(
            "/admin/grant-role", json={"userId": user.id, "role": "admin"}, headers=auth_headers(user),
        )
        assert response.status_code == 403
        assert response.json()["error"]["message"] == "Admin access required"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_unknown_role(self, client, admin_user, user, auth_headers):
        response = await client.post(
            "/admin/grant-role", json={"userId": user.id, "role": "owner"}, headers=auth_headers(admin_user),
        )
        assert response.status_code == 422


class TestOrderDashboard:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_anonymous(self, client):
        response = await client.get("/admin/orders")
        assert response.status_code == 401

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_regular_user(self, client, user, auth_headers):
        response = await client.get("/admin/orders", headers=auth_headers(user))
        assert response.status_code == 403

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_list_filter_and_search(self, client, admin_user, user, make_order, auth_headers):
        await make_order(user, merchant_order_id="CPPAID00001", state="COMPLETED")
        await make_order(user, merchant_order_id="CPOPEN00001")
        headers = auth_headers(admin_user)

        response = await client.get("/admin/orders?state=completed", headers=headers)
        body = response.json()
        assert [o["merchantOrderId"] for o in body["data"]] == ["CPPAID00001"]
        assert body["meta"]["total"] == 1

        response = await client.get("/admin/orders?q=OPEN", headers=headers)
        assert [o["merchantOrderId"] for o in response.json()["data"]] == ["CPOPEN00001"]

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_admin_key(self, client, make_order, monkeypatch):
        monkeypatch.setattr(settings, "admin_orders_key", "legacy-key")
        await make_order()
        response = await client.get("/admin/orders", headers={"X-Admin-Key": "legacy-key"})
        assert response.status_code == 200
        assert response.json()["meta"]["total"] == 1

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_detail(self, client, admin_user, user, make_order, auth_headers):
        order = await make_order(user)
        response = await client.get(f"/admin/orders/{order.merchant_order_id}", headers=auth_headers(admin_user))
        data = response.json()["data"]
        assert data["id"] == order.id
        assert data["events"] == []
        assert data["reconcileAttempts"] == 0
        assert data["lastReconciledAt"] is None

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_detail_unknown(self, client, admin_user, auth_headers):
        response = await client.get("/admin/orders/CPNOPE00001", headers=auth_headers(admin_user))
        assert response.status_code == 404

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_export(self, client, admin_user, user, make_order, auth_headers):
        await make_order(user, state="COMPLETED")

        response = await client.get("/admin/orders/export", headers=auth_headers(admin_user))

        assert response.status_code == 200
        assert response.headers["content-type"] == (
            "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )
        assert 'filename="orders-' in response.headers["content-disposition"]
        sheet = load_workbook(BytesIO(response.content)).active
        assert sheet.max_row == 2


class TestReconcile:

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_manual_reconcile(self, client, admin_user, user, make_order, auth_headers, fake_phonepe):
        order = await make_order(user)

        response = await client.post(f"/admin/orders/{order.id}/reconcile", headers=auth_headers(admin_user))

        data = response.json()["data"]
        assert data["previous"] == "PENDING"
        assert data["current"] == "COMPLETED"
        assert data["order"]["paymentState"] == "COMPLETED"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_still_pending(self, client, admin_user, user, make_order, auth_headers, fake_phonepe):
        order = await make_order(user)
        fake_phonepe.get_order_status.return_value = gateway_status("PENDING")

        response = await client.post(f"/admin/orders/{order.id}/reconcile", headers=auth_headers(admin_user))

        assert response.json()["data"]["current"] == "PENDING"

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_gateway_error_counts_attempt(self, client, admin_user, user, make_order, auth_headers, fake_phonepe):
        order = await make_order(user)
        fake_phonepe.get_order_status.side_effect = PaymentGatewayError("PhonePe status check failed")

        response = await client.post(f"/admin/orders/{order.id}/reconcile", headers=auth_headers(admin_user))

        assert response.status_code == 502
        assert order.reconcile_attempts == 1

    @pytest.mark.api
    @pytest.mark.asyncio
    async def test_status(self, client, admin_user, auth_headers):
        response = await client.get("/admin/reconciler/status", headers=auth_headers(admin_user))
        data = response.json()["data"]
        assert data["running"] is False
        assert data["maxReconcileAttempts"] == 10
