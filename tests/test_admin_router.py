"""Integration tests for /admin endpoints (app/routers/admin_orders.py, app/routers/admin_users.py)"""
import pytest

from app.models.order import Order, OrderStatus, PaymentProviderName
from app.models.project import Project


@pytest.fixture
def admin_client(sqlite_client, make_user, login_as, admin_allowlist):
    client, db, provider = sqlite_client
    admin = make_user("admin@test.com", display_name="Admin")
    login_as(admin)
    return client, db, admin


def _order(db, status=OrderStatus.PENDING, amount=15000, session_id="cs_1", user_id=None, position=None):
    order = Order(
        provider=PaymentProviderName.STRIPE,
        provider_session_id=session_id,
        amount=amount,
        status=status,
        user_id=user_id,
        hall_of_fame_position=position,
    )
    db.add(order)
    db.commit()
    db.refresh(order)
    return order


class TestAdminAccess:
    def test_unauthenticated_is_401(self, unauthenticated_client):
        client, _ = unauthenticated_client
        assert client.get("/admin/orders").status_code == 401

    def test_non_admin_is_403(self, client_with_customer, admin_allowlist):
        client, _, _ = client_with_customer
        assert client.get("/admin/orders").status_code == 403
        assert client.get("/admin/users").status_code == 403

    def test_allowlist_is_case_insensitive(self, client_with_customer, monkeypatch):
        from app.config import settings

        client, mock_db, mock_customer = client_with_customer
        monkeypatch.setattr(settings, "admin_emails", " Buyer@Test.com , other@test.com")
        mock_db.order_by.return_value.offset.return_value.limit.return_value.all.return_value = []

        assert client.get("/admin/orders").status_code == 200


class TestListOrders:
    def test_filters_by_status(self, admin_client):
        client, db, _ = admin_client
        pending = _order(db, session_id="cs_p")
        _order(db, status=OrderStatus.COMPLETED, session_id="cs_c")

        response = client.get("/admin/orders", params={"status": "pending"})

        assert response.status_code == 200
        assert [o["id"] for o in response.json()] == [pending.id]

    def test_invalid_status_filter(self, admin_client):
        client, _, _ = admin_client
        assert client.get("/admin/orders", params={"status": "refunded"}).status_code == 422


class TestUpdateOrderStatus:
    def test_completing_assigns_position(self, admin_client):
        client, db, _ = admin_client
        order = _order(db)

        response = client.post(f"/admin/orders/{order.id}/status", json={"status": "completed"})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "completed"
        assert data["hallOfFamePosition"] == 2
        assert data["completedAt"] is not None

    def test_completing_full_band_leaves_position_empty(self, admin_client):
        client, db, _ = admin_client
        _order(db, status=OrderStatus.COMPLETED, amount=30000, session_id="cs_holder", position=1)
        order = _order(db, amount=30000, session_id="cs_2")

        response = client.post(f"/admin/orders/{order.id}/status", json={"status": "completed"})

        assert response.status_code == 200
        assert response.json()["hallOfFamePosition"] is None

    def test_mark_failed(self, admin_client):
        client, db, _ = admin_client
        order = _order(db)

        response = client.post(f"/admin/orders/{order.id}/status", json={"status": "failed"})

        assert response.json()["status"] == "failed"
        assert response.json()["hallOfFamePosition"] is None

    def test_cannot_go_back_to_pending(self, admin_client):
        client, db, _ = admin_client
        order = _order(db, status=OrderStatus.COMPLETED, position=3)

        response = client.post(f"/admin/orders/{order.id}/status", json={"status": "pending"})

        assert response.status_code == 409
        db.refresh(order)
        assert order.status == OrderStatus.COMPLETED
        assert order.hall_of_fame_position == 3

    def test_unknown_order(self, admin_client):
        client, _, _ = admin_client
        response = client.post("/admin/orders/999/status", json={"status": "completed"})
        assert response.status_code == 404


class TestProjects:
    def test_create_and_list(self, admin_client):
        client, _, _ = admin_client

        created = client.post("/admin/projects", json={"name": "Catdo", "liveUrl": "https://catdo.test"})
        listed = client.get("/admin/projects")

        assert created.status_code == 201
        assert created.json()["liveUrl"] == "https://catdo.test"
        assert [p["name"] for p in listed.json()] == ["Catdo"]

    def test_link_and_detach_project(self, admin_client):
        client, db, _ = admin_client
        order = _order(db, status=OrderStatus.COMPLETED, position=2)
        project = Project(name="Catdo")
        db.add(project)
        db.commit()

        linked = client.post(f"/admin/orders/{order.id}/project", json={"projectId": project.id})
        detached = client.post(f"/admin/orders/{order.id}/project", json={"projectId": None})

        assert linked.json()["projectId"] == project.id
        assert detached.json()["projectId"] is None

    def test_link_unknown_project(self, admin_client):
        client, db, _ = admin_client
        order = _order(db)

        response = client.post(f"/admin/orders/{order.id}/project", json={"projectId": 42})

        assert response.status_code == 404


class TestAdminUsers:
    def test_lists_users_with_order_counts(self, admin_client, make_user):
        client, db, admin = admin_client
        buyer = make_user("buyer@test.com", display_name="Buyer")
        _order(db, status=OrderStatus.COMPLETED, user_id=buyer.id, session_id="cs_a", position=2)
        _order(db, status=OrderStatus.PENDING, user_id=buyer.id, session_id="cs_b")

        response = client.get("/admin/users")

        assert response.status_code == 200
        users = {u["email"]: u for u in response.json()["users"]}
        assert users["buyer@test.com"]["orderCount"] == 2
        assert users["buyer@test.com"]["completedOrderCount"] == 1
        assert users["admin@test.com"]["orderCount"] == 0
        assert users["admin@test.com"]["completedOrderCount"] == 0
        assert users["admin@test.com"]["emailVerified"] is True

    def test_search(self, admin_client, make_user):
        client, _, _ = admin_client
        make_user("buyer@test.com", display_name="Buyer")

        response = client.get("/admin/users", params={"search": "buy"})

        assert [u["email"] for u in response.json()["users"]] == ["buyer@test.com"]

    def test_user_email(self, admin_client, make_user):
        client, _, _ = admin_client
        buyer = make_user("buyer@test.com")

        response = client.get(f"/admin/users/{buyer.id}/email")

        assert response.json() == {"email": "buyer@test.com"}

    def test_user_email_not_found(self, admin_client):
        client, _, _ = admin_client
        assert client.get("/admin/users/999/email").status_code == 404

    def test_verify_email_links_guest_orders(self, admin_client, make_user):
        client, db, _ = admin_client
        order = Order(
            provider=PaymentProviderName.STRIPE,
            provider_payment_id="pi_guest",
            amount=15000,
            status=OrderStatus.COMPLETED,
            payer_email="buyer@test.com",
        )
        db.add(order)
        db.commit()
        buyer = make_user("buyer@test.com", verified=False)

        response = client.post(f"/admin/users/{buyer.id}/verify-email")

        assert response.status_code == 200
        assert response.json()["orders_linked"] == 1
        db.refresh(buyer)
        db.refresh(order)
        assert buyer.email_verified is True
        assert buyer.email_verified_at is not None
        assert order.user_id == buyer.id

    def test_verify_email_unknown_user(self, admin_client):
        client, _, _ = admin_client
        assert client.post("/admin/users/999/verify-email").status_code == 404
