from datetime import timedelta

from agrimarket.models.user import UserRole
from agrimarket.services.auth import AuthService

from conftest import PASSWORD, auth_headers, make_user


def _register(client, **overrides):
    payload = {
        "name": "Asha Rao",
        "email": "asha@example.com",
        "password": "secret123",
        "role": "buyer",
        "address": "14 Lotus Road, Bengaluru",
    }
    payload.update(overrides)
    return client.post("/api/v1/auth/register", json=payload)


class TestRegisterAndLogin:
    def test_register_returns_user_and_token(self, client):
        response = _register(client)
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        assert body["data"]["user"]["role"] == "buyer"
        assert body["data"]["token"]

    def test_register_farmer_creates_profile(self, client):
        response = _register(client, email="farm@example.com", role="farmer")
        token = response.json()["data"]["token"]

        profile = client.get("/api/v1/farmer/profile", headers={"Authorization": f"Bearer {token}"})
        assert profile.status_code == 200
        assert profile.json()["data"]["farmerId"] == response.json()["data"]["user"]["id"]

    def test_duplicate_email_is_a_conflict(self, client):
        _register(client)
        response = _register(client, email="ASHA@example.com")
        assert response.status_code == 409
        assert response.json()["field"] == "email"

    def test_admin_cannot_self_register(self, client):
        assert _register(client, role="admin").status_code == 403

    def test_short_password_reports_field(self, client):
        response = _register(client, password="123")
        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["field"] == "password"

    def test_login(self, client, session):
        user = make_user(session)
        response = client.post("/api/v1/auth/login", json={"email": user.email, "password": PASSWORD})
        assert response.status_code == 200
        assert response.json()["data"]["user"]["id"] == user.id

    def test_wrong_password(self, client, session):
        user = make_user(session)
        response = client.post("/api/v1/auth/login", json={"email": user.email, "password": "nope-nope"})
        assert response.status_code == 401

    def test_suspended_account_cannot_login(self, client, session):
        user = make_user(session, is_active=False)
        response = client.post("/api/v1/auth/login", json={"email": user.email, "password": PASSWORD})
        assert response.status_code == 403


class TestTokens:
    def test_missing_token(self, client):
        response = client.get("/api/v1/auth/profile")
        assert response.status_code == 401
        assert response.json()["success"] is False

    def test_garbage_token(self, client):
        response = client.get("/api/v1/auth/profile", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_expired_token(self, client, session, buyer):
        token = AuthService(session).create_access_token(buyer, expires_delta=timedelta(minutes=-1))
        response = client.get("/api/v1/auth/profile", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_suspended_user_token(self, client, session):
        user = make_user(session)
        headers = auth_headers(session, user)
        user.is_active = False
        session.add(user)
        session.commit()

        assert client.get("/api/v1/auth/profile", headers=headers).status_code == 403

    def test_wrong_role(self, client, session, buyer):
        response = client.get("/api/v1/farmer/products", headers=auth_headers(session, buyer))
        assert response.status_code == 403

    def test_role_comes_from_the_stored_user(self, client, session):
        user = make_user(session, UserRole.FARMER)
        headers = auth_headers(session, user)
        user.role = UserRole.BUYER
        session.add(user)
        session.commit()

        assert client.get("/api/v1/farmer/products", headers=headers).status_code == 403


class TestProfile:
    def test_update_profile_and_change_password(self, client, session, buyer):
        headers = auth_headers(session, buyer)
        response = client.put("/api/v1/auth/profile", json={"phone": "9876543210"}, headers=headers)
        assert response.json()["data"]["phone"] == "9876543210"

        bad = client.post(
            "/api/v1/auth/change-password",
            json={"currentPassword": "wrong-one", "newPassword": "brandnew1"},
            headers=headers,
        )
        assert bad.status_code == 400
        assert bad.json()["field"] == "currentPassword"

        ok = client.post(
            "/api/v1/auth/change-password",
            json={"currentPassword": PASSWORD, "newPassword": "brandnew1"},
            headers=headers,
        )
        assert ok.status_code == 200
        login = client.post("/api/v1/auth/login", json={"email": buyer.email, "password": "brandnew1"})
        assert login.status_code == 200


class TestRefreshAndDelete:
    def test_refresh_issues_a_working_token(self, client, session, buyer):
        response = client.post("/api/v1/auth/refresh", headers=auth_headers(session, buyer))

        assert response.status_code == 200
        token = response.json()["data"]["token"]
        profile = client.get("/api/v1/auth/profile", headers={"Authorization": f"Bearer {token}"})
        assert profile.json()["data"]["id"] == buyer.id

    def test_refresh_requires_a_token(self, client):
        assert client.post("/api/v1/auth/refresh").status_code == 401

    def test_delete_account_anonymises_buyer(self, client, session, buyer, farmer):
        from conftest import add_to_cart, make_product
        from agrimarket.models.cart import CartItem
        from sqlmodel import select

        add_to_cart(session, buyer, make_product(session, farmer), 1)
        headers = auth_headers(session, buyer)

        response = client.delete("/api/v1/auth/account", headers=headers)

        assert response.status_code == 200
        session.refresh(buyer)
        assert (buyer.is_active, buyer.name, buyer.phone, buyer.address) == (False, "Deleted User", None, None)
        assert buyer.email == f"deleted_{buyer.id}@agrimarket.local"
        assert session.exec(select(CartItem).where(CartItem.buyer_id == buyer.id)).all() == []
        assert client.get("/api/v1/auth/profile", headers=headers).status_code == 403

    def test_deleted_farmer_products_leave_the_catalog(self, client, session, farmer):
        from conftest import make_product

        product = make_product(session, farmer)
        client.delete("/api/v1/auth/account", headers=auth_headers(session, farmer))

        assert client.get(f"/api/v1/buyer/products/{product.id}").status_code == 404

    def test_admin_account_cannot_be_deleted(self, client, session, admin):
        assert client.delete("/api/v1/auth/account", headers=auth_headers(session, admin)).status_code == 403
