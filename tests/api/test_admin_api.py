from datetime import date, datetime

from sqlmodel import select

from agrimarket.models.admin_action import AdminAction
from agrimarket.models.dispute import Dispute
from agrimarket.models.subscription import Subscription, SubscriptionFrequency

from conftest import PASSWORD, add_to_cart, auth_headers, make_product


class TestAccess:
    def test_requires_admin(self, client, session, farmer):
        assert client.get("/api/v1/admin/dashboard", headers=auth_headers(session, farmer)).status_code == 403

    def test_dashboard(self, client, session, admin, buyer, farmer):
        make_product(session, farmer)
        data = client.get("/api/v1/admin/dashboard", headers=auth_headers(session, admin)).json()["data"]
        assert data["userStats"]["farmers"] == 1
        assert data["userStats"]["buyers"] == 1
        assert data["productStats"]["active"] == 1
        assert data["pendingDisputes"] == 0


class TestAnalyticsEndpoint:
    def test_unknown_period(self, client, session, admin):
        response = client.get(
            "/api/v1/admin/analytics", params={"period": "fortnight"}, headers=auth_headers(session, admin)
        )
        assert response.status_code == 400
        assert response.json()["field"] == "period"

    def test_overview(self, client, session, admin, buyer):
        response = client.get(
            "/api/v1/admin/analytics", params={"period": "week", "type": "overview"},
            headers=auth_headers(session, admin),
        )
        data = response.json()["data"]
        assert data["type"] == "overview"
        assert datetime.utcnow().date().isoformat() in data["userGrowth"]


class TestModeration:
    def test_suspend_user_is_audited(self, client, session, admin, buyer):
        response = client.patch(
            f"/api/v1/admin/users/{buyer.id}/status", json={"isActive": False, "reason": "chargeback fraud"},
            headers=auth_headers(session, admin),
        )
        assert response.status_code == 200

        login = client.post("/api/v1/auth/login", json={"email": buyer.email, "password": PASSWORD})
        assert login.status_code == 403
        action = session.exec(select(AdminAction)).one()
        assert (action.action_type, action.target_id, action.reason) == ("suspend_user", buyer.id, "chargeback fraud")

    def test_deactivate_product_hides_it(self, client, session, admin, farmer):
        product = make_product(session, farmer)
        client.patch(
            f"/api/v1/admin/products/{product.id}/status", json={"isActive": False},
            headers=auth_headers(session, admin),
        )
        assert client.get(f"/api/v1/buyer/products/{product.id}").status_code == 404

    def test_user_detail_has_statistics(self, client, session, admin, farmer):
        make_product(session, farmer)
        data = client.get(f"/api/v1/admin/users/{farmer.id}", headers=auth_headers(session, admin)).json()["data"]
        assert data["statistics"]["productCount"] == 1
        assert data["statistics"]["orderCount"] == 0

    def test_admin_moves_any_order(self, client, session, admin, buyer, farmer):
        add_to_cart(session, buyer, make_product(session, farmer), 1)
        placed = client.post(
            "/api/v1/buyer/checkout", json={"deliveryAddress": "3 Mill Street, Indore"},
            headers=auth_headers(session, buyer),
        ).json()["data"]["orders"][0]

        response = client.patch(
            f"/api/v1/admin/orders/{placed['id']}/status", json={"status": "cancelled"},
            headers=auth_headers(session, admin),
        )
        assert response.json()["data"]["status"] == "cancelled"

        listed = client.get(
            "/api/v1/admin/orders", params={"status": "cancelled", "farmerId": farmer.id},
            headers=auth_headers(session, admin),
        ).json()
        assert listed["pagination"]["total"] == 1


class TestDisputes:
    def test_open_and_resolve(self, client, session, admin, buyer, farmer):
        add_to_cart(session, buyer, make_product(session, farmer), 1)
        order_id = client.post(
            "/api/v1/buyer/checkout", json={"deliveryAddress": "3 Mill Street, Indore"},
            headers=auth_headers(session, buyer),
        ).json()["data"]["orders"][0]["id"]

        opened = client.post(
            "/api/v1/buyer/disputes", json={"orderId": order_id, "reason": "Produce arrived spoiled"},
            headers=auth_headers(session, buyer),
        )
        assert opened.status_code == 201
        dispute_id = opened.json()["data"]["id"]
        assert opened.json()["data"]["respondentId"] == farmer.id

        pending = client.get(
            "/api/v1/admin/disputes", params={"status": "open"}, headers=auth_headers(session, admin)
        ).json()
        assert pending["pagination"]["total"] == 1

        resolved = client.patch(
            f"/api/v1/admin/disputes/{dispute_id}", json={"status": "resolved", "resolution": "Refund issued"},
            headers=auth_headers(session, admin),
        )
        assert resolved.json()["data"]["resolvedBy"] == admin.id
        assert session.get(Dispute, dispute_id).resolution == "Refund issued"


def test_maintenance_run(client, session, admin, buyer, farmer):
    product = make_product(session, farmer, stock=10)
    session.add(Subscription(
        buyer_id=buyer.id, product_id=product.id, quantity=1,
        frequency=SubscriptionFrequency.WEEKLY, next_delivery_date=date.today(),
    ))
    session.commit()

    response = client.post("/api/v1/admin/maintenance/run", headers=auth_headers(session, admin))

    assert response.status_code == 200
    assert response.json()["data"]["subscriptions"]["ordersPlaced"] == 1


def test_farmer_directory(client, session, admin, buyer, farmer, other_farmer):
    from agrimarket.models.review import Review

    product = make_product(session, farmer, price="10.00", stock=10)
    make_product(session, farmer, is_active=False)
    add_to_cart(session, buyer, product, 3)
    client.post(
        "/api/v1/buyer/checkout", json={"deliveryAddress": "3 Mill Street, Indore"},
        headers=auth_headers(session, buyer),
    )
    session.add(Review(product_id=product.id, buyer_id=buyer.id, rating=4))
    session.commit()

    body = client.get("/api/v1/admin/farmers", headers=auth_headers(session, admin)).json()

    assert body["pagination"]["total"] == 2
    listed = {f["farmerId"]: f["statistics"] for f in body["data"]}
    assert listed[farmer.id]["productCount"] == 1
    assert listed[farmer.id]["totalOrders"] == 1
    assert listed[farmer.id]["totalRevenue"] == 30.0
    assert listed[farmer.id]["averageRating"] == 4.0
    assert listed[other_farmer.id] == {
        "productCount": 0, "totalOrders": 0, "totalRevenue": 0.0, "reviewCount": 0, "averageRating": 0.0,
    }
