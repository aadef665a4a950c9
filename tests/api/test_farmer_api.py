from agrimarket.models.product import Product

from conftest import add_to_cart, auth_headers, make_product

ADDRESS = "9 Granary Road, Nagpur 440001"


def _place_order(client, session, buyer, product, quantity=1):
    add_to_cart(session, buyer, product, quantity)
    response = client.post(
        "/api/v1/buyer/checkout", json={"deliveryAddress": ADDRESS}, headers=auth_headers(session, buyer)
    )
    return response.json()["data"]["orders"][0]["id"]


class TestProductEndpoints:
    def test_create_update_and_soft_delete(self, client, session, farmer):
        headers = auth_headers(session, farmer)
        created = client.post("/api/v1/farmer/products", json={
            "title": "Heirloom Tomatoes",
            "price": 4.25,
            "stock": 30,
            "category": "vegetables",
            "isOrganic": True,
            "photos": ["https://cdn.example.com/tomato.jpg"],
        }, headers=headers)
        assert created.status_code == 201
        product_id = created.json()["data"]["id"]
        assert created.json()["data"]["price"] == 4.25

        updated = client.put(f"/api/v1/farmer/products/{product_id}", json={"price": 3.75}, headers=headers)
        assert updated.json()["data"]["price"] == 3.75

        deleted = client.delete(f"/api/v1/farmer/products/{product_id}", headers=headers)
        assert deleted.status_code == 200
        assert session.get(Product, product_id).is_active is False

    def test_invalid_price(self, client, session, farmer):
        response = client.post("/api/v1/farmer/products", json={
            "title": "Free Lunch", "price": 0, "stock": 1, "category": "misc",
        }, headers=auth_headers(session, farmer))
        assert response.status_code == 400
        assert response.json()["field"] == "price"

    def test_null_for_required_field_is_rejected(self, client, session, farmer):
        product = make_product(session, farmer, price="4.99")
        headers = auth_headers(session, farmer)

        response = client.put(f"/api/v1/farmer/products/{product.id}", json={"price": None}, headers=headers)

        assert response.status_code == 400
        assert response.json()["field"] == "price"
        session.refresh(product)
        assert str(product.price) == "4.99"

    def test_nullable_field_can_be_cleared(self, client, session, farmer):
        product = make_product(session, farmer, description="Crisp and sweet")
        response = client.put(
            f"/api/v1/farmer/products/{product.id}", json={"description": None}, headers=auth_headers(session, farmer)
        )
        assert response.status_code == 200
        assert response.json()["data"]["description"] is None

    def test_cannot_touch_other_farmers_product(self, client, session, farmer, other_farmer):
        product = make_product(session, other_farmer)
        response = client.put(
            f"/api/v1/farmer/products/{product.id}", json={"stock": 0}, headers=auth_headers(session, farmer)
        )
        assert response.status_code == 404

    def test_low_stock_and_stock_update(self, client, session, farmer):
        scarce = make_product(session, farmer, stock=3)
        make_product(session, farmer, stock=50)
        headers = auth_headers(session, farmer)

        low = client.get("/api/v1/farmer/products/low-stock", headers=headers).json()["data"]
        assert [p["id"] for p in low] == [scarce.id]

        response = client.patch(f"/api/v1/farmer/products/{scarce.id}/stock", json={"stock": 40}, headers=headers)
        assert response.json()["data"]["stock"] == 40
        assert client.get("/api/v1/farmer/products/low-stock", headers=headers).json()["data"] == []


class TestOrderStatusEndpoint:
    def test_walks_the_lifecycle(self, client, session, buyer, farmer):
        order_id = _place_order(client, session, buyer, make_product(session, farmer))
        headers = auth_headers(session, farmer)
        url = f"/api/v1/farmer/orders/{order_id}/status"

        assert client.patch(url, json={"status": "confirmed"}, headers=headers).status_code == 200
        shipped = client.patch(url, json={"status": "shipped", "trackingNumber": "IN-778"}, headers=headers)
        assert shipped.json()["data"]["trackingNumber"] == "IN-778"
        delivered = client.patch(url, json={"status": "delivered"}, headers=headers)
        assert delivered.json()["data"]["status"] == "delivered"

    def test_illegal_transition_is_409(self, client, session, buyer, farmer):
        order_id = _place_order(client, session, buyer, make_product(session, farmer))
        response = client.patch(
            f"/api/v1/farmer/orders/{order_id}/status", json={"status": "delivered"},
            headers=auth_headers(session, farmer),
        )
        assert response.status_code == 409

    def test_unknown_status_is_400(self, client, session, buyer, farmer):
        order_id = _place_order(client, session, buyer, make_product(session, farmer))
        response = client.patch(
            f"/api/v1/farmer/orders/{order_id}/status", json={"status": "teleported"},
            headers=auth_headers(session, farmer),
        )
        assert response.status_code == 400
        assert response.json()["field"] == "status"

    def test_other_farmer_is_403(self, client, session, buyer, farmer, other_farmer):
        order_id = _place_order(client, session, buyer, make_product(session, farmer))
        response = client.patch(
            f"/api/v1/farmer/orders/{order_id}/status", json={"status": "confirmed"},
            headers=auth_headers(session, other_farmer),
        )
        assert response.status_code == 403

    def test_cancellation_restocks(self, client, session, buyer, farmer):
        product = make_product(session, farmer, stock=6)
        order_id = _place_order(client, session, buyer, product, quantity=4)
        assert session.get(Product, product.id).stock == 2

        client.patch(
            f"/api/v1/farmer/orders/{order_id}/status", json={"status": "cancelled"},
            headers=auth_headers(session, farmer),
        )
        assert session.get(Product, product.id).stock == 6

    def test_buyer_gets_notification(self, client, session, buyer, farmer):
        order_id = _place_order(client, session, buyer, make_product(session, farmer))
        client.patch(
            f"/api/v1/farmer/orders/{order_id}/status", json={"status": "confirmed"},
            headers=auth_headers(session, farmer),
        )

        headers = auth_headers(session, buyer)
        count = client.get("/api/v1/orders/notifications/unread-count", headers=headers).json()["data"]
        assert count["unreadCount"] == 1
        listed = client.get("/api/v1/orders/notifications", headers=headers).json()
        assert listed["data"][0]["type"] == "order_confirmed"


class TestScheduleAndAnalytics:
    def test_delivery_schedule(self, client, session, buyer, farmer):
        from datetime import date, timedelta

        order_id = _place_order(client, session, buyer, make_product(session, farmer))
        headers = auth_headers(session, farmer)
        client.patch(f"/api/v1/farmer/orders/{order_id}/status", json={"status": "confirmed"}, headers=headers)
        tomorrow = (date.today() + timedelta(days=1)).isoformat()
        client.patch(f"/api/v1/farmer/orders/{order_id}/delivery-date", json={"deliveryDate": tomorrow}, headers=headers)

        schedule = client.get("/api/v1/farmer/delivery-schedule", headers=headers).json()["data"]
        assert [o["id"] for o in schedule] == [order_id]

    def test_sales_analytics(self, client, session, buyer, farmer):
        _place_order(client, session, buyer, make_product(session, farmer, price="10.00"), quantity=2)
        data = client.get(
            "/api/v1/farmer/analytics/sales", params={"period": "week"}, headers=auth_headers(session, farmer)
        ).json()["data"]
        assert data["totalRevenue"] == 20.0
        assert data["totalCommission"] == 1.4


def test_profile_name_cannot_be_nulled(client, session, farmer):
    response = client.put("/api/v1/farmer/profile", json={"name": None}, headers=auth_headers(session, farmer))

    assert response.status_code == 400
    assert response.json()["field"] == "name"
