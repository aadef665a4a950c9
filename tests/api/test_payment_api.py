import json

from agrimarket.models.order import Order, OrderStatus, PaymentStatus
from agrimarket.models.product import Product

from conftest import add_to_cart, auth_headers, make_product, sign


def _pending_order(client, session, buyer, farmer, stock=10, quantity=2):
    product = make_product(session, farmer, price="12.50", stock=stock)
    add_to_cart(session, buyer, product, quantity)
    placed = client.post(
        "/api/v1/buyer/checkout", json={"deliveryAddress": "21 Orchard Lane, Pune 411001"},
        headers=auth_headers(session, buyer),
    ).json()["data"]["orders"][0]
    return placed["id"], product


def _start_payment(client, session, buyer, order_id):
    response = client.post(f"/api/v1/buyer/orders/{order_id}/payment", headers=auth_headers(session, buyer))
    return response.json()["data"]["razorpayOrderId"]


def _webhook(client, event, razorpay_order_id, payment_id="pay_hook_1", secret="whsec_test"):
    body = json.dumps({
        "event": event,
        "payload": {"payment": {"entity": {"id": payment_id, "order_id": razorpay_order_id, "notes": {}}}},
    })
    return client.post(
        "/api/v1/payments/webhook", content=body,
        headers={"Content-Type": "application/json", "X-Razorpay-Signature": sign(body, secret)},
    )


class TestCreatePayment:
    def test_creates_gateway_order(self, client, session, buyer, farmer, gateway):
        order_id, _ = _pending_order(client, session, buyer, farmer)

        response = client.post(f"/api/v1/buyer/orders/{order_id}/payment", headers=auth_headers(session, buyer))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["razorpayOrderId"] == "order_rzp_1"
        assert data["amount"] == 2500
        assert data["keyId"] == "rzp_test_key"
        assert gateway.created[0]["notes"] == {"internal_order_id": str(order_id)}
        assert session.get(Order, order_id).razorpay_order_id == "order_rzp_1"

    def test_gateway_failure_is_502(self, client, session, buyer, farmer, gateway):
        order_id, _ = _pending_order(client, session, buyer, farmer)
        gateway.fail_next = True

        response = client.post(f"/api/v1/buyer/orders/{order_id}/payment", headers=auth_headers(session, buyer))

        assert response.status_code == 502
        assert response.json()["success"] is False
        assert session.get(Order, order_id).razorpay_order_id is None

    def test_other_buyer_cannot_pay(self, client, session, buyer, farmer):
        from conftest import make_user

        order_id, _ = _pending_order(client, session, buyer, farmer)
        stranger = make_user(session)
        response = client.post(f"/api/v1/buyer/orders/{order_id}/payment", headers=auth_headers(session, stranger))
        assert response.status_code == 403


class TestVerifyPayment:
    def test_valid_signature_confirms_order(self, client, session, buyer, farmer):
        order_id, _ = _pending_order(client, session, buyer, farmer)
        rzp_order_id = _start_payment(client, session, buyer, order_id)

        response = client.post("/api/v1/buyer/verify-payment", json={
            "orderId": order_id,
            "razorpayPaymentId": "pay_001",
            "razorpaySignature": sign(f"{rzp_order_id}|pay_001", "rzp_test_secret"),
        }, headers=auth_headers(session, buyer))

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["paymentStatus"] == "paid"
        assert data["status"] == "confirmed"

    def test_invalid_signature_changes_nothing(self, client, session, buyer, farmer):
        order_id, _ = _pending_order(client, session, buyer, farmer)
        _start_payment(client, session, buyer, order_id)

        response = client.post("/api/v1/buyer/verify-payment", json={
            "orderId": order_id,
            "razorpayPaymentId": "pay_001",
            "razorpaySignature": "0" * 64,
        }, headers=auth_headers(session, buyer))

        assert response.status_code == 400
        assert response.json()["field"] == "razorpaySignature"
        order = session.get(Order, order_id)
        assert (order.status, order.payment_status) == (OrderStatus.PENDING, PaymentStatus.PENDING)


class TestWebhook:
    def test_captured_marks_paid(self, client, session, buyer, farmer):
        order_id, _ = _pending_order(client, session, buyer, farmer)
        rzp_order_id = _start_payment(client, session, buyer, order_id)

        response = _webhook(client, "payment.captured", rzp_order_id)

        assert response.status_code == 200
        assert response.json()["data"] == {"event": "payment.captured", "handled": True, "orderId": order_id}
        order = session.get(Order, order_id)
        assert order.payment_status == PaymentStatus.PAID
        assert order.razorpay_payment_id == "pay_hook_1"

    def test_captured_twice_is_harmless(self, client, session, buyer, farmer):
        order_id, _ = _pending_order(client, session, buyer, farmer)
        rzp_order_id = _start_payment(client, session, buyer, order_id)

        _webhook(client, "payment.captured", rzp_order_id)
        response = _webhook(client, "payment.captured", rzp_order_id)

        assert response.status_code == 200
        assert session.get(Order, order_id).status == OrderStatus.CONFIRMED

    def test_failed_cancels_and_restocks(self, client, session, buyer, farmer):
        order_id, product = _pending_order(client, session, buyer, farmer, stock=5, quantity=3)
        rzp_order_id = _start_payment(client, session, buyer, order_id)
        assert session.get(Product, product.id).stock == 2

        _webhook(client, "payment.failed", rzp_order_id)

        order = session.get(Order, order_id)
        assert (order.status, order.payment_status) == (OrderStatus.CANCELLED, PaymentStatus.FAILED)
        assert session.get(Product, product.id).stock == 5

    def test_bad_signature(self, client, session, buyer, farmer):
        order_id, _ = _pending_order(client, session, buyer, farmer)
        rzp_order_id = _start_payment(client, session, buyer, order_id)

        response = _webhook(client, "payment.captured", rzp_order_id, secret="not-the-secret")

        assert response.status_code == 400
        assert session.get(Order, order_id).payment_status == PaymentStatus.PENDING

    def test_unknown_order_is_acknowledged(self, client):
        response = _webhook(client, "payment.captured", "order_missing")
        assert response.status_code == 200
        assert response.json()["data"]["handled"] is False
