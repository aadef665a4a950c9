import pytest
from sqlmodel import select

from agrimarket.core.exceptions import ConflictError, ForbiddenError
from agrimarket.models.notification import Notification
from agrimarket.models.order import OrderStatus
from agrimarket.models.product import Product
from agrimarket.services.checkout import CheckoutService
from agrimarket.services.order import OrderService, can_transition

from conftest import add_to_cart, make_product

ALLOWED = {
    (OrderStatus.PENDING, OrderStatus.CONFIRMED),
    (OrderStatus.PENDING, OrderStatus.CANCELLED),
    (OrderStatus.CONFIRMED, OrderStatus.SHIPPED),
    (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    (OrderStatus.SHIPPED, OrderStatus.DELIVERED),
}


@pytest.fixture()
def placed(session, buyer, farmer):
    product = make_product(session, farmer, price="5.00", stock=10)
    add_to_cart(session, buyer, product, 3)
    result = CheckoutService(session).checkout(buyer.id, "12 Orchard Lane, Green Town")
    return result["orders"][0]["id"], product.id


def test_transition_table():
    for current in OrderStatus:
        for target in OrderStatus:
            assert can_transition(current, target) == ((current, target) in ALLOWED)


class TestUpdateStatus:
    def test_happy_path_to_delivered(self, session, farmer, placed):
        order_id, _ = placed
        service = OrderService(session)
        service.update_status(order_id, farmer, OrderStatus.CONFIRMED)
        service.update_status(order_id, farmer, OrderStatus.SHIPPED, tracking_number="TRK-42")
        order = service.update_status(order_id, farmer, OrderStatus.DELIVERED)

        assert order.status == OrderStatus.DELIVERED
        assert order.tracking_number == "TRK-42"

    def test_invalid_transition_is_a_conflict(self, session, farmer, placed):
        order_id, _ = placed
        with pytest.raises(ConflictError):
            OrderService(session).update_status(order_id, farmer, OrderStatus.SHIPPED)

    def test_same_state_is_a_conflict(self, session, farmer, placed):
        order_id, _ = placed
        with pytest.raises(ConflictError):
            OrderService(session).update_status(order_id, farmer, OrderStatus.PENDING)

    def test_other_farmer_is_forbidden(self, session, other_farmer, placed):
        order_id, _ = placed
        with pytest.raises(ForbiddenError):
            OrderService(session).update_status(order_id, other_farmer, OrderStatus.CONFIRMED)

    def test_buyer_cannot_change_status(self, session, buyer, placed):
        order_id, _ = placed
        with pytest.raises(ForbiddenError):
            OrderService(session).update_status(order_id, buyer, OrderStatus.CANCELLED)

    def test_admin_can_move_any_order(self, session, admin, placed):
        order_id, _ = placed
        order = OrderService(session).update_status(order_id, admin, OrderStatus.CONFIRMED)
        assert order.status == OrderStatus.CONFIRMED

    def test_cancel_restocks(self, session, farmer, placed):
        order_id, product_id = placed
        assert session.get(Product, product_id).stock == 7

        OrderService(session).update_status(order_id, farmer, OrderStatus.CANCELLED, notes="Out of season")

        assert session.get(Product, product_id).stock == 10

    def test_buyer_is_notified(self, session, buyer, farmer, placed):
        order_id, _ = placed
        OrderService(session).update_status(order_id, farmer, OrderStatus.CONFIRMED)

        types = session.exec(select(Notification.type).where(Notification.user_id == buyer.id)).all()
        assert types == ["order_confirmed"]

    def test_mail_failure_does_not_fail_the_update(self, session, farmer, placed, monkeypatch):
        from agrimarket.core.exceptions import DependencyError
        from agrimarket.services import order as order_module

        def broken(*args, **kwargs):
            raise DependencyError("smtp", "connection refused")

        monkeypatch.setattr(order_module, "send_order_status_email", broken)
        order_id, _ = placed
        order = OrderService(session).update_status(order_id, farmer, OrderStatus.CONFIRMED)
        assert order.status == OrderStatus.CONFIRMED


class TestQueries:
    def test_details_are_scoped_to_owner(self, session, buyer, other_farmer, placed):
        from conftest import make_user

        order_id, _ = placed
        service = OrderService(session)
        details = service.get_details(order_id, buyer)
        assert details["items"][0]["quantity"] == 3
        assert details["buyer"]["id"] == buyer.id

        with pytest.raises(ForbiddenError):
            service.get_details(order_id, make_user(session))
        with pytest.raises(ForbiddenError):
            service.get_details(order_id, other_farmer)

    def test_stats_count_by_status(self, session, farmer, placed):
        stats = OrderService(session).stats(farmer_id=farmer.id)
        assert stats["totalOrders"] == 1
        assert stats["byStatus"]["pending"] == 1
        assert stats["byStatus"]["delivered"] == 0
