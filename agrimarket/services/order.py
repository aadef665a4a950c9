from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Set

import structlog
from sqlalchemy import update
from sqlmodel import Session, select, func

from agrimarket.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from agrimarket.db.session import paginate
from agrimarket.models.order import Order, OrderItem, OrderStatus, PaymentStatus
from agrimarket.models.product import Product
from agrimarket.models.user import User, UserRole
from agrimarket.services.email import send_order_status_email
from agrimarket.services.notification import NotificationService, best_effort

logger = structlog.get_logger(__name__)

TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

STATUS_MESSAGES = {
    OrderStatus.CONFIRMED: "has been confirmed by the farmer",
    OrderStatus.SHIPPED: "has been shipped",
    OrderStatus.DELIVERED: "has been delivered",
    OrderStatus.CANCELLED: "has been cancelled",
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in TRANSITIONS[current]


def serialize_order(order: Order, items: Optional[List[tuple]] = None,
                    buyer: Optional[User] = None, farmer: Optional[User] = None) -> dict:
    data = {
        "id": order.id,
        "buyerId": order.buyer_id,
        "farmerId": order.farmer_id,
        "totalPrice": order.total_price,
        "commissionAmount": order.commission_amount,
        "status": order.status.value,
        "paymentStatus": order.payment_status.value,
        "paymentMethod": order.payment_method,
        "razorpayOrderId": order.razorpay_order_id,
        "deliveryAddress": order.delivery_address,
        "deliveryDate": order.delivery_date,
        "notes": order.notes,
        "trackingNumber": order.tracking_number,
        "subscriptionId": order.subscription_id,
        "createdAt": order.created_at,
        "updatedAt": order.updated_at,
    }
    if items is not None:
        data["items"] = [
            {
                "id": item.id,
                "productId": item.product_id,
                "title": product.title if product else None,
                "unit": product.unit if product else None,
                "quantity": item.quantity,
                "pricePerUnit": item.price_per_unit,
                "totalPrice": item.total_price,
            }
            for item, product in items
        ]
    if buyer is not None:
        data["buyer"] = {"id": buyer.id, "name": buyer.name, "email": buyer.email, "phone": buyer.phone}
    if farmer is not None:
        data["farmer"] = {"id": farmer.id, "name": farmer.name, "email": farmer.email, "phone": farmer.phone}
    return data


class OrderService:
    def __init__(self, session: Session):
        self.session = session

    def get_order(self, order_id: int) -> Order:
        order = self.session.get(Order, order_id)
        if not order:
            raise NotFoundError("Order not found")
        return order

    def get_items(self, order_id: int):
        return self.session.exec(
            select(OrderItem, Product)
            .join(Product, Product.id == OrderItem.product_id, isouter=True)
            .where(OrderItem.order_id == order_id)
            .order_by(OrderItem.id)
        ).all()

    def get_details(self, order_id: int, user: User) -> dict:
        order = self.get_order(order_id)
        if user.role == UserRole.BUYER and order.buyer_id != user.id:
            raise ForbiddenError("Not authorized to view this order")
        if user.role == UserRole.FARMER and order.farmer_id != user.id:
            raise ForbiddenError("Not authorized to view this order")
        buyer = self.session.get(User, order.buyer_id)
        farmer = self.session.get(User, order.farmer_id)
        return serialize_order(order, self.get_items(order.id), buyer=buyer, farmer=farmer)

    def list_orders(self, page: int = 1, limit: int = 10, buyer_id: Optional[int] = None,
                    farmer_id: Optional[int] = None, status: Optional[OrderStatus] = None,
                    start_date: Optional[date] = None, end_date: Optional[date] = None):
        statement = select(Order)
        if buyer_id is not None:
            statement = statement.where(Order.buyer_id == buyer_id)
        if farmer_id is not None:
            statement = statement.where(Order.farmer_id == farmer_id)
        if status is not None:
            statement = statement.where(Order.status == status)
        if start_date is not None:
            statement = statement.where(Order.created_at >= datetime.combine(start_date, datetime.min.time()))
        if end_date is not None:
            statement = statement.where(Order.created_at < datetime.combine(end_date + timedelta(days=1), datetime.min.time()))
        statement = statement.order_by(Order.created_at.desc(), Order.id.desc())
        return paginate(self.session, statement, page, limit)

    def item_counts(self, order_ids: List[int]) -> Dict[int, int]:
        if not order_ids:
            return {}
        rows = self.session.exec(
            select(OrderItem.order_id, func.count(OrderItem.id))
            .where(OrderItem.order_id.in_(order_ids))
            .group_by(OrderItem.order_id)
        ).all()
        return dict(rows)

    def restock(self, order: Order) -> None:
        for item in order.items:
            self.session.exec(
                update(Product)
                .where(Product.id == item.product_id)
                .values(stock=Product.stock + item.quantity)
            )

    def apply_transition(self, order: Order, target: OrderStatus, notes: Optional[str] = None,
                         tracking_number: Optional[str] = None) -> Order:
        """Move ``order`` to ``target`` in the current transaction, without committing."""
        if not can_transition(order.status, target):
            raise ConflictError(f"Cannot change order status from {order.status.value} to {target.value}")

        previous = order.status
        order.status = target
        if notes:
            order.notes = notes
        if target == OrderStatus.SHIPPED and tracking_number:
            order.tracking_number = tracking_number
        if target == OrderStatus.CANCELLED:
            self.restock(order)
        order.updated_at = datetime.utcnow()
        self.session.add(order)
        logger.info("order_transition", order_id=order.id, from_status=previous.value, to_status=target.value)
        return order

    def update_status(self, order_id: int, actor: User, target: OrderStatus,
                      notes: Optional[str] = None, tracking_number: Optional[str] = None) -> Order:
        order = self.get_order(order_id)
        if actor.role == UserRole.FARMER:
            if order.farmer_id != actor.id:
                raise ForbiddenError("You can only update your own orders")
        elif actor.role != UserRole.ADMIN:
            raise ForbiddenError("Buyers cannot change order status")

        self.apply_transition(order, target, notes=notes, tracking_number=tracking_number)
        self.session.commit()
        self.session.refresh(order)
        self.notify_status_change(order)
        return order

    def notify_status_change(self, order: Order) -> None:
        """Best-effort notification and mail after a committed status change."""
        phrase = STATUS_MESSAGES.get(order.status)
        if not phrase:
            return
        notifications = NotificationService(self.session)
        data = {"orderId": order.id, "status": order.status.value}
        best_effort(
            "notification", notifications.create,
            order.buyer_id, f"Order {order.status.value}", f"Your order #{order.id} {phrase}",
            f"order_{order.status.value}", data,
        )
        if order.status == OrderStatus.DELIVERED:
            best_effort(
                "notification", notifications.create,
                order.farmer_id, "Order delivered", f"Order #{order.id} was delivered to the buyer",
                "order_delivered", data,
            )

        buyer = self.session.get(User, order.buyer_id)
        if buyer:
            best_effort(
                "email", send_order_status_email,
                buyer.email, buyer.name, order.id, order.status.value, order.tracking_number,
            )

    def update_delivery_date(self, order_id: int, farmer_id: int, delivery_date: date) -> Order:
        order = self.get_order(order_id)
        if order.farmer_id != farmer_id:
            raise ForbiddenError("You can only update your own orders")
        if delivery_date < date.today():
            raise ValidationError("Delivery date cannot be in the past", field="deliveryDate")
        if order.status not in (OrderStatus.PENDING, OrderStatus.CONFIRMED, OrderStatus.SHIPPED):
            raise ConflictError(f"Cannot reschedule a {order.status.value} order")
        order.delivery_date = delivery_date
        order.updated_at = datetime.utcnow()
        self.session.add(order)
        self.session.commit()
        self.session.refresh(order)
        return order

    def delivery_schedule(self, farmer_id: int, on_date: Optional[date] = None) -> List[Order]:
        statement = select(Order).where(
            Order.farmer_id == farmer_id,
            Order.status.in_([OrderStatus.CONFIRMED, OrderStatus.SHIPPED]),
        )
        if on_date:
            statement = statement.where(Order.delivery_date == on_date)
        else:
            today = date.today()
            statement = statement.where(Order.delivery_date >= today, Order.delivery_date <= today + timedelta(days=7))
        return self.session.exec(statement.order_by(Order.delivery_date, Order.id)).all()

    def stats(self, buyer_id: Optional[int] = None, farmer_id: Optional[int] = None) -> dict:
        statement = select(Order.status, func.count(Order.id))
        if buyer_id is not None:
            statement = statement.where(Order.buyer_id == buyer_id)
        if farmer_id is not None:
            statement = statement.where(Order.farmer_id == farmer_id)
        rows = self.session.exec(statement.group_by(Order.status)).all()

        counts = {s.value: 0 for s in OrderStatus}
        total_orders = 0
        for status, count in rows:
            counts[status.value] = count
            total_orders += count
        return {"totalOrders": total_orders, "byStatus": counts}

    def mark_payment(self, order: Order, payment_status: PaymentStatus,
                     razorpay_payment_id: Optional[str] = None) -> None:
        order.payment_status = payment_status
        if razorpay_payment_id:
            order.razorpay_payment_id = razorpay_payment_id
        order.updated_at = datetime.utcnow()
        self.session.add(order)
