"""Checkout: turn a buyer's cart into one order per farmer.

The whole checkout runs in one transaction. Each farmer group reserves its
stock with conditional decrements; a group that cannot be fully reserved
gives its stock back and is reported as failed while the other groups still
produce orders. Only the cart lines of groups that produced an order are
removed.
"""

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

import structlog
from fastapi.encoders import jsonable_encoder
from sqlalchemy import delete, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from agrimarket.core.config import settings
from agrimarket.core.exceptions import ConflictError, EmptyCartError, InsufficientStockError, ValidationError
from agrimarket.core.money import commission_for, to_money
from agrimarket.models.cart import CartItem
from agrimarket.models.order import CheckoutRecord, Order, OrderItem
from agrimarket.models.product import Product
from agrimarket.models.user import User, UserRole
from agrimarket.services.email import send_order_placed_email
from agrimarket.services.notification import NotificationService, best_effort

logger = structlog.get_logger(__name__)


@dataclass
class CartLine:
    cart_item_id: Optional[int]
    product_id: int
    title: str
    quantity: int
    unit_price: Decimal
    is_active: bool = True

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)

    def to_dict(self) -> dict:
        return {
            "productId": self.product_id,
            "title": self.title,
            "quantity": self.quantity,
            "unitPrice": self.unit_price,
            "lineTotal": self.line_total,
        }


@dataclass
class FarmerGroup:
    farmer_id: int
    lines: List[CartLine] = field(default_factory=list)

    @property
    def subtotal(self) -> Decimal:
        return to_money(sum((line.line_total for line in self.lines), Decimal("0")))


@dataclass
class GroupFailure:
    farmer_id: int
    reason: str
    lines: List[dict]

    def to_dict(self) -> dict:
        return {"farmerId": self.farmer_id, "reason": self.reason, "lines": self.lines}


def serialize_placed_order(order: Order, item_count: int) -> dict:
    return {
        "id": order.id,
        "farmerId": order.farmer_id,
        "totalPrice": order.total_price,
        "commissionAmount": order.commission_amount,
        "itemCount": item_count,
        "status": order.status.value,
        "paymentStatus": order.payment_status.value,
    }


def partition_by_farmer(rows) -> "OrderedDict[int, FarmerGroup]":
    """Group (CartItem, Product) rows by the product's farmer, in cart order."""
    groups: "OrderedDict[int, FarmerGroup]" = OrderedDict()
    for item, product in rows:
        group = groups.setdefault(product.farmer_id, FarmerGroup(farmer_id=product.farmer_id))
        group.lines.append(CartLine(
            cart_item_id=item.id,
            product_id=product.id,
            title=product.title,
            quantity=item.quantity,
            unit_price=product.price,
            is_active=product.is_active,
        ))
    return groups


class CheckoutService:
    def __init__(self, session: Session):
        self.session = session

    def _lock_buyer(self, buyer_id: int) -> User:
        # Serializes checkouts of one buyer where the dialect supports FOR UPDATE
        return self.session.exec(select(User).where(User.id == buyer_id).with_for_update()).one()

    def _stored_response(self, buyer_id: int, idempotency_key: str) -> Optional[dict]:
        record = self.session.exec(
            select(CheckoutRecord).where(
                CheckoutRecord.buyer_id == buyer_id,
                CheckoutRecord.idempotency_key == idempotency_key,
            )
        ).first()
        return record.response if record else None

    def _release(self, lines: List[CartLine]) -> None:
        for line in lines:
            self.session.exec(
                update(Product)
                .where(Product.id == line.product_id)
                .values(stock=Product.stock + line.quantity)
            )

    def reserve_stock(self, lines: List[CartLine]) -> None:
        """Decrement stock for every line or for none of them.

        Raises InsufficientStockError naming the first line that could not be
        reserved; lines reserved before it are released again.
        """
        reserved = []
        for line in lines:
            result = self.session.exec(
                update(Product)
                .where(
                    Product.id == line.product_id,
                    Product.stock >= line.quantity,
                    Product.is_active == True,  # noqa: E712
                )
                .values(stock=Product.stock - line.quantity, updated_at=datetime.utcnow())
            )
            if result.rowcount != 1:
                self._release(reserved)
                available = self.session.exec(select(Product.stock).where(Product.id == line.product_id)).first()
                raise InsufficientStockError(
                    f"Insufficient stock for {line.title}",
                    failures=[{
                        "productId": line.product_id,
                        "title": line.title,
                        "requested": line.quantity,
                        "available": available or 0,
                    }],
                )
            reserved.append(line)

    def place_group(self, buyer_id: int, group: FarmerGroup, delivery_address: str,
                    delivery_date: Optional[date] = None, notes: Optional[str] = None,
                    subscription_id: Optional[int] = None) -> Order:
        """Reserve stock and create the order for one farmer group, without committing."""
        self.reserve_stock(group.lines)

        subtotal = group.subtotal
        order = Order(
            buyer_id=buyer_id,
            farmer_id=group.farmer_id,
            total_price=subtotal,
            commission_amount=commission_for(subtotal, settings.COMMISSION_RATE),
            delivery_address=delivery_address,
            delivery_date=delivery_date,
            notes=notes,
            subscription_id=subscription_id,
        )
        self.session.add(order)
        self.session.flush()

        for line in group.lines:
            self.session.add(OrderItem(
                order_id=order.id,
                product_id=line.product_id,
                quantity=line.quantity,
                price_per_unit=line.unit_price,
                total_price=line.line_total,
            ))
        self.session.flush()
        return order

    def checkout(self, buyer_id: int, delivery_address: str, delivery_date: Optional[date] = None,
                 notes: Optional[str] = None, idempotency_key: Optional[str] = None) -> dict:
        delivery_address = (delivery_address or "").strip()
        if not 10 <= len(delivery_address) <= 500:
            raise ValidationError("Delivery address must be between 10 and 500 characters", field="deliveryAddress")
        if delivery_date and delivery_date < date.today():
            raise ValidationError("Delivery date cannot be in the past", field="deliveryDate")

        buyer = self._lock_buyer(buyer_id)
        if buyer.role != UserRole.BUYER:
            raise ValidationError("Only buyers can check out")

        if idempotency_key:
            stored = self._stored_response(buyer_id, idempotency_key)
            if stored is not None:
                logger.info("checkout_replayed", buyer_id=buyer_id, idempotency_key=idempotency_key)
                return stored

        rows = self.session.exec(
            select(CartItem, Product)
            .join(Product, Product.id == CartItem.product_id)
            .where(CartItem.buyer_id == buyer_id)
            .order_by(CartItem.created_at, CartItem.id)
        ).all()
        if not rows:
            raise EmptyCartError()

        groups = partition_by_farmer(rows)
        placed = []
        failures: List[GroupFailure] = []
        ordered_cart_ids = []

        for farmer_id, group in groups.items():
            unavailable = [line for line in group.lines if not line.is_active]
            if unavailable:
                failures.append(GroupFailure(farmer_id, "unavailable", [line.to_dict() for line in unavailable]))
                group.lines = [line for line in group.lines if line.is_active]
                if not group.lines:
                    continue

            try:
                order = self.place_group(buyer_id, group, delivery_address, delivery_date, notes)
            except InsufficientStockError as e:
                logger.info("checkout_group_failed", buyer_id=buyer_id, farmer_id=farmer_id, failures=e.failures)
                failures.append(GroupFailure(farmer_id, "insufficient_stock", e.failures))
                continue

            logger.info("checkout_group_placed", buyer_id=buyer_id, farmer_id=farmer_id,
                        order_id=order.id, total=str(order.total_price))
            placed.append((order, len(group.lines)))
            ordered_cart_ids.extend(line.cart_item_id for line in group.lines)

        if not placed:
            self.session.rollback()
            raise InsufficientStockError(
                "None of the items in your cart could be ordered",
                failures=[f.to_dict() for f in failures],
            )

        # Lines already removed mean a concurrent checkout of this cart committed first
        claimed = self.session.exec(delete(CartItem).where(CartItem.id.in_(ordered_cart_ids))).rowcount
        if claimed != len(ordered_cart_ids):
            self.session.rollback()
            logger.warning("checkout_cart_already_claimed", buyer_id=buyer_id,
                           expected=len(ordered_cart_ids), claimed=claimed)
            stored = self._stored_response(buyer_id, idempotency_key) if idempotency_key else None
            if stored is not None:
                return stored
            raise ConflictError("Your cart was already checked out by another request")

        response = jsonable_encoder({
            "orders": [serialize_placed_order(order, count) for order, count in placed],
            "failedGroups": [f.to_dict() for f in failures],
            "totalAmount": to_money(sum((order.total_price for order, _ in placed), Decimal("0"))),
            "partial": bool(failures),
        })

        if idempotency_key:
            self.session.add(CheckoutRecord(buyer_id=buyer_id, idempotency_key=idempotency_key, response=response))

        try:
            self.session.commit()
        except IntegrityError:
            # Another request with the same key committed first
            self.session.rollback()
            stored = self._stored_response(buyer_id, idempotency_key) if idempotency_key else None
            if stored is None:
                raise
            return stored

        logger.info("checkout_completed", buyer_id=buyer_id, orders=len(placed), failed_groups=len(failures))
        self._after_checkout(buyer, response["orders"])
        return response

    def _after_checkout(self, buyer: User, orders: List[dict]) -> None:
        notifications = NotificationService(self.session)
        for order in orders:
            best_effort(
                "notification", notifications.create,
                order["farmerId"], "New order received",
                f"Order #{order['id']} from {buyer.name} is waiting for confirmation",
                "new_order", {"orderId": order["id"]},
            )
        best_effort("email", send_order_placed_email, buyer.email, buyer.name, orders)
