import calendar
from datetime import date, datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from agrimarket.core.exceptions import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from agrimarket.db.session import paginate
from agrimarket.models.product import Product
from agrimarket.models.subscription import Subscription, SubscriptionFrequency
from agrimarket.models.user import User
from agrimarket.services.checkout import CartLine, CheckoutService, FarmerGroup
from agrimarket.services.notification import NotificationService, best_effort

logger = structlog.get_logger(__name__)


def add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def next_delivery(day: date, frequency: SubscriptionFrequency) -> date:
    if frequency == SubscriptionFrequency.WEEKLY:
        return day + timedelta(days=7)
    if frequency == SubscriptionFrequency.BIWEEKLY:
        return day + timedelta(days=14)
    return add_months(day, 1)


def serialize_subscription(subscription: Subscription, product: Optional[Product] = None) -> dict:
    data = {
        "id": subscription.id,
        "buyerId": subscription.buyer_id,
        "productId": subscription.product_id,
        "quantity": subscription.quantity,
        "frequency": subscription.frequency.value,
        "nextDeliveryDate": subscription.next_delivery_date,
        "isActive": subscription.is_active,
        "createdAt": subscription.created_at,
    }
    if product is not None:
        data["product"] = {"id": product.id, "title": product.title, "price": product.price, "unit": product.unit}
    return data


class SubscriptionService:
    def __init__(self, session: Session):
        self.session = session

    def create(self, buyer_id: int, product_id: int, quantity: int, frequency: SubscriptionFrequency,
               start_date: Optional[date] = None) -> Subscription:
        product = self.session.get(Product, product_id)
        if not product or not product.is_active:
            raise NotFoundError("Product not found or unavailable")
        if start_date and start_date < date.today():
            raise ValidationError("Start date cannot be in the past", field="startDate")

        existing = self.session.exec(
            select(Subscription).where(Subscription.buyer_id == buyer_id, Subscription.product_id == product_id)
        ).first()
        if existing and existing.is_active:
            raise ConflictError("You already have an active subscription for this product")

        first_delivery = start_date or date.today() + timedelta(days=7)
        if existing:
            # Reactivate the cancelled subscription for this product
            subscription = existing
            subscription.quantity = quantity
            subscription.frequency = frequency
            subscription.next_delivery_date = first_delivery
            subscription.is_active = True
            subscription.updated_at = datetime.utcnow()
        else:
            subscription = Subscription(
                buyer_id=buyer_id,
                product_id=product_id,
                quantity=quantity,
                frequency=frequency,
                next_delivery_date=first_delivery,
            )
        self.session.add(subscription)
        try:
            self.session.commit()
        except IntegrityError:
            self.session.rollback()
            raise ConflictError("You already have an active subscription for this product")
        self.session.refresh(subscription)
        return subscription

    def list_for_buyer(self, buyer_id: int, page: int = 1, limit: int = 10, is_active: Optional[bool] = None):
        statement = (
            select(Subscription, Product)
            .join(Product, Product.id == Subscription.product_id)
            .where(Subscription.buyer_id == buyer_id)
        )
        if is_active is not None:
            statement = statement.where(Subscription.is_active == is_active)
        statement = statement.order_by(Subscription.created_at.desc(), Subscription.id.desc())
        return paginate(self.session, statement, page, limit)

    def _get_own(self, buyer_id: int, subscription_id: int) -> Subscription:
        subscription = self.session.get(Subscription, subscription_id)
        if not subscription or subscription.buyer_id != buyer_id:
            raise NotFoundError("Subscription not found")
        return subscription

    def update(self, buyer_id: int, subscription_id: int, quantity: Optional[int] = None,
               frequency: Optional[SubscriptionFrequency] = None, is_active: Optional[bool] = None) -> Subscription:
        subscription = self._get_own(buyer_id, subscription_id)
        if quantity is not None:
            subscription.quantity = quantity
        if frequency is not None:
            subscription.frequency = frequency
        if is_active is not None:
            subscription.is_active = is_active
        subscription.updated_at = datetime.utcnow()
        self.session.add(subscription)
        self.session.commit()
        self.session.refresh(subscription)
        return subscription

    def cancel(self, buyer_id: int, subscription_id: int) -> Subscription:
        return self.update(buyer_id, subscription_id, is_active=False)

    def _report_issue(self, subscription: Subscription, reason: str) -> None:
        logger.info("subscription_skipped", subscription_id=subscription.id, reason=reason)
        best_effort(
            "notification", NotificationService(self.session).create,
            subscription.buyer_id, "Subscription delivery skipped",
            f"Your subscription #{subscription.id} could not be fulfilled: {reason}",
            "subscription_issue", {"subscriptionId": subscription.id},
        )

    def process_due(self, today: Optional[date] = None) -> dict:
        """Place orders for every active subscription due on or before ``today``."""
        today = today or date.today()
        due_ids = self.session.exec(
            select(Subscription.id).where(
                Subscription.is_active == True,  # noqa: E712
                Subscription.next_delivery_date <= today,
            ).order_by(Subscription.next_delivery_date, Subscription.id)
        ).all()

        placed = skipped = 0
        checkout = CheckoutService(self.session)
        for subscription_id in due_ids:
            subscription = self.session.get(Subscription, subscription_id)
            buyer = self.session.get(User, subscription.buyer_id)
            product = self.session.get(Product, subscription.product_id)

            if not buyer or not buyer.is_active or not buyer.address or len(buyer.address.strip()) < 10:
                self._report_issue(subscription, "no delivery address on your profile")
                skipped += 1
                continue
            if not product or not product.is_active:
                self._report_issue(subscription, "the product is no longer available")
                skipped += 1
                continue

            group = FarmerGroup(farmer_id=product.farmer_id, lines=[CartLine(
                cart_item_id=None,
                product_id=product.id,
                title=product.title,
                quantity=subscription.quantity,
                unit_price=product.price,
            )])
            try:
                order = checkout.place_group(
                    buyer.id, group, buyer.address.strip(),
                    delivery_date=subscription.next_delivery_date if subscription.next_delivery_date >= today else today,
                    notes=f"Subscription #{subscription.id}",
                    subscription_id=subscription.id,
                )
            except InsufficientStockError:
                self.session.rollback()
                self._report_issue(subscription, "not enough stock")
                skipped += 1
                continue

            subscription.next_delivery_date = next_delivery(subscription.next_delivery_date, subscription.frequency)
            subscription.updated_at = datetime.utcnow()
            self.session.add(subscription)
            self.session.commit()
            placed += 1
            logger.info("subscription_order_placed", subscription_id=subscription.id, order_id=order.id)

        return {"processed": len(due_ids), "ordersPlaced": placed, "skipped": skipped}
