import json
from decimal import Decimal

import razorpay
from razorpay.errors import SignatureVerificationError
import structlog
from sqlmodel import Session, select

from agrimarket.core.config import settings
from agrimarket.core.exceptions import ConflictError, ForbiddenError, PaymentGatewayError, ValidationError
from agrimarket.models.order import Order, OrderStatus, PaymentStatus
from agrimarket.services.order import OrderService

logger = structlog.get_logger(__name__)


class PaymentGateway:
    """Thin wrapper over the Razorpay client."""

    def __init__(self, key_id: str = None, key_secret: str = None, webhook_secret: str = None):
        self.key_id = key_id or settings.RAZORPAY_KEY_ID
        self.webhook_secret = webhook_secret or settings.RAZORPAY_WEBHOOK_SECRET
        self.client = razorpay.Client(auth=(self.key_id, key_secret or settings.RAZORPAY_KEY_SECRET))

    def create_order(self, amount: Decimal, receipt: str, notes: dict) -> dict:
        # Amount needed in paise
        data = {
            "amount": int(amount * 100),
            "currency": settings.PAYMENT_CURRENCY,
            "receipt": receipt,
            "notes": notes,
            "payment_capture": 1,
        }
        try:
            return self.client.order.create(data=data)
        except Exception as e:
            raise PaymentGatewayError(f"Could not create payment order: {e}") from e

    def verify_payment(self, razorpay_order_id: str, razorpay_payment_id: str, signature: str) -> bool:
        try:
            self.client.utility.verify_payment_signature({
                "razorpay_order_id": razorpay_order_id,
                "razorpay_payment_id": razorpay_payment_id,
                "razorpay_signature": signature,
            })
        except SignatureVerificationError:
            return False
        return True

    def verify_webhook(self, body: str, signature: str) -> bool:
        try:
            self.client.utility.verify_webhook_signature(body, signature, self.webhook_secret)
        except SignatureVerificationError:
            return False
        return True


def get_payment_gateway() -> PaymentGateway:
    return PaymentGateway()


class PaymentService:
    def __init__(self, session: Session, gateway: PaymentGateway):
        self.session = session
        self.gateway = gateway
        self.orders = OrderService(session)

    def _buyer_order(self, buyer_id: int, order_id: int) -> Order:
        order = self.orders.get_order(order_id)
        if order.buyer_id != buyer_id:
            raise ForbiddenError("Not authorized to pay for this order")
        return order

    def create_payment_order(self, buyer_id: int, order_id: int) -> dict:
        order = self._buyer_order(buyer_id, order_id)
        if order.payment_status == PaymentStatus.PAID:
            raise ConflictError("Order is already paid")
        if order.status != OrderStatus.PENDING:
            raise ConflictError(f"Cannot pay for a {order.status.value} order")

        payment = self.gateway.create_order(
            order.total_price,
            receipt=f"order_{order.id}",
            notes={"internal_order_id": str(order.id)},
        )
        order.razorpay_order_id = payment.get("id")
        self.session.add(order)
        self.session.commit()
        logger.info("payment_order_created", order_id=order.id, razorpay_order_id=order.razorpay_order_id)
        return {
            "orderId": order.id,
            "razorpayOrderId": order.razorpay_order_id,
            "amount": payment.get("amount"),
            "currency": payment.get("currency", settings.PAYMENT_CURRENCY),
            "keyId": self.gateway.key_id,
        }

    def _capture(self, order: Order, razorpay_payment_id: str) -> Order:
        if order.payment_status == PaymentStatus.PAID:
            return order
        self.orders.mark_payment(order, PaymentStatus.PAID, razorpay_payment_id)
        confirmed = order.status == OrderStatus.PENDING
        if confirmed:
            self.orders.apply_transition(order, OrderStatus.CONFIRMED)
        self.session.commit()
        self.session.refresh(order)
        logger.info("payment_captured", order_id=order.id, razorpay_payment_id=razorpay_payment_id)
        if confirmed:
            self.orders.notify_status_change(order)
        return order

    def _fail(self, order: Order, razorpay_payment_id: str = None) -> Order:
        if order.payment_status == PaymentStatus.PAID:
            return order
        self.orders.mark_payment(order, PaymentStatus.FAILED, razorpay_payment_id)
        cancelled = order.status in (OrderStatus.PENDING, OrderStatus.CONFIRMED)
        if cancelled:
            self.orders.apply_transition(order, OrderStatus.CANCELLED, notes="Payment failed")
        self.session.commit()
        self.session.refresh(order)
        logger.info("payment_failed", order_id=order.id, razorpay_payment_id=razorpay_payment_id)
        if cancelled:
            self.orders.notify_status_change(order)
        return order

    def verify_payment(self, buyer_id: int, order_id: int, razorpay_payment_id: str, signature: str) -> Order:
        order = self._buyer_order(buyer_id, order_id)
        if not order.razorpay_order_id:
            raise ValidationError("No payment has been started for this order", field="orderId")
        if not self.gateway.verify_payment(order.razorpay_order_id, razorpay_payment_id, signature):
            logger.warning("payment_signature_invalid", order_id=order.id)
            raise ValidationError("Invalid payment signature", field="razorpaySignature")
        return self._capture(order, razorpay_payment_id)

    def _order_for_payment(self, entity: dict):
        internal_id = (entity.get("notes") or {}).get("internal_order_id")
        if internal_id and str(internal_id).isdigit():
            order = self.session.get(Order, int(internal_id))
            if order:
                return order
        # Fallback: resolve order using razorpay order id
        razorpay_order_id = entity.get("order_id")
        if razorpay_order_id:
            return self.session.exec(select(Order).where(Order.razorpay_order_id == razorpay_order_id)).first()
        return None

    def handle_webhook(self, body: str, signature: str) -> dict:
        if not signature or not self.gateway.verify_webhook(body, signature):
            raise ValidationError("Invalid webhook signature")

        event = json.loads(body)
        event_type = event.get("event")
        entity = event.get("payload", {}).get("payment", {}).get("entity", {})
        order = self._order_for_payment(entity)
        if order is None:
            logger.warning("webhook_order_not_found", webhook_event=event_type, razorpay_order_id=entity.get("order_id"))
            return {"event": event_type, "handled": False}

        if event_type == "payment.captured":
            self._capture(order, entity.get("id"))
        elif event_type == "payment.failed":
            self._fail(order, entity.get("id"))
        else:
            return {"event": event_type, "handled": False}
        return {"event": event_type, "handled": True, "orderId": order.id}
