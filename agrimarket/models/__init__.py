# Import all models to register them with SQLModel
from agrimarket.models.user import User, UserRole, FarmerProfile
from agrimarket.models.product import Product
from agrimarket.models.cart import CartItem
from agrimarket.models.subscription import Subscription, SubscriptionFrequency
from agrimarket.models.order import Order, OrderItem, OrderStatus, PaymentStatus, CheckoutRecord
from agrimarket.models.message import Message, MessageType
from agrimarket.models.review import Review
from agrimarket.models.notification import Notification
from agrimarket.models.dispute import Dispute, DisputeStatus
from agrimarket.models.admin_action import AdminAction

__all__ = [
    "User",
    "UserRole",
    "FarmerProfile",
    "Product",
    "CartItem",
    "Subscription",
    "SubscriptionFrequency",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "CheckoutRecord",
    "Message",
    "MessageType",
    "Review",
    "Notification",
    "Dispute",
    "DisputeStatus",
    "AdminAction",
]
