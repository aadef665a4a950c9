from datetime import date
from decimal import Decimal
from typing import Optional
from fastapi import APIRouter, Depends, Header, Query
from pydantic import Field
from sqlmodel import Session

from agrimarket.core.responses import paginated, success
from agrimarket.core.schemas import CamelModel
from agrimarket.db.session import get_session
from agrimarket.models.message import MessageType
from agrimarket.models.order import OrderStatus
from agrimarket.models.subscription import SubscriptionFrequency
from agrimarket.models.user import User, UserRole
from agrimarket.routers.auth import require_role
from agrimarket.services.cart import CartService, MAX_LINE_QUANTITY
from agrimarket.services.catalog import CatalogService, serialize_product
from agrimarket.services.checkout import CheckoutService
from agrimarket.services.dispute import DisputeService, serialize_dispute
from agrimarket.services.messaging import MessagingService, serialize_message
from agrimarket.services.order import OrderService, serialize_order
from agrimarket.services.payment import PaymentGateway, PaymentService, get_payment_gateway
from agrimarket.services.review import ReviewService, serialize_review
from agrimarket.services.subscription import SubscriptionService, serialize_subscription

router = APIRouter()

current_buyer = require_role(UserRole.BUYER)

# Request schemas

class CartAdd(CamelModel):
    product_id: int
    quantity: int = Field(default=1, ge=1, le=MAX_LINE_QUANTITY)

class CartUpdate(CamelModel):
    quantity: int = Field(ge=0, le=MAX_LINE_QUANTITY)

class CheckoutRequest(CamelModel):
    delivery_address: str = Field(min_length=10, max_length=500)
    delivery_date: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=500)

class PaymentVerify(CamelModel):
    order_id: int
    razorpay_payment_id: str
    razorpay_signature: str

class MessageCreate(CamelModel):
    receiver_id: int
    content: str = Field(min_length=1, max_length=2000)
    message_type: MessageType = MessageType.TEXT

class ReviewCreate(CamelModel):
    product_id: int
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)
    order_id: Optional[int] = None

class ReviewUpdate(CamelModel):
    rating: Optional[int] = Field(default=None, ge=1, le=5)
    comment: Optional[str] = Field(default=None, max_length=1000)

class SubscriptionCreate(CamelModel):
    product_id: int
    quantity: int = Field(ge=1, le=50)
    frequency: SubscriptionFrequency
    start_date: Optional[date] = None

class SubscriptionUpdate(CamelModel):
    quantity: Optional[int] = Field(default=None, ge=1, le=50)
    frequency: Optional[SubscriptionFrequency] = None
    is_active: Optional[bool] = None

class DisputeCreate(CamelModel):
    order_id: int
    reason: str = Field(min_length=3, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)

# Catalog (public)

@router.get("/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=100),
    category: Optional[str] = None,
    min_price: Optional[Decimal] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[Decimal] = Query(None, alias="maxPrice", ge=0),
    is_organic: Optional[bool] = Query(None, alias="isOrganic"),
    in_stock: Optional[bool] = Query(None, alias="inStock"),
    sort_by: str = Query("created_at", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    session: Session = Depends(get_session)
):
    rows, total = CatalogService(session).search(
        page=page, limit=limit, search=search, category=category,
        min_price=min_price, max_price=max_price, is_organic=is_organic,
        in_stock=in_stock, sort_by=sort_by, sort_order=sort_order,
    )
    items = [serialize_product(product, farmer) for product, farmer in rows]
    return paginated(items, page, limit, total, "Products retrieved successfully")

@router.get("/categories")
def list_categories(session: Session = Depends(get_session)):
    return success(CatalogService(session).categories())

@router.get("/products/{product_id}")
def get_product(product_id: int, session: Session = Depends(get_session)):
    return success(CatalogService(session).get_public(product_id), "Product retrieved successfully")

# Cart

@router.get("/cart")
def get_cart(current_user: User = Depends(current_buyer), session: Session = Depends(get_session)):
    return success(CartService(session).get_cart(current_user.id))

@router.post("/cart", status_code=201)
def add_to_cart(data: CartAdd, current_user: User = Depends(current_buyer), session: Session = Depends(get_session)):
    service = CartService(session)
    service.add_item(current_user.id, data.product_id, data.quantity)
    return success(service.get_cart(current_user.id), "Item added to cart")

@router.put("/cart/{product_id}")
def update_cart_item(
    product_id: int,
    data: CartUpdate,
    current_user: User = Depends(current_buyer),
    session: Session = Depends(get_session)
):
    service = CartService(session)
    service.update_item(current_user.id, product_id, data.quantity)
    message = "Item removed from cart" if data.quantity == 0 else "Cart updated"
    return success(service.get_cart(current_user.id), message)

@router.delete("/cart/{product_id}")
def remove_cart_item(product_id: int, current_user: User = Depends(current_buyer), session: Session = Depends(get_session)):
    service = CartService(session)
    service.remove_item(current_user.id, product_id)
    return success(service.get_cart(current_user.id), "Item removed from cart")

@router.delete("/cart")
def clear_cart(current_user: User = Depends(current_buyer), session: Session = Depends(get_session)):
    CartService(session).clear(current_user.id)
    return success(message="Cart cleared")

# Checkout and orders

@router.post("/checkout", status_code=201)
def checkout(
    data: CheckoutRequest,
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=255),
    current_user: User = Depends(current_buyer),
    session: Session = Depends(get_session)
):
    result = CheckoutService(session).checkout(
        current_user.id,
        data.delivery_address,
        delivery_date=data.delivery_date,
        notes=data.notes,
        idempotency_key=idempotency_key,
    )
    message = "Some items could not be ordered" if result["partial"] else "Orders placed successfully"
    return success(result, message)

@router.get("/orders")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    current_user: User = Depends(current_buyer),
    session: Session = Depends(get_session)
):
    service = OrderService(session)
    orders, total = service.list_orders(page, limit, buyer_id=current_user.id, status=status)
    counts = service.item_counts([o.id for o in orders])
    items = [dict(serialize_order(o), itemCount=counts.get(o.id, 0)) for o in orders]
    return paginated(items, page, limit, total, "Orders retrieved successfully")

@router.get("/orders/{order_id}")
def get_order(order_id: int, current_user: User = Depends(current_buyer), session: Session = Depends(get_session)):
    return success(OrderService(session).get_details(order_id, current_user))

@router.post("/orders/{order_id}/payment")
def create_payment(
    order_id: int,
    current_user: User = Depends(current_buyer),
    session: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    data = PaymentService(session, gateway).create_payment_order(current_user.id, order_id)
    return success(data, "Payment order created")

@router.post("/verify-payment")
def verify_payment(
    data: PaymentVerify,
    current_user: User = Depends(current_buyer),
    session: Session = Depends(get_session),
    gateway: PaymentGateway = Depends(get_payment_gateway)
):
    order = PaymentService(session, gateway).verify_payment(
        current_user.id, data.order_id, data.razorpay_payment_id, data.razorpay_signature
    )
    return success(serialize_order(order), "Payment verified successfully")

# Messages

@router.get("/messages")
def get_messages(
    conversation_with: Optional[int] = Query(None, alias="conversationWith"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(current_buyer),
    session: Session = Depends(get_session)
):
    return read_messages(session, current_user, conversation_with, page, limit)

@router.post("/messages", status_code=201)
def send_message(data: MessageCreate, current_user: User = Depends(current_buyer), session: Session = Depends(get_session)):
    return post_message(session, current_user, data)

def read_messages(session: Session, user: User, conversation_with: Optional[int], page: int, limit: int):
    service = MessagingService(session)
    if conversation_with is None:
        return success(service.conversations(user.id), "Conversations retrieved successfully")
    messages, total = service.conversation(user.id, conversation_with, page, limit)
    items = [serialize_message(m, user.id) for m in messages]
    return paginated(items, page, limit, total, "Messages retrieved successfully")

def post_message(session: Session, user: User, data: MessageCreate):
    message = MessagingService(session).send(user.id, data.receiver_id, data.content, data.message_type)
    return success(serialize_message(message, user.id), "Message sent successfully")

# Reviews

@router.post("/reviews", status_code=201)
def create_review(data: ReviewCreate, current_user: User = Depends(current_buyer), session: Session = Depends(get_session)):
    review = ReviewService(session).create(
        current_user.id, data.product_id, data.rating, comment=data.comment, order_id=data.order_id
    )
    return success(serialize_review(review), "Review created successfully")

@router.get("/reviews")
def list_my_reviews(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(current_buyer),
    session: Session = Depends(get_session)
):
    reviews, total = ReviewService(session).list_for_buyer(current_user.id, page, limit)
    return paginated([serialize_review(r) for r in reviews], page, limit, total)

@router.put("/reviews/{review_id}")
def update_review(
    review_id: int,
    data: ReviewUpdate,
    current_user: User = Depends(current_buyer),
    session: Session = Depends(get_session)
):
    review = ReviewService(session).update(current_user.id, review_id, rating=data.rating, comment=data.comment)
    return success(serialize_review(review), "Review updated successfully")

@router.delete("/reviews/{review_id}")
def delete_review(review_id: int, current_user: User = Depends(current_buyer), session: Session = Depends(get_session)):
    ReviewService(session).delete(current_user.id, review_id)
    return success(message="Review deleted successfully")

# Subscriptions

@router.post("/subscriptions", status_code=201)
def create_subscription(
    data: SubscriptionCreate,
    current_user: User = Depends(current_buyer),
    session: Session = Depends(get_session)
):
    subscription = SubscriptionService(session).create(
        current_user.id, data.product_id, data.quantity, data.frequency, start_date=data.start_date
    )
    return success(serialize_subscription(subscription), "Subscription created successfully")

@router.get("/subscriptions")
def list_subscriptions(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    current_user: User = Depends(current_buyer),
    session: Session = Depends(get_session)
):
    rows, total = SubscriptionService(session).list_for_buyer(current_user.id, page, limit, is_active)
    items = [serialize_subscription(s, product) for s, product in rows]
    return paginated(items, page, limit, total)

@router.put("/subscriptions/{subscription_id}")
def update_subscription(
    subscription_id: int,
    data: SubscriptionUpdate,
    current_user: User = Depends(current_buyer),
    session: Session = Depends(get_session)
):
    subscription = SubscriptionService(session).update(
        current_user.id, subscription_id,
        quantity=data.quantity, frequency=data.frequency, is_active=data.is_active,
    )
    return success(serialize_subscription(subscription), "Subscription updated successfully")

@router.delete("/subscriptions/{subscription_id}")
def cancel_subscription(
    subscription_id: int,
    current_user: User = Depends(current_buyer),
    session: Session = Depends(get_session)
):
    subscription = SubscriptionService(session).cancel(current_user.id, subscription_id)
    return success(serialize_subscription(subscription), "Subscription cancelled")

# Disputes

@router.post("/disputes", status_code=201)
def open_dispute(data: DisputeCreate, current_user: User = Depends(current_buyer), session: Session = Depends(get_session)):
    dispute = DisputeService(session).open(current_user.id, data.order_id, data.reason, data.description)
    return success(serialize_dispute(dispute), "Dispute opened")

@router.get("/disputes")
def list_my_disputes(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(current_buyer),
    session: Session = Depends(get_session)
):
    disputes, total = DisputeService(session).list_disputes(page, limit, user_id=current_user.id)
    return paginated([serialize_dispute(d) for d in disputes], page, limit, total)
