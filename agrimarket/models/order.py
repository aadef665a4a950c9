from typing import List, Optional
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from sqlmodel import Field, Relationship, SQLModel, Column
from sqlalchemy import JSON, UniqueConstraint

class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"

class OrderItem(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="order.id", index=True)
    product_id: int = Field(foreign_key="product.id")
    quantity: int
    # Price captured at checkout, never re-read from the catalog
    price_per_unit: Decimal = Field(max_digits=10, decimal_places=2)
    total_price: Decimal = Field(max_digits=12, decimal_places=2)

class Order(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Owners
    buyer_id: int = Field(foreign_key="user.id", index=True)
    farmer_id: int = Field(foreign_key="user.id", index=True)

    # Amounts
    total_price: Decimal = Field(max_digits=12, decimal_places=2)
    commission_amount: Decimal = Field(max_digits=12, decimal_places=2)

    # Lifecycle
    status: OrderStatus = Field(default=OrderStatus.PENDING, index=True)
    notes: Optional[str] = None
    tracking_number: Optional[str] = None

    # Payment Info
    payment_status: PaymentStatus = Field(default=PaymentStatus.PENDING)
    payment_method: str = Field(default="razorpay")
    razorpay_order_id: Optional[str] = Field(default=None, index=True)
    razorpay_payment_id: Optional[str] = None

    # Delivery
    delivery_address: str
    delivery_date: Optional[date] = None

    # Set when the order was placed by the subscription rollover job
    subscription_id: Optional[int] = Field(default=None, foreign_key="subscription.id")

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow, index=True)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    items: List["OrderItem"] = Relationship(sa_relationship_kwargs={"cascade": "all, delete-orphan"})

class CheckoutRecord(SQLModel, table=True):
    """Result of a checkout, stored under the client's idempotency key."""

    __table_args__ = (UniqueConstraint("buyer_id", "idempotency_key"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    buyer_id: int = Field(foreign_key="user.id", index=True)
    idempotency_key: str
    response: dict = Field(sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=datetime.utcnow)
