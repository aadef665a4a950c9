from typing import Optional
from datetime import date, datetime
from enum import Enum
from sqlmodel import Field, SQLModel
from sqlalchemy import UniqueConstraint

class SubscriptionFrequency(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"

class Subscription(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("buyer_id", "product_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)
    buyer_id: int = Field(foreign_key="user.id", index=True)
    product_id: int = Field(foreign_key="product.id")
    quantity: int = Field(ge=1, le=50)
    frequency: SubscriptionFrequency
    next_delivery_date: date = Field(index=True)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
