from typing import Optional
from datetime import datetime
from sqlmodel import Field, SQLModel
from sqlalchemy import UniqueConstraint

class Review(SQLModel, table=True):
    # One review per buyer and product, enforced by the store
    __table_args__ = (UniqueConstraint("product_id", "buyer_id"),)

    id: Optional[int] = Field(default=None, primary_key=True)

    # References
    product_id: int = Field(foreign_key="product.id", index=True)
    buyer_id: int = Field(foreign_key="user.id", index=True)
    order_id: Optional[int] = Field(default=None, foreign_key="order.id")

    # Review Content
    rating: int = Field(ge=1, le=5)  # 1-5 stars
    comment: Optional[str] = None
    is_verified: bool = Field(default=False)

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
