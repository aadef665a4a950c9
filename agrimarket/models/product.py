from typing import Optional
from datetime import date, datetime
from decimal import Decimal
from sqlmodel import Field, SQLModel, Column
from sqlalchemy import JSON, CheckConstraint

class Product(SQLModel, table=True):
    __table_args__ = (
        CheckConstraint("stock >= 0", name="ck_product_stock_non_negative"),
        CheckConstraint("price > 0", name="ck_product_price_positive"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)

    # Owner
    farmer_id: int = Field(foreign_key="user.id", index=True)

    # Basic Info
    title: str = Field(index=True)
    description: Optional[str] = None
    category: str = Field(index=True)
    unit: str = Field(default="kg")
    is_organic: bool = Field(default=False)

    # Images (public URLs)
    photos: list = Field(default=[], sa_column=Column(JSON))

    # Pricing
    price: Decimal = Field(max_digits=10, decimal_places=2)

    # Inventory; only ever decremented through a conditional update
    stock: int = Field(default=0, ge=0)

    # Produce dates
    harvest_date: Optional[date] = None
    expiry_date: Optional[date] = None

    # Metadata
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
