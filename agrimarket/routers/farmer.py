from datetime import date
from decimal import Decimal
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import Field, field_validator
from sqlmodel import Session

from agrimarket.core.responses import paginated, success
from agrimarket.core.schemas import CamelModel
from agrimarket.db.session import get_session
from agrimarket.models.order import OrderStatus
from agrimarket.models.user import User, UserRole
from agrimarket.routers.auth import require_role
from agrimarket.routers.buyer import MessageCreate, post_message, read_messages
from agrimarket.services.analytics import AnalyticsService
from agrimarket.services.catalog import CatalogService, serialize_product
from agrimarket.services.order import OrderService, serialize_order
from agrimarket.services.user import UserService, serialize_profile

router = APIRouter()

current_farmer = require_role(UserRole.FARMER)

class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    phone: Optional[str] = Field(default=None, max_length=20)
    address: Optional[str] = Field(default=None, max_length=500)
    farm_name: Optional[str] = Field(default=None, max_length=100)
    farm_size: Optional[float] = Field(default=None, ge=0)
    farming_experience: Optional[int] = Field(default=None, ge=0, le=100)
    certifications: Optional[List[str]] = None
    farming_methods: Optional[List[str]] = None
    bio: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("name")
    @classmethod
    def name_not_null(cls, value):
        if value is None:
            raise ValueError("name cannot be null")
        return value

class ProductCreate(CamelModel):
    title: str = Field(min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    price: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    stock: int = Field(ge=0)
    category: str = Field(min_length=2, max_length=50)
    unit: str = Field(default="kg", max_length=20)
    is_organic: bool = False
    harvest_date: Optional[date] = None
    expiry_date: Optional[date] = None
    photos: List[str] = Field(default_factory=list, max_length=10)

class ProductUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=2, max_length=100)
    description: Optional[str] = Field(default=None, max_length=2000)
    price: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    stock: Optional[int] = Field(default=None, ge=0)
    category: Optional[str] = Field(default=None, min_length=2, max_length=50)
    unit: Optional[str] = Field(default=None, max_length=20)
    is_organic: Optional[bool] = None
    harvest_date: Optional[date] = None
    expiry_date: Optional[date] = None
    photos: Optional[List[str]] = Field(default=None, max_length=10)
    is_active: Optional[bool] = None

    # Only description and the produce dates may be cleared
    @field_validator("title", "price", "stock", "category", "unit", "is_organic", "photos", "is_active")
    @classmethod
    def not_null(cls, value, info):
        if value is None:
            raise ValueError(f"{info.field_name} cannot be null")
        return value

class StockUpdate(CamelModel):
    stock: int = Field(ge=0)

class OrderStatusUpdate(CamelModel):
    status: OrderStatus
    notes: Optional[str] = Field(default=None, max_length=500)
    tracking_number: Optional[str] = Field(default=None, max_length=100)

class DeliveryDateUpdate(CamelModel):
    delivery_date: date

USER_FIELDS = {"name", "phone", "address"}

# Profile

@router.get("/profile")
def get_profile(current_user: User = Depends(current_farmer), session: Session = Depends(get_session)):
    profile = UserService(session).get_farmer_profile(current_user)
    return success(serialize_profile(profile, current_user))

@router.put("/profile")
def update_profile(data: ProfileUpdate, current_user: User = Depends(current_farmer), session: Session = Depends(get_session)):
    fields = data.model_dump(exclude_unset=True)
    user_fields = {k: v for k, v in fields.items() if k in USER_FIELDS}
    profile_fields = {k: v for k, v in fields.items() if k not in USER_FIELDS}
    profile = UserService(session).update_farmer_profile(current_user, user_fields, profile_fields)
    return success(serialize_profile(profile, current_user), "Profile updated successfully")

# Products

@router.get("/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    category: Optional[str] = None,
    low_stock: bool = Query(False, alias="lowStock"),
    current_user: User = Depends(current_farmer),
    session: Session = Depends(get_session)
):
    products, total = CatalogService(session).list_for_farmer(
        current_user.id, page, limit, is_active=is_active, category=category, low_stock=low_stock
    )
    return paginated([serialize_product(p) for p in products], page, limit, total, "Products retrieved successfully")

@router.get("/products/low-stock")
def low_stock_products(
    threshold: Optional[int] = Query(None, ge=0),
    current_user: User = Depends(current_farmer),
    session: Session = Depends(get_session)
):
    products = CatalogService(session).low_stock(current_user.id, threshold)
    return success([serialize_product(p) for p in products])

@router.get("/products/{product_id}")
def get_product(product_id: int, current_user: User = Depends(current_farmer), session: Session = Depends(get_session)):
    return success(serialize_product(CatalogService(session).get_for_farmer(current_user.id, product_id)))

@router.post("/products", status_code=201)
def create_product(data: ProductCreate, current_user: User = Depends(current_farmer), session: Session = Depends(get_session)):
    product = CatalogService(session).create(current_user.id, **data.model_dump())
    return success(serialize_product(product), "Product created successfully")

@router.put("/products/{product_id}")
def update_product(
    product_id: int,
    data: ProductUpdate,
    current_user: User = Depends(current_farmer),
    session: Session = Depends(get_session)
):
    product = CatalogService(session).update(current_user.id, product_id, **data.model_dump(exclude_unset=True))
    return success(serialize_product(product), "Product updated successfully")

@router.delete("/products/{product_id}")
def delete_product(product_id: int, current_user: User = Depends(current_farmer), session: Session = Depends(get_session)):
    CatalogService(session).deactivate(current_user.id, product_id)
    return success(message="Product deleted successfully")

@router.patch("/products/{product_id}/stock")
def update_stock(
    product_id: int,
    data: StockUpdate,
    current_user: User = Depends(current_farmer),
    session: Session = Depends(get_session)
):
    product = CatalogService(session).set_stock(current_user.id, product_id, data.stock)
    return success(serialize_product(product), "Stock updated successfully")

# Orders

@router.get("/orders")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    current_user: User = Depends(current_farmer),
    session: Session = Depends(get_session)
):
    service = OrderService(session)
    orders, total = service.list_orders(page, limit, farmer_id=current_user.id, status=status)
    counts = service.item_counts([o.id for o in orders])
    items = [dict(serialize_order(o), itemCount=counts.get(o.id, 0)) for o in orders]
    return paginated(items, page, limit, total, "Orders retrieved successfully")

@router.get("/orders/{order_id}")
def get_order(order_id: int, current_user: User = Depends(current_farmer), session: Session = Depends(get_session)):
    return success(OrderService(session).get_details(order_id, current_user))

@router.patch("/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    current_user: User = Depends(current_farmer),
    session: Session = Depends(get_session)
):
    order = OrderService(session).update_status(
        order_id, current_user, data.status, notes=data.notes, tracking_number=data.tracking_number
    )
    return success(serialize_order(order), f"Order status updated to {order.status.value}")

@router.patch("/orders/{order_id}/delivery-date")
def update_delivery_date(
    order_id: int,
    data: DeliveryDateUpdate,
    current_user: User = Depends(current_farmer),
    session: Session = Depends(get_session)
):
    order = OrderService(session).update_delivery_date(order_id, current_user.id, data.delivery_date)
    return success(serialize_order(order), "Delivery date updated")

@router.get("/delivery-schedule")
def delivery_schedule(
    on_date: Optional[date] = Query(None, alias="date"),
    current_user: User = Depends(current_farmer),
    session: Session = Depends(get_session)
):
    orders = OrderService(session).delivery_schedule(current_user.id, on_date)
    return success([serialize_order(o) for o in orders])

# Analytics

@router.get("/analytics/sales")
def sales_analytics(
    period: str = "month",
    current_user: User = Depends(current_farmer),
    session: Session = Depends(get_session)
):
    return success(AnalyticsService(session).farmer_sales(current_user.id, period))

@router.get("/dashboard")
def dashboard(current_user: User = Depends(current_farmer), session: Session = Depends(get_session)):
    catalog = CatalogService(session)
    orders = OrderService(session)
    return success({
        "productCount": catalog.count_for_farmer(current_user.id),
        "lowStockCount": len(catalog.low_stock(current_user.id)),
        "orderStats": orders.stats(farmer_id=current_user.id),
    })

# Messages

@router.get("/messages")
def get_messages(
    conversation_with: Optional[int] = Query(None, alias="conversationWith"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    current_user: User = Depends(current_farmer),
    session: Session = Depends(get_session)
):
    return read_messages(session, current_user, conversation_with, page, limit)

@router.post("/messages", status_code=201)
def send_message(data: MessageCreate, current_user: User = Depends(current_farmer), session: Session = Depends(get_session)):
    return post_message(session, current_user, data)
