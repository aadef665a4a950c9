from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlmodel import Session

from agrimarket.core.responses import paginated, success
from agrimarket.core.schemas import CamelModel
from agrimarket.db.session import get_session
from agrimarket.models.dispute import DisputeStatus
from agrimarket.models.order import OrderStatus
from agrimarket.models.user import User, UserRole
from agrimarket.routers.auth import require_role
from agrimarket.services.admin import AuditService
from agrimarket.services.analytics import AnalyticsService
from agrimarket.services.auth import serialize_user
from agrimarket.services.catalog import CatalogService, serialize_product
from agrimarket.services.dispute import DisputeService, serialize_dispute
from agrimarket.services.maintenance import run_maintenance
from agrimarket.services.order import OrderService, serialize_order
from agrimarket.services.user import UserService

router = APIRouter()

current_admin = require_role(UserRole.ADMIN)

class StatusToggle(CamelModel):
    is_active: bool
    reason: Optional[str] = Field(default=None, max_length=500)

class OrderStatusUpdate(CamelModel):
    status: OrderStatus
    notes: Optional[str] = Field(default=None, max_length=500)
    tracking_number: Optional[str] = Field(default=None, max_length=100)

class DisputeUpdate(CamelModel):
    status: DisputeStatus
    resolution: Optional[str] = Field(default=None, max_length=2000)

# Dashboard and analytics

@router.get("/dashboard")
def dashboard(current_user: User = Depends(current_admin), session: Session = Depends(get_session)):
    return success(AnalyticsService(session).dashboard(), "Dashboard data retrieved successfully")

@router.get("/analytics")
def analytics(
    period: str = "month",
    type: str = "overview",
    current_user: User = Depends(current_admin),
    session: Session = Depends(get_session)
):
    return success(AnalyticsService(session).platform_analytics(period, type), "Analytics retrieved successfully")

@router.get("/analytics/seasonal")
def seasonal_analytics(
    category: Optional[str] = None,
    current_user: User = Depends(current_admin),
    session: Session = Depends(get_session)
):
    return success(AnalyticsService(session).seasonal(category), "Seasonal demand forecast retrieved successfully")

@router.get("/commission")
def commission(
    period: str = "month",
    farmer_id: Optional[int] = Query(None, alias="farmerId"),
    current_user: User = Depends(current_admin),
    session: Session = Depends(get_session)
):
    return success(AnalyticsService(session).commission_report(period, farmer_id), "Commission data retrieved successfully")

# Users

@router.get("/users")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    role: Optional[UserRole] = None,
    is_active: Optional[bool] = Query(None, alias="isActive"),
    search: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(current_admin),
    session: Session = Depends(get_session)
):
    users, total = UserService(session).list_users(page, limit, role=role, is_active=is_active, search=search)
    return paginated([serialize_user(u) for u in users], page, limit, total, "Users retrieved successfully")

@router.get("/farmers")
def list_farmers(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(current_admin),
    session: Session = Depends(get_session)
):
    farmers, total = UserService(session).list_farmers(page, limit)
    return paginated(farmers, page, limit, total, "Farmers retrieved successfully")

@router.get("/users/{user_id}")
def get_user(user_id: int, current_user: User = Depends(current_admin), session: Session = Depends(get_session)):
    service = UserService(session)
    user = service.get_user_by_id(user_id)
    return success({**serialize_user(user), "statistics": service.statistics(user)})

@router.patch("/users/{user_id}/status")
def update_user_status(
    user_id: int,
    data: StatusToggle,
    current_user: User = Depends(current_admin),
    session: Session = Depends(get_session)
):
    user = UserService(session).update_user_status(user_id, data.is_active)
    AuditService(session).record(
        current_user.id, "activate_user" if data.is_active else "suspend_user", user_id, data.reason
    )
    return success(serialize_user(user), f"User {'activated' if data.is_active else 'suspended'} successfully")

# Products

@router.get("/products")
def list_products(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    category: Optional[str] = None,
    search: Optional[str] = Query(None, max_length=100),
    current_user: User = Depends(current_admin),
    session: Session = Depends(get_session)
):
    rows, total = CatalogService(session).list_all(page, limit, is_active=is_active, category=category, search=search)
    items = [serialize_product(p, farmer) for p, farmer in rows]
    return paginated(items, page, limit, total, "Products retrieved successfully")

@router.get("/products/{product_id}")
def get_product(product_id: int, current_user: User = Depends(current_admin), session: Session = Depends(get_session)):
    return success(serialize_product(CatalogService(session).get_any(product_id)))

@router.patch("/products/{product_id}/status")
def update_product_status(
    product_id: int,
    data: StatusToggle,
    current_user: User = Depends(current_admin),
    session: Session = Depends(get_session)
):
    product = CatalogService(session).set_active(product_id, data.is_active)
    AuditService(session).record(
        current_user.id, "activate_product" if data.is_active else "deactivate_product", product_id, data.reason
    )
    return success(serialize_product(product), "Product status updated successfully")

# Orders

@router.get("/orders")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    farmer_id: Optional[int] = Query(None, alias="farmerId"),
    buyer_id: Optional[int] = Query(None, alias="buyerId"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    current_user: User = Depends(current_admin),
    session: Session = Depends(get_session)
):
    service = OrderService(session)
    orders, total = service.list_orders(
        page, limit, buyer_id=buyer_id, farmer_id=farmer_id, status=status,
        start_date=start_date, end_date=end_date,
    )
    counts = service.item_counts([o.id for o in orders])
    items = [dict(serialize_order(o), itemCount=counts.get(o.id, 0)) for o in orders]
    return paginated(items, page, limit, total, "Orders retrieved successfully")

@router.get("/orders/{order_id}")
def get_order(order_id: int, current_user: User = Depends(current_admin), session: Session = Depends(get_session)):
    return success(OrderService(session).get_details(order_id, current_user))

@router.patch("/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    current_user: User = Depends(current_admin),
    session: Session = Depends(get_session)
):
    order = OrderService(session).update_status(
        order_id, current_user, data.status, notes=data.notes, tracking_number=data.tracking_number
    )
    AuditService(session).record(current_user.id, "update_order_status", order_id, f"Status set to {data.status.value}")
    return success(serialize_order(order), f"Order status updated to {order.status.value}")

# Disputes

@router.get("/disputes")
def list_disputes(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[DisputeStatus] = None,
    current_user: User = Depends(current_admin),
    session: Session = Depends(get_session)
):
    disputes, total = DisputeService(session).list_disputes(page, limit, status=status)
    return paginated([serialize_dispute(d) for d in disputes], page, limit, total, "Disputes retrieved successfully")

@router.patch("/disputes/{dispute_id}")
def update_dispute(
    dispute_id: int,
    data: DisputeUpdate,
    current_user: User = Depends(current_admin),
    session: Session = Depends(get_session)
):
    dispute = DisputeService(session).update(dispute_id, current_user.id, data.status, data.resolution)
    AuditService(session).record(current_user.id, "update_dispute", dispute_id, data.resolution)
    return success(serialize_dispute(dispute), "Dispute updated successfully")

# Maintenance

@router.post("/maintenance/run")
def run_maintenance_now(current_user: User = Depends(current_admin), session: Session = Depends(get_session)):
    return success(run_maintenance(session), "Maintenance completed")
