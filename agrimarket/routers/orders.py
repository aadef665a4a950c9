from typing import Optional
from fastapi import APIRouter, Depends, Query
from pydantic import Field
from sqlmodel import Session

from agrimarket.core.responses import paginated, success
from agrimarket.core.schemas import CamelModel
from agrimarket.db.session import get_session
from agrimarket.models.order import OrderStatus
from agrimarket.models.user import User, UserRole
from agrimarket.routers.auth import get_current_user, require_role
from agrimarket.services.notification import NotificationService, serialize_notification
from agrimarket.services.order import OrderService, serialize_order

router = APIRouter()

class NotificationCreate(CamelModel):
    user_id: int
    title: str = Field(min_length=1, max_length=200)
    message: str = Field(min_length=1, max_length=1000)
    type: str = Field(min_length=1, max_length=50)
    data: dict = Field(default_factory=dict)

def get_order_service(session: Session = Depends(get_session)) -> OrderService:
    return OrderService(session)

def get_notification_service(session: Session = Depends(get_session)) -> NotificationService:
    return NotificationService(session)

# Notifications

@router.get("/notifications")
def list_notifications(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    is_read: Optional[bool] = Query(None, alias="isRead"),
    type: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    items, total = service.list_for_user(current_user.id, page, limit, is_read=is_read, type=type)
    return paginated([serialize_notification(n) for n in items], page, limit, total)

@router.get("/notifications/unread-count")
def unread_notifications(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    return success({"unreadCount": service.unread_count(current_user.id)})

@router.patch("/notifications/read-all")
def mark_all_notifications_read(
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    updated = service.mark_all_read(current_user.id)
    return success({"updated": updated}, "All notifications marked as read")

@router.patch("/notifications/{notification_id}/read")
def mark_notification_read(
    notification_id: int,
    current_user: User = Depends(get_current_user),
    service: NotificationService = Depends(get_notification_service)
):
    notification = service.mark_read(current_user.id, notification_id)
    return success(serialize_notification(notification), "Notification marked as read")

@router.post("/notifications", status_code=201)
def create_notification(
    data: NotificationCreate,
    current_user: User = Depends(require_role(UserRole.ADMIN)),
    service: NotificationService = Depends(get_notification_service)
):
    notification = service.create(data.user_id, data.title, data.message, data.type, data.data)
    return success(serialize_notification(notification), "Notification created")

# Orders visible to the caller

@router.get("/")
def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[OrderStatus] = None,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    filters = {}
    if current_user.role == UserRole.BUYER:
        filters["buyer_id"] = current_user.id
    elif current_user.role == UserRole.FARMER:
        filters["farmer_id"] = current_user.id
    orders, total = service.list_orders(page, limit, status=status, **filters)
    counts = service.item_counts([o.id for o in orders])
    items = [dict(serialize_order(o), itemCount=counts.get(o.id, 0)) for o in orders]
    return paginated(items, page, limit, total, "Orders retrieved successfully")

@router.get("/stats")
def order_stats(current_user: User = Depends(get_current_user), service: OrderService = Depends(get_order_service)):
    if current_user.role == UserRole.BUYER:
        return success(service.stats(buyer_id=current_user.id))
    if current_user.role == UserRole.FARMER:
        return success(service.stats(farmer_id=current_user.id))
    return success(service.stats())

@router.get("/{order_id}")
def get_order(
    order_id: int,
    current_user: User = Depends(get_current_user),
    service: OrderService = Depends(get_order_service)
):
    return success(service.get_details(order_id, current_user))
