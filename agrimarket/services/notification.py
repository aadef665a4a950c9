from datetime import datetime, timedelta
from typing import Callable, Optional

import structlog
from sqlalchemy import delete, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select, func

from agrimarket.core.config import settings
from agrimarket.core.exceptions import DependencyError, NotFoundError
from agrimarket.db.session import paginate
from agrimarket.models.notification import Notification

logger = structlog.get_logger(__name__)


def best_effort(dependency: str, fn: Callable, *args, **kwargs):
    """Run a side effect whose failure must never fail the caller."""
    try:
        return fn(*args, **kwargs)
    except DependencyError as e:
        logger.warning("side_effect_failed", dependency=e.dependency, reason=e.reason)
    except Exception as e:
        err = DependencyError(dependency, str(e))
        logger.warning("side_effect_failed", dependency=err.dependency, reason=err.reason, exc_info=True)
    return None


def serialize_notification(n: Notification) -> dict:
    return {
        "id": n.id,
        "userId": n.user_id,
        "title": n.title,
        "message": n.message,
        "type": n.type,
        "data": n.data or {},
        "isRead": n.is_read,
        "createdAt": n.created_at,
    }


class NotificationService:
    def __init__(self, session: Session):
        self.session = session

    def create(self, user_id: int, title: str, message: str, type: str, data: Optional[dict] = None) -> Notification:
        notification = Notification(user_id=user_id, title=title, message=message, type=type, data=data or {})
        try:
            self.session.add(notification)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise DependencyError("notification", str(e)) from e
        self.session.refresh(notification)
        return notification

    def list_for_user(self, user_id: int, page: int = 1, limit: int = 20,
                      is_read: Optional[bool] = None, type: Optional[str] = None):
        statement = select(Notification).where(Notification.user_id == user_id)
        if is_read is not None:
            statement = statement.where(Notification.is_read == is_read)
        if type:
            statement = statement.where(Notification.type == type)
        statement = statement.order_by(Notification.created_at.desc(), Notification.id.desc())
        return paginate(self.session, statement, page, limit)

    def mark_read(self, user_id: int, notification_id: int) -> Notification:
        notification = self.session.get(Notification, notification_id)
        if not notification or notification.user_id != user_id:
            raise NotFoundError("Notification not found")
        notification.is_read = True
        notification.updated_at = datetime.utcnow()
        self.session.add(notification)
        self.session.commit()
        self.session.refresh(notification)
        return notification

    def mark_all_read(self, user_id: int) -> int:
        result = self.session.exec(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read == False)  # noqa: E712
            .values(is_read=True, updated_at=datetime.utcnow())
        )
        self.session.commit()
        return result.rowcount

    def unread_count(self, user_id: int) -> int:
        return self.session.exec(
            select(func.count(Notification.id)).where(
                Notification.user_id == user_id, Notification.is_read == False  # noqa: E712
            )
        ).one()

    def cleanup(self, retention_days: Optional[int] = None) -> int:
        """Delete read notifications older than the retention window."""
        days = retention_days if retention_days is not None else settings.NOTIFICATION_RETENTION_DAYS
        cutoff = datetime.utcnow() - timedelta(days=days)
        result = self.session.exec(
            delete(Notification).where(Notification.is_read == True, Notification.created_at < cutoff)  # noqa: E712
        )
        self.session.commit()
        logger.info("notifications_cleaned", deleted=result.rowcount, cutoff=cutoff.isoformat())
        return result.rowcount
