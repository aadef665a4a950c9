from datetime import date
from typing import Optional

import structlog
from sqlmodel import Session

from agrimarket.services.notification import NotificationService
from agrimarket.services.subscription import SubscriptionService

logger = structlog.get_logger(__name__)


def run_maintenance(session: Session, today: Optional[date] = None) -> dict:
    """Periodic housekeeping, meant to be triggered once a day by an external scheduler."""
    deleted = NotificationService(session).cleanup()
    rollover = SubscriptionService(session).process_due(today)
    result = {"notificationsDeleted": deleted, "subscriptions": rollover}
    logger.info("maintenance_completed", notifications_deleted=deleted, subscriptions=rollover)
    return result
