from typing import Optional

import structlog
from sqlmodel import Session

from agrimarket.models.admin_action import AdminAction

logger = structlog.get_logger(__name__)


class AuditService:
    """Records moderation actions taken by admins."""

    def __init__(self, session: Session):
        self.session = session

    def record(self, admin_id: int, action_type: str, target_id: int, reason: Optional[str] = None) -> AdminAction:
        action = AdminAction(admin_id=admin_id, action_type=action_type, target_id=target_id, reason=reason)
        self.session.add(action)
        self.session.commit()
        logger.info("admin_action", admin_id=admin_id, action=action_type, target_id=target_id)
        return action
