from typing import Optional
from datetime import datetime
from sqlmodel import Field, SQLModel

class AdminAction(SQLModel, table=True):
    """Audit trail of moderation actions taken by admins."""

    id: Optional[int] = Field(default=None, primary_key=True)
    admin_id: int = Field(foreign_key="user.id", index=True)
    action_type: str  # e.g. "suspend_user", "deactivate_product", "update_order_status"
    target_id: int
    reason: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
