from typing import Optional
from datetime import datetime
from enum import Enum
from sqlmodel import Field, SQLModel

class DisputeStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"

class Dispute(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)

    # Parties
    order_id: int = Field(foreign_key="order.id", index=True)
    complainant_id: int = Field(foreign_key="user.id")
    respondent_id: int = Field(foreign_key="user.id")

    # Claim
    reason: str
    description: Optional[str] = None

    # Resolution
    status: DisputeStatus = Field(default=DisputeStatus.OPEN, index=True)
    resolution: Optional[str] = None
    resolved_by: Optional[int] = Field(default=None, foreign_key="user.id")

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
