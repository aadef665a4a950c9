from datetime import datetime
from typing import Optional

import structlog
from sqlmodel import Session, select

from agrimarket.core.exceptions import ConflictError, ForbiddenError, NotFoundError, ValidationError
from agrimarket.db.session import paginate
from agrimarket.models.dispute import Dispute, DisputeStatus
from agrimarket.models.order import Order
from agrimarket.services.notification import NotificationService, best_effort

logger = structlog.get_logger(__name__)


def serialize_dispute(dispute: Dispute) -> dict:
    return {
        "id": dispute.id,
        "orderId": dispute.order_id,
        "complainantId": dispute.complainant_id,
        "respondentId": dispute.respondent_id,
        "reason": dispute.reason,
        "description": dispute.description,
        "status": dispute.status.value,
        "resolution": dispute.resolution,
        "resolvedBy": dispute.resolved_by,
        "createdAt": dispute.created_at,
        "updatedAt": dispute.updated_at,
    }


class DisputeService:
    def __init__(self, session: Session):
        self.session = session

    def open(self, buyer_id: int, order_id: int, reason: str, description: Optional[str] = None) -> Dispute:
        order = self.session.get(Order, order_id)
        if not order:
            raise NotFoundError("Order not found")
        if order.buyer_id != buyer_id:
            raise ForbiddenError("You can only dispute your own orders")

        existing = self.session.exec(
            select(Dispute).where(
                Dispute.order_id == order_id,
                Dispute.complainant_id == buyer_id,
                Dispute.status.in_([DisputeStatus.OPEN, DisputeStatus.IN_PROGRESS]),
            )
        ).first()
        if existing:
            raise ConflictError("A dispute is already open for this order")

        dispute = Dispute(
            order_id=order_id,
            complainant_id=buyer_id,
            respondent_id=order.farmer_id,
            reason=reason,
            description=description,
        )
        self.session.add(dispute)
        self.session.commit()
        self.session.refresh(dispute)
        logger.info("dispute_opened", dispute_id=dispute.id, order_id=order_id)

        best_effort(
            "notification", NotificationService(self.session).create,
            order.farmer_id, "Dispute opened", f"A buyer opened a dispute on order #{order_id}",
            "dispute_opened", {"disputeId": dispute.id, "orderId": order_id},
        )
        return dispute

    def list_disputes(self, page: int = 1, limit: int = 20, status: Optional[DisputeStatus] = None,
                      user_id: Optional[int] = None):
        statement = select(Dispute)
        if status is not None:
            statement = statement.where(Dispute.status == status)
        if user_id is not None:
            statement = statement.where(Dispute.complainant_id == user_id)
        statement = statement.order_by(Dispute.created_at.desc(), Dispute.id.desc())
        return paginate(self.session, statement, page, limit)

    def update(self, dispute_id: int, admin_id: int, status: DisputeStatus,
               resolution: Optional[str] = None) -> Dispute:
        dispute = self.session.get(Dispute, dispute_id)
        if not dispute:
            raise NotFoundError("Dispute not found")
        if status == DisputeStatus.OPEN:
            raise ValidationError("A dispute cannot be reopened", field="status")
        if dispute.status == DisputeStatus.CLOSED:
            raise ConflictError("Dispute is already closed")

        dispute.status = status
        if resolution:
            dispute.resolution = resolution
        if status == DisputeStatus.RESOLVED:
            dispute.resolved_by = admin_id
        dispute.updated_at = datetime.utcnow()
        self.session.add(dispute)
        self.session.commit()
        self.session.refresh(dispute)
        logger.info("dispute_updated", dispute_id=dispute.id, status=status.value, admin_id=admin_id)

        best_effort(
            "notification", NotificationService(self.session).create,
            dispute.complainant_id, "Dispute updated",
            f"Your dispute on order #{dispute.order_id} is now {status.value.replace('_', ' ')}",
            "dispute_updated", {"disputeId": dispute.id},
        )
        return dispute
