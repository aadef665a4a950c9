from collections import OrderedDict
from typing import List

import structlog
from sqlalchemy import and_, or_, update
from sqlmodel import Session, select, func

from agrimarket.core.exceptions import InvalidReceiverError
from agrimarket.models.message import Message, MessageType
from agrimarket.models.user import User

logger = structlog.get_logger(__name__)


def serialize_message(message: Message, viewer_id: int = None) -> dict:
    data = {
        "id": message.id,
        "senderId": message.sender_id,
        "receiverId": message.receiver_id,
        "content": message.content,
        "messageType": message.message_type.value,
        "isRead": message.is_read,
        "createdAt": message.created_at,
    }
    if viewer_id is not None:
        data["isFromMe"] = message.sender_id == viewer_id
    return data


def _between(user_id: int, partner_id: int):
    return or_(
        and_(Message.sender_id == user_id, Message.receiver_id == partner_id),
        and_(Message.sender_id == partner_id, Message.receiver_id == user_id),
    )


class MessagingService:
    def __init__(self, session: Session):
        self.session = session

    def send(self, sender_id: int, receiver_id: int, content: str,
             message_type: MessageType = MessageType.TEXT) -> Message:
        if receiver_id == sender_id:
            raise InvalidReceiverError("Cannot send a message to yourself", field="receiverId")
        receiver = self.session.get(User, receiver_id)
        if not receiver or not receiver.is_active:
            raise InvalidReceiverError("Receiver not found", field="receiverId")

        message = Message(sender_id=sender_id, receiver_id=receiver_id, content=content, message_type=message_type)
        self.session.add(message)
        self.session.commit()
        self.session.refresh(message)
        logger.debug("message_sent", message_id=message.id, sender_id=sender_id, receiver_id=receiver_id)
        return message

    def conversation(self, user_id: int, partner_id: int, page: int = 1, limit: int = 50):
        """One page of the thread with ``partner_id``, oldest message first.

        Page 1 is the newest window. Messages the partner sent to ``user_id``
        are marked read.
        """
        total = self.session.exec(select(func.count(Message.id)).where(_between(user_id, partner_id))).one()
        newest_first = self.session.exec(
            select(Message)
            .where(_between(user_id, partner_id))
            .order_by(Message.created_at.desc(), Message.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).all()

        self.session.exec(
            update(Message)
            .where(Message.sender_id == partner_id, Message.receiver_id == user_id, Message.is_read == False)  # noqa: E712
            .values(is_read=True)
        )
        self.session.commit()
        return list(reversed(newest_first)), total

    def conversations(self, user_id: int) -> List[dict]:
        messages = self.session.exec(
            select(Message)
            .where(or_(Message.sender_id == user_id, Message.receiver_id == user_id))
            .order_by(Message.created_at.desc(), Message.id.desc())
        ).all()

        threads: "OrderedDict[int, dict]" = OrderedDict()
        for message in messages:
            partner_id = message.receiver_id if message.sender_id == user_id else message.sender_id
            thread = threads.get(partner_id)
            if thread is None:
                thread = threads[partner_id] = {
                    "partnerId": partner_id,
                    "lastMessage": {
                        "content": message.content,
                        "createdAt": message.created_at,
                        "isFromMe": message.sender_id == user_id,
                    },
                    "unreadCount": 0,
                }
            if message.sender_id == partner_id and not message.is_read:
                thread["unreadCount"] += 1

        if threads:
            partners = self.session.exec(select(User).where(User.id.in_(list(threads)))).all()
            by_id = {p.id: p for p in partners}
            for partner_id, thread in threads.items():
                partner = by_id.get(partner_id)
                thread["partner"] = {
                    "id": partner_id,
                    "name": partner.name if partner else None,
                    "role": partner.role.value if partner else None,
                }
        return list(threads.values())

    def unread_count(self, user_id: int) -> int:
        return self.session.exec(
            select(func.count(Message.id)).where(Message.receiver_id == user_id, Message.is_read == False)  # noqa: E712
        ).one()
