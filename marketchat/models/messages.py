from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean, Text, UniqueConstraint, Index
import uuid
from marketchat.db.base import Base
from marketchat.utils.clock import utcnow


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        # client draft id makes a resend idempotent
        UniqueConstraint(
            "conversation_id", "sender_id", "client_message_id",
            name="uq_messages_client_message_id",
        ),
        Index("ix_messages_conversation_created", "conversation_id", "created_at"),
        Index("ix_messages_unread", "conversation_id", "is_read", "sender_id"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    conversation_id = Column(String, ForeignKey("conversations.id"), nullable=False)
    sender_id = Column(String, nullable=False)

    content = Column(Text, nullable=False)
    is_read = Column(Boolean, nullable=False, default=False)
    client_message_id = Column(String, nullable=True)

    created_at = Column(DateTime, nullable=False, default=utcnow)
