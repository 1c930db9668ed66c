from sqlalchemy import Column, String, DateTime, UniqueConstraint, Index
import uuid
from marketchat.db.base import Base
from marketchat.utils.clock import utcnow


class Conversation(Base):
    __tablename__ = "conversations"
    __table_args__ = (
        # one conversation per unordered {customer, seller} pair
        UniqueConstraint("participant_low", "participant_high", name="uq_conversations_pair"),
        Index("ix_conversations_customer_id", "customer_id"),
        Index("ix_conversations_seller_id", "seller_id"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))

    customer_id = Column(String, nullable=False)
    seller_id = Column(String, nullable=False)

    # sorted copy of (customer_id, seller_id)
    participant_low = Column(String, nullable=False)
    participant_high = Column(String, nullable=False)

    last_message_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    def participants(self) -> tuple[str, str]:
        return self.customer_id, self.seller_id

    def has_participant(self, user_id: str) -> bool:
        return user_id in (self.customer_id, self.seller_id)

    def other_participant(self, user_id: str) -> str:
        return self.seller_id if user_id == self.customer_id else self.customer_id
